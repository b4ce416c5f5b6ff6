"""Report template catalog (configuration only)."""

from src.core.config import get_settings
from src.core.exceptions import ReportTemplateNotFoundError
from src.core.models import ReportTemplate


def get_templates() -> list[ReportTemplate]:
    """Return the configured catalog, in display order."""
    return [ReportTemplate.model_validate(item) for item in get_settings().report_templates]


def find_template(templates: list[ReportTemplate], template_id: str) -> ReportTemplate:
    """Look up *template_id* or raise :class:`ReportTemplateNotFoundError`."""
    for template in templates:
        if template.id == template_id:
            return template
    raise ReportTemplateNotFoundError(template_id)
