"""
Review stage: edit the transcript, pick a template, save one report.

The draft is never persisted on its own; only an explicit ``save()``
creates a Report. One review yields at most one Report: a save in
flight or a completed save rejects further saves, and a failed save
keeps the edited text for the retry.
"""

import logging
from collections.abc import Callable
from enum import StrEnum

import pyperclip

from src.core.exceptions import (
    ClinicScribeError,
    ReportContentEmptyError,
    ReviewClosedError,
    SaveError,
)
from src.core.models import (
    Report,
    ReportCreate,
    ReportDraft,
    ReportStatus,
    ReportTemplate,
    Transcript,
)
from src.services.backend.base import BaseReportAPI
from src.services.templates import find_template

logger = logging.getLogger(__name__)


class ReviewState(StrEnum):
    editing = "editing"
    saving = "saving"
    saved = "saved"
    cancelled = "cancelled"


class ReviewStage:
    """Owns the ReportDraft seeded from a transcript.

    Args:
        api: Report API used on save.
        transcript: Source transcript; its text seeds the draft.
        templates: Selectable catalog.
        patient_id: Report owner.
        session_id: Audio session the report is based on.
        default_template_id: Initial selection (falls back to the first template).
        clipboard: Copy function (default ``pyperclip.copy``).
    """

    def __init__(
        self,
        api: BaseReportAPI,
        transcript: Transcript,
        templates: list[ReportTemplate],
        patient_id: str,
        session_id: str | None = None,
        default_template_id: str = "resumo",
        clipboard: Callable[[str], None] | None = None,
    ) -> None:
        if not templates:
            raise ClinicScribeError(
                detail="No report templates are configured",
                code="TEMPLATE_CATALOG_EMPTY",
                status_code=500,
            )
        self._api = api
        self._templates = list(templates)
        self._patient_id = patient_id
        self._session_id = session_id or transcript.session_id
        self._clipboard = clipboard or pyperclip.copy
        if not any(t.id == default_template_id for t in self._templates):
            default_template_id = self._templates[0].id
        self._draft = ReportDraft(template_id=default_template_id, editable_text=transcript.text)
        self._state = ReviewState.editing
        self._report: Report | None = None

    @property
    def state(self) -> ReviewState:
        return self._state

    @property
    def draft(self) -> ReportDraft:
        return self._draft

    @property
    def templates(self) -> list[ReportTemplate]:
        return list(self._templates)

    @property
    def template(self) -> ReportTemplate:
        return find_template(self._templates, self._draft.template_id)

    @property
    def report(self) -> Report | None:
        return self._report

    @property
    def can_save(self) -> bool:
        """False while saving, once closed, or when the text is blank."""
        return self._state is ReviewState.editing and bool(self._draft.editable_text.strip())

    def select_template(self, template_id: str) -> ReportTemplate:
        self._ensure_open()
        template = find_template(self._templates, template_id)
        self._draft.template_id = template.id
        return template

    def edit(self, text: str) -> None:
        self._ensure_open()
        self._draft.editable_text = text

    def copy_to_clipboard(self) -> str:
        """Copy the current text to the system clipboard without saving."""
        text = self._draft.editable_text
        try:
            self._clipboard(text)
        except pyperclip.PyperclipException as exc:
            raise ClinicScribeError(
                detail=f"Clipboard is not available: {exc}",
                code="CLIPBOARD_UNAVAILABLE",
                status_code=503,
            ) from exc
        return text

    async def save(
        self,
        template_id: str | None = None,
        edited_text: str | None = None,
    ) -> Report:
        """Persist the draft as an approved report.

        Raises:
            ReviewClosedError: A save is in flight, done, or the review was cancelled.
            ReportTemplateNotFoundError: Unknown *template_id*.
            ReportContentEmptyError: Blank text; nothing is sent.
            SaveError: The report API failed; the edited text is kept.
        """
        self._ensure_open()
        if template_id is not None:
            self.select_template(template_id)
        if edited_text is not None:
            self.edit(edited_text)

        content = self._draft.editable_text
        if not content.strip():
            raise ReportContentEmptyError()
        template = self.template

        self._state = ReviewState.saving
        try:
            report = await self._api.create_report(
                ReportCreate(
                    patient_id=self._patient_id,
                    session_id=self._session_id,
                    template_id=template.id,
                    type=template.report_type,
                    title=template.display_name or None,
                    content=content,
                    status=ReportStatus.approved,
                )
            )
        except SaveError:
            self._state = ReviewState.editing
            raise
        except Exception as exc:
            self._state = ReviewState.editing
            logger.exception("Report save failed")
            raise SaveError(f"Report could not be saved: {exc}") from exc

        self._report = report
        self._state = ReviewState.saved
        logger.info("Report %s saved with template %s", report.id, template.id)
        return report

    def cancel(self) -> None:
        """Discard the draft. Nothing is persisted."""
        if self._state in (ReviewState.saved, ReviewState.cancelled):
            return
        if self._state is ReviewState.saving:
            raise ReviewClosedError(self._state)
        self._draft.editable_text = ""
        self._state = ReviewState.cancelled

    def _ensure_open(self) -> None:
        if self._state is not ReviewState.editing:
            raise ReviewClosedError(self._state)
