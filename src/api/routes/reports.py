"""
Report REST endpoints.

Reports are created once, from a reviewed draft. The template catalog is
configuration served read-only.
"""

from fastapi import APIRouter, Query

from src.core.models import Report, ReportCreate, ReportTemplate
from src.services.storage.database import get_session
from src.services.storage.repository import ClinicRepository, to_report
from src.services.templates import find_template, get_templates

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/templates", response_model=list[ReportTemplate])
async def list_report_templates():
    return get_templates()


@router.post("", response_model=Report)
async def create_report(body: ReportCreate):
    """Persist a report; an unknown ``template_id`` is rejected with 404."""
    if body.template_id is not None:
        find_template(get_templates(), body.template_id)
    async with get_session() as session:
        repo = ClinicRepository(session)
        return to_report(await repo.create_report(body))


@router.get("", response_model=list[Report])
async def list_reports(
    patient_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    async with get_session() as session:
        repo = ClinicRepository(session)
        rows = await repo.list_reports(patient_id=patient_id, limit=limit, offset=offset)
        return [to_report(r) for r in rows]


@router.get("/{report_id}", response_model=Report)
async def get_report(report_id: str):
    async with get_session() as session:
        repo = ClinicRepository(session)
        return to_report(await repo.get_report(report_id))
