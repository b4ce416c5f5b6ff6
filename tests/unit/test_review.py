"""Unit tests for the ReviewStage."""

import asyncio
from datetime import UTC, datetime

import pyperclip
import pytest

from src.core.exceptions import (
    ClinicScribeError,
    ReportContentEmptyError,
    ReportTemplateNotFoundError,
    ReviewClosedError,
    SaveError,
)
from src.core.models import ReportStatus, ReportTemplate, ReportType, Transcript
from src.services.pipeline.review import ReviewState, ReviewStage

TEMPLATES = [
    ReportTemplate(id="resumo", display_name="Resumo de Sessão"),
    ReportTemplate(id="mensal", display_name="Relatório Mensal", report_type=ReportType.monthly),
]


@pytest.fixture
def transcript():
    return Transcript(
        session_id="S1",
        text="Paciente apresentou melhora na articulação",
        language="pt",
        created_at=datetime.now(UTC),
    )


@pytest.fixture
def copied():
    return []


@pytest.fixture
def review(backend, transcript, copied):
    return ReviewStage(
        backend,
        transcript,
        TEMPLATES,
        patient_id="P1",
        default_template_id="resumo",
        clipboard=copied.append,
    )


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


class TestDraft:
    def test_draft_is_seeded_from_transcript(self, review, transcript):
        assert review.draft.editable_text == transcript.text
        assert review.draft.template_id == "resumo"
        assert review.state is ReviewState.editing
        assert review.can_save is True

    def test_unknown_default_falls_back_to_first_template(self, backend, transcript):
        stage = ReviewStage(backend, transcript, TEMPLATES, "P1", default_template_id="nope")

        assert stage.template.id == "resumo"

    def test_empty_catalog_is_rejected(self, backend, transcript):
        with pytest.raises(ClinicScribeError) as exc_info:
            ReviewStage(backend, transcript, [], "P1")

        assert exc_info.value.code == "TEMPLATE_CATALOG_EMPTY"

    def test_select_template(self, review):
        template = review.select_template("mensal")

        assert template.report_type is ReportType.monthly
        assert review.draft.template_id == "mensal"

    def test_select_unknown_template(self, review):
        with pytest.raises(ReportTemplateNotFoundError):
            review.select_template("missing")
        assert review.draft.template_id == "resumo"

    def test_blank_text_cannot_be_saved(self, review):
        review.edit("   ")

        assert review.can_save is False

    async def test_editing_never_persists(self, review, backend):
        review.edit("draft 1")
        review.edit("draft 2")

        assert backend.reports == []


# ---------------------------------------------------------------------------
# Clipboard
# ---------------------------------------------------------------------------


class TestClipboard:
    def test_copy_uses_current_text(self, review, copied, backend):
        review.edit("texto revisado")

        assert review.copy_to_clipboard() == "texto revisado"
        assert copied == ["texto revisado"]
        assert backend.reports == []

    def test_clipboard_failure(self, backend, transcript):
        def broken(text):
            raise pyperclip.PyperclipException("no clipboard mechanism")

        stage = ReviewStage(backend, transcript, TEMPLATES, "P1", clipboard=broken)

        with pytest.raises(ClinicScribeError) as exc_info:
            stage.copy_to_clipboard()

        assert exc_info.value.code == "CLIPBOARD_UNAVAILABLE"


# ---------------------------------------------------------------------------
# save
# ---------------------------------------------------------------------------


class TestSave:
    async def test_save_sends_exact_text(self, review, backend, transcript):
        edited = transcript.text + " — revisado"

        report = await review.save(template_id="resumo", edited_text=edited)

        assert report.content == edited
        assert report.status is ReportStatus.approved
        assert report.session_id == "S1"
        assert review.state is ReviewState.saved
        assert review.report is report
        sent = backend.reports[0]
        assert sent.type is ReportType.evolution
        assert sent.title == "Resumo de Sessão"
        assert sent.template_id == "resumo"

    async def test_template_type_is_used(self, review, backend):
        await review.save(template_id="mensal")

        assert backend.reports[0].type is ReportType.monthly

    async def test_second_save_is_rejected(self, review, backend):
        await review.save()

        with pytest.raises(ReviewClosedError):
            await review.save()
        assert len(backend.reports) == 1

    async def test_save_while_saving_is_rejected(self, review, backend):
        backend.save_gate = asyncio.Event()
        original = backend.create_report

        async def slow(data):
            await backend.save_gate.wait()
            return await original(data)

        backend.create_report = slow
        first = asyncio.create_task(review.save())
        await asyncio.sleep(0)

        assert review.state is ReviewState.saving
        assert review.can_save is False
        with pytest.raises(ReviewClosedError):
            await review.save()

        backend.save_gate.set()
        await first
        assert len(backend.reports) == 1

    async def test_empty_text_is_rejected_locally(self, review, backend):
        with pytest.raises(ReportContentEmptyError):
            await review.save(edited_text="  \n ")

        assert backend.reports == []
        assert review.state is ReviewState.editing

    async def test_failed_save_keeps_text_for_retry(self, review, backend):
        backend.save_failures.append(SaveError("Report could not be saved: 500"))
        review.edit("texto final")

        with pytest.raises(SaveError):
            await review.save()

        assert review.state is ReviewState.editing
        assert review.draft.editable_text == "texto final"

        report = await review.save()
        assert report.content == "texto final"
        assert [r.content for r in backend.reports] == ["texto final", "texto final"]

    async def test_unexpected_error_becomes_save_error(self, review, backend):
        backend.save_failures.append(RuntimeError("db locked"))

        with pytest.raises(SaveError, match="db locked"):
            await review.save()
        assert review.state is ReviewState.editing


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_cancel_persists_nothing(self, review, backend):
        review.edit("rascunho")

        review.cancel()

        assert review.state is ReviewState.cancelled
        assert backend.reports == []
        with pytest.raises(ReviewClosedError):
            await review.save()

    async def test_cancel_after_save_is_a_noop(self, review):
        await review.save()

        review.cancel()

        assert review.state is ReviewState.saved
