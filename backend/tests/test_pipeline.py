"""
Test suite for the Processing Pipeline

This module tests the per-session state machine to ensure:
- Unsupported or oversized files never reach the AI gateway
- Gateway failures move the session to ERROR and reset() returns to IDLE
- Stored optimizations for the same (owner, filename) are reused
- A completed run stores exactly one locked record
- Overlapping steps are rejected instead of queued
- History entries open directly in COMPLETED
- Unexpected exceptions in a running step still end in ERROR

Run tests with: pytest backend/tests/test_pipeline.py -v
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock
import sys
import os

# Add backend directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import (
    InvalidTransition,
    MalformedResponse,
    RecordNotFound,
    StoreUnavailable,
    TransitionInProgress,
    UpstreamError,
    ValidationError,
)
from models import Language
from services.pipeline import (
    PipelineStage,
    ProcessingSession,
    SessionRegistry,
    validate_upload,
)


PDF_BYTES = b"%PDF-1.4 fake resume"


# ============================================================================
# FIXTURES - Reusable test setup components
# ============================================================================

@pytest.fixture
def session(mock_gateway, record_store):
    return ProcessingSession(gateway=mock_gateway, store=record_store, owner_id="user-1")


@pytest.fixture
def anonymous_session(mock_gateway, record_store):
    return ProcessingSession(gateway=mock_gateway, store=record_store)


async def analyzed(session, filename="cv.pdf"):
    await session.select_file(filename, "application/pdf", PDF_BYTES)
    assert session.stage == PipelineStage.ANALYSIS_COMPLETED
    return session


# ============================================================================
# TESTS
# ============================================================================

class TestValidateUpload:

    def test_accepts_pdf_and_images(self):
        validate_upload("application/pdf", 100)
        validate_upload("image/png", 100)
        validate_upload("image/jpeg", 100)

    @pytest.mark.parametrize("mime_type", ["text/plain", "application/msword", None, ""])
    def test_rejects_other_types(self, mime_type):
        with pytest.raises(ValidationError):
            validate_upload(mime_type, 100)

    def test_rejects_oversized_and_empty(self):
        with pytest.raises(ValidationError):
            validate_upload("application/pdf", 11 * 1024 * 1024)
        with pytest.raises(ValidationError):
            validate_upload("application/pdf", 0)


class TestAnalyzeStep:

    @pytest.mark.asyncio
    async def test_successful_analysis(self, session, mock_gateway, sample_report):
        stage = await session.select_file("cv.pdf", "application/pdf", PDF_BYTES)

        assert stage == PipelineStage.ANALYSIS_COMPLETED
        assert session.report == sample_report
        mock_gateway.analyze.assert_awaited_once()
        args = mock_gateway.analyze.call_args.args
        assert args[1] == "application/pdf"
        assert args[2] == "en"

    @pytest.mark.asyncio
    async def test_invalid_file_never_reaches_gateway(self, session, mock_gateway):
        with pytest.raises(ValidationError):
            await session.select_file("notes.txt", "text/plain", b"hello")

        assert session.stage == PipelineStage.IDLE
        mock_gateway.analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_failure_moves_to_error_then_reset(self, session, mock_gateway):
        mock_gateway.analyze.side_effect = MalformedResponse("bad json")

        stage = await session.select_file("cv.pdf", "application/pdf", PDF_BYTES)

        assert stage == PipelineStage.ERROR
        assert session.error == "bad json"

        session.reset()
        assert session.stage == PipelineStage.IDLE
        assert session.report is None
        assert session.file_base64 is None
        assert session.error is None

    @pytest.mark.asyncio
    async def test_analysis_uses_session_language(self, mock_gateway, record_store):
        session = ProcessingSession(gateway=mock_gateway, store=record_store, language=Language.AR)

        await session.select_file("cv.png", "image/png", PDF_BYTES)

        assert mock_gateway.analyze.call_args.args[2] == "ar"

    @pytest.mark.asyncio
    async def test_upload_requires_idle(self, session):
        await analyzed(session)

        with pytest.raises(InvalidTransition):
            await session.select_file("cv.pdf", "application/pdf", PDF_BYTES)


class TestOptimizeStep:

    @pytest.mark.asyncio
    async def test_end_to_end_with_instructions(self, session, mock_gateway, record_store):
        long_html = "<!DOCTYPE html><html><body>" + "<p>Led teams.</p>" * 200 + "</body></html>"
        mock_gateway.optimize.return_value = long_html
        await analyzed(session)

        stage = await session.start_optimization("emphasize leadership")

        assert stage == PipelineStage.COMPLETED
        assert session.html == long_html
        assert session.is_paid is False
        assert session.preview_locked is True
        assert mock_gateway.optimize.call_args.args[3] == "emphasize leadership"

        records = record_store.list_by_owner("user-1")
        assert len(records) == 1
        assert records[0].is_paid is False
        assert records[0].html_content == long_html
        assert session.record_id == records[0].id
        assert session.order_number == records[0].order_number

    @pytest.mark.asyncio
    async def test_reuses_existing_record(self, session, mock_gateway, record_store, sample_html):
        existing = record_store.create("user-1", "cv.pdf", sample_html)
        record_store.mark_paid(existing.id)
        await analyzed(session)

        await session.start_optimization()

        assert session.stage == PipelineStage.COMPLETED
        assert session.record_id == existing.id
        assert session.is_paid is True
        mock_gateway.optimize.assert_not_called()
        assert len(record_store.list_by_owner("user-1")) == 1

    @pytest.mark.asyncio
    async def test_reused_unpaid_record_stays_locked(self, session, mock_gateway, record_store, sample_html):
        record_store.create("user-1", "cv.pdf", sample_html)
        await analyzed(session)

        await session.start_optimization()

        assert session.is_paid is False
        assert session.preview_locked is True
        assert session.snapshot()["html"] is None

    @pytest.mark.asyncio
    async def test_second_run_reuses_first(self, session, mock_gateway, record_store):
        await analyzed(session)
        await session.start_optimization()
        session.reset()
        await analyzed(session)

        await session.start_optimization()

        mock_gateway.optimize.assert_awaited_once()
        assert len(record_store.list_by_owner("user-1")) == 1

    @pytest.mark.asyncio
    async def test_anonymous_session_is_not_persisted(self, anonymous_session, record_store):
        await analyzed(anonymous_session)

        await anonymous_session.start_optimization()

        assert anonymous_session.stage == PipelineStage.COMPLETED
        assert anonymous_session.record_id is None
        assert record_store.list_all() == []

    @pytest.mark.asyncio
    async def test_gateway_failure_moves_to_error(self, session, mock_gateway, record_store):
        mock_gateway.optimize.side_effect = UpstreamError("timeout")
        await analyzed(session)

        stage = await session.start_optimization()

        assert stage == PipelineStage.ERROR
        assert record_store.list_all() == []

    @pytest.mark.asyncio
    async def test_store_failure_still_completes(self, mock_gateway, sample_html):
        store = MagicMock()
        store.find_recent.side_effect = StoreUnavailable("down")
        store.create.side_effect = StoreUnavailable("down")
        session = ProcessingSession(gateway=mock_gateway, store=store, owner_id="user-1")
        await analyzed(session)

        stage = await session.start_optimization()

        assert stage == PipelineStage.COMPLETED
        assert session.html == sample_html
        assert session.record_id is None

    @pytest.mark.asyncio
    async def test_paywall_disabled_unlocks_immediately(self, mock_gateway, record_store):
        session = ProcessingSession(
            gateway=mock_gateway, store=record_store, owner_id="user-1", paywall_enabled=False
        )
        await analyzed(session)

        await session.start_optimization()

        assert session.is_paid is True
        assert session.snapshot()["html"] is not None
        assert record_store.get(session.record_id).is_paid is False

    @pytest.mark.asyncio
    async def test_bypassed_record_locks_again_when_paywall_returns(self, mock_gateway, record_store):
        free = ProcessingSession(
            gateway=mock_gateway, store=record_store, owner_id="user-1", paywall_enabled=False
        )
        await analyzed(free)
        await free.start_optimization()

        paid_mode = ProcessingSession(gateway=mock_gateway, store=record_store, owner_id="user-1")
        await analyzed(paid_mode)
        await paid_mode.start_optimization()

        assert paid_mode.record_id == free.record_id
        assert paid_mode.is_paid is False
        assert paid_mode.preview_locked is True

    @pytest.mark.asyncio
    async def test_optimize_requires_analysis(self, session):
        with pytest.raises(InvalidTransition):
            await session.start_optimization()


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_overlapping_step_is_rejected(self, session, mock_gateway, sample_html):
        release = asyncio.Event()

        async def slow_optimize(*args, **kwargs):
            await release.wait()
            return sample_html

        mock_gateway.optimize = AsyncMock(side_effect=slow_optimize)
        await analyzed(session)

        first = asyncio.create_task(session.start_optimization())
        await asyncio.sleep(0)
        assert session.snapshot()["busy"] is True

        with pytest.raises(TransitionInProgress):
            await session.start_optimization()
        with pytest.raises(TransitionInProgress):
            session.reset()

        release.set()
        assert await first == PipelineStage.COMPLETED
        mock_gateway.optimize.assert_awaited_once()


class TestResumeFromHistory:

    def test_opens_completed(self, session, record_store, mock_gateway, sample_html):
        record = record_store.create("user-1", "cv.pdf", sample_html)

        stage = session.resume_from_history(record)

        assert stage == PipelineStage.COMPLETED
        assert session.html == sample_html
        assert session.filename == "cv.pdf"
        assert session.report is None
        mock_gateway.analyze.assert_not_called()
        mock_gateway.optimize.assert_not_called()

    def test_other_owner_is_rejected(self, session, record_store, sample_html):
        record = record_store.create("user-2", "cv.pdf", sample_html)

        with pytest.raises(RecordNotFound):
            session.resume_from_history(record)

    @pytest.mark.asyncio
    async def test_requires_idle(self, session, record_store, sample_html):
        record = record_store.create("user-1", "cv.pdf", sample_html)
        await analyzed(session)

        with pytest.raises(InvalidTransition):
            session.resume_from_history(record)


class TestSessionRegistry:

    def test_create_and_get(self, mock_gateway, record_store):
        registry = SessionRegistry(gateway_factory=lambda: mock_gateway, store=record_store)

        created = registry.create(owner_id="user-1", language=Language.AR)

        assert registry.get(created.id) is created
        assert created.language == Language.AR
        assert len(registry) == 1

    def test_snapshot_shape(self, mock_gateway):
        registry = SessionRegistry(gateway_factory=lambda: mock_gateway)
        snapshot = registry.create().snapshot()

        assert snapshot["stage"] == "IDLE"
        assert snapshot["language"] == "en"
        assert snapshot["html"] is None
        assert snapshot["busy"] is False


class TestUnexpectedFailures:
    """Any exception escaping an active step still ends in ERROR."""

    @pytest.mark.asyncio
    async def test_unexpected_analyze_exception(self, session, mock_gateway):
        mock_gateway.analyze.side_effect = OverflowError("cannot convert float infinity to integer")

        with pytest.raises(OverflowError):
            await session.select_file("cv.pdf", "application/pdf", PDF_BYTES)

        assert session.stage == PipelineStage.ERROR
        assert session.in_flight is False
        assert "infinity" in session.error

        session.reset()
        assert session.stage == PipelineStage.IDLE

    @pytest.mark.asyncio
    async def test_unexpected_optimize_exception(self, session, mock_gateway, record_store):
        mock_gateway.optimize.side_effect = RuntimeError("connection reset")
        await analyzed(session)

        with pytest.raises(RuntimeError):
            await session.start_optimization()

        assert session.stage == PipelineStage.ERROR
        assert session.in_flight is False
        assert record_store.list_all() == []

    @pytest.mark.asyncio
    async def test_infinite_score_from_model_ends_in_error(self, record_store):
        from config import Settings
        from services.ai_gateway import AIGateway
        from types import SimpleNamespace

        raw = (
            '{"score": 1e999, "grammarIssues": [], "structureGaps": [], '
            '"atsCompatibility": "High", "impactOptimizations": [], "summary": "ok"}'
        )

        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=raw))]
        ))
        gateway = AIGateway(settings=Settings(openai_api_key="test-key"), client=client)
        session = ProcessingSession(gateway=gateway, store=record_store, owner_id="user-1")

        stage = await session.select_file("cv.pdf", "application/pdf", PDF_BYTES)

        assert stage == PipelineStage.ERROR
        assert session.report is None
        assert session.in_flight is False


class TestOpenFromHistory:

    @pytest.mark.asyncio
    async def test_opens_from_completed(self, session, record_store, sample_html):
        older = record_store.create("user-1", "old.pdf", sample_html)
        await analyzed(session)
        await session.start_optimization()

        stage = session.open_from_history(older)

        assert stage == PipelineStage.COMPLETED
        assert session.record_id == older.id
        assert session.filename == "old.pdf"

    @pytest.mark.asyncio
    async def test_rejected_record_keeps_session_state(self, anonymous_session, record_store, sample_html):
        record = record_store.create("user-1", "cv.pdf", sample_html)
        await analyzed(anonymous_session)
        await anonymous_session.start_optimization()
        before = anonymous_session.snapshot()

        with pytest.raises(RecordNotFound):
            anonymous_session.open_from_history(record)

        assert anonymous_session.snapshot() == before
        assert anonymous_session.stage == PipelineStage.COMPLETED
        assert anonymous_session.html == sample_html


class TestModuleSource:

    def test_compiles_without_warnings(self):
        import warnings
        from services import pipeline

        with open(pipeline.__file__, encoding="utf-8") as f:
            source = f.read()

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, pipeline.__file__, "exec")
