# backend/services/pipeline.py
r"""
Processing Pipeline

Drives one uploaded resume through the stages:

    IDLE -> ANALYZING -> ANALYSIS_COMPLETED -> PROCESSING -> COMPLETED
                 \                                 \
                  +-> ERROR                         +-> ERROR

ERROR and COMPLETED go back to IDLE via reset(); IDLE can jump straight to
COMPLETED when a stored optimization is picked from history.

Only one step may run at a time per session. A second trigger while a gateway
call is outstanding raises TransitionInProgress instead of queueing.

Before calling optimize, the most recent stored record for the same
(owner, filename) is reused as-is, so the expensive model call is skipped.
"""

import base64
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from errors import (
    GatewayError,
    InvalidTransition,
    RecordNotFound,
    SessionNotFound,
    StoreUnavailable,
    TransitionInProgress,
    ValidationError,
)
from models import AnalysisReport, Language, OptimizationRecord

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

PDF_MIME_TYPE = "application/pdf"


class PipelineStage(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    ANALYSIS_COMPLETED = "ANALYSIS_COMPLETED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


ACTIVE_STAGES = (PipelineStage.ANALYZING, PipelineStage.PROCESSING)


def validate_upload(mime_type: Optional[str], size: int, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """
    Reject anything that is not a PDF or an image, or is larger than max_bytes.

    Raises:
        ValidationError: the file must not reach the AI gateway
    """
    mime_type = (mime_type or "").lower()
    if mime_type != PDF_MIME_TYPE and not mime_type.startswith("image/"):
        raise ValidationError("Please upload a PDF or an image of your resume.")
    if size <= 0:
        raise ValidationError("The uploaded file is empty.")
    if size > max_bytes:
        raise ValidationError(f"File is too large. Maximum size is {max_bytes // (1024 * 1024)}MB.")


class ProcessingSession:
    """
    Per-user pipeline state.

    Args:
        gateway: AI gateway used for analyze/optimize
        store: record store, or None when persistence is unavailable
        owner_id: account id; anonymous sessions are never persisted
        language: output language for the model
        paywall_enabled: when False every produced document starts unlocked
        max_upload_bytes: upload size limit
    """

    def __init__(
        self,
        gateway,
        store=None,
        owner_id: Optional[str] = None,
        language: Language = Language.EN,
        paywall_enabled: bool = True,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
    ):
        self.id = str(uuid4())
        self.gateway = gateway
        self.store = store
        self.owner_id = owner_id
        self.language = Language(language)
        self.paywall_enabled = paywall_enabled
        self.max_upload_bytes = max_upload_bytes
        self.created_at = datetime.now(timezone.utc)

        self.stage = PipelineStage.IDLE
        self.in_flight = False
        self.payment_step = None
        self._clear()

    def _clear(self):
        self.filename: Optional[str] = None
        self.file_base64: Optional[str] = None
        self.mime_type: Optional[str] = None
        self.instructions: Optional[str] = None
        self.report: Optional[AnalysisReport] = None
        self.html: Optional[str] = None
        self.record_id: Optional[str] = None
        self.order_number: Optional[str] = None
        self.is_paid = False
        self.error: Optional[str] = None
        self.payment_step = None

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @contextmanager
    def guard(self):
        """
        Mark the session busy for the duration of one step.

        An exception escaping an active step (ANALYZING or PROCESSING) still
        moves the session to ERROR before it propagates.
        """
        if self.in_flight:
            raise TransitionInProgress("Another step is still running for this resume.")
        self.in_flight = True
        try:
            yield
        except Exception as e:
            if self.stage in ACTIVE_STAGES:
                self._fail(e)
            raise
        finally:
            self.in_flight = False

    def _require(self, *stages: PipelineStage):
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise InvalidTransition(f"Cannot do this while {self.stage.value} (expected {allowed}).")

    def _fail(self, error: Exception):
        message = getattr(error, "message", None) or str(error) or "An unexpected error occurred."
        logger.error(f"Session {self.id} failed during {self.stage.value}: {message}")
        self.error = message
        self.stage = PipelineStage.ERROR

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def select_file(self, filename: str, mime_type: str, data: bytes) -> PipelineStage:
        """
        IDLE -> ANALYZING -> ANALYSIS_COMPLETED (or ERROR).

        A file that fails validation raises ValidationError and leaves the
        session in IDLE without contacting the gateway.
        """
        with self.guard():
            self._require(PipelineStage.IDLE)
            validate_upload(mime_type, len(data), self.max_upload_bytes)

            self.error = None
            self.is_paid = False
            self.filename = filename
            self.mime_type = mime_type
            self.file_base64 = base64.b64encode(data).decode("ascii")
            self.stage = PipelineStage.ANALYZING
            logger.info(f"Session {self.id}: analyzing {filename} ({len(data):,} bytes)")

            try:
                self.report = await self.gateway.analyze(self.file_base64, mime_type, self.language.value)
            except GatewayError as e:
                self._fail(e)
                return self.stage

            self.stage = PipelineStage.ANALYSIS_COMPLETED
            logger.info(f"Session {self.id}: analysis completed (score={self.report.score})")
            return self.stage

    def _find_reusable_record(self) -> Optional[OptimizationRecord]:
        if not (self.owner_id and self.store):
            return None
        try:
            return self.store.find_recent(self.owner_id, self.filename)
        except StoreUnavailable as e:
            logger.error(f"Skipping reuse lookup for session {self.id}: {e}")
            return None

    def _apply_record(self, record: OptimizationRecord):
        self.html = record.html_content
        self.filename = record.original_filename
        self.record_id = record.id
        self.order_number = record.order_number
        self.is_paid = bool(record.is_paid) or not self.paywall_enabled

    async def start_optimization(self, instructions: Optional[str] = None) -> PipelineStage:
        """
        ANALYSIS_COMPLETED -> PROCESSING -> COMPLETED (or ERROR).

        Reuses the most recent stored record for (owner, filename) when one
        exists; otherwise calls the gateway and stores the new result.
        """
        with self.guard():
            self._require(PipelineStage.ANALYSIS_COMPLETED)

            self.error = None
            self.instructions = (instructions or "").strip() or None
            self.stage = PipelineStage.PROCESSING

            existing = self._find_reusable_record()
            if existing is not None:
                logger.info(f"Session {self.id}: reusing optimization {existing.id} for {self.filename}")
                self._apply_record(existing)
                self.stage = PipelineStage.COMPLETED
                return self.stage

            try:
                html = await self.gateway.optimize(
                    self.file_base64, self.mime_type, self.language.value, self.instructions
                )
            except GatewayError as e:
                self._fail(e)
                return self.stage

            self.html = html
            # Only a confirmed payment persists is_paid; the bypass lives in the session
            self.is_paid = not self.paywall_enabled

            if self.owner_id and self.store:
                try:
                    record = self.store.create(self.owner_id, self.filename, html)
                    self.record_id = record.id
                    self.order_number = record.order_number
                except StoreUnavailable as e:
                    logger.error(f"Could not persist optimization for session {self.id}: {e}")

            self.stage = PipelineStage.COMPLETED
            logger.info(f"Session {self.id}: optimization completed ({len(html):,} chars)")
            return self.stage

    def resume_from_history(self, record: OptimizationRecord) -> PipelineStage:
        """IDLE -> COMPLETED using a stored record; no gateway call."""
        with self.guard():
            self._require(PipelineStage.IDLE)
            if self.owner_id is None or record.owner_id != self.owner_id:
                raise RecordNotFound(f"Optimization {record.id} not found")

            self._clear()
            self._apply_record(record)
            self.stage = PipelineStage.COMPLETED
            return self.stage

    def open_from_history(self, record: OptimizationRecord) -> PipelineStage:
        """
        Reset and resume `record` from any stage.

        Ownership is checked first, so a rejected record leaves the session
        exactly as it was.
        """
        if self.owner_id is None or record.owner_id != self.owner_id:
            raise RecordNotFound(f"Optimization {record.id} not found")
        self.reset()
        return self.resume_from_history(record)

    def reset(self) -> PipelineStage:
        """Any stage -> IDLE, dropping uploaded bytes, report, html and paid flag."""
        if self.in_flight:
            raise TransitionInProgress("Please wait for the current step to finish.")
        self._clear()
        self.stage = PipelineStage.IDLE
        return self.stage

    def set_language(self, language: Language):
        if self.in_flight:
            raise TransitionInProgress("Please wait for the current step to finish.")
        self.language = Language(language)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def preview_locked(self) -> bool:
        return self.stage == PipelineStage.COMPLETED and not self.is_paid

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the session for the API."""
        return {
            "sessionId": self.id,
            "stage": self.stage.value,
            "language": self.language.value,
            "filename": self.filename,
            "analysis": self.report.model_dump() if self.report else None,
            "instructions": self.instructions,
            "isPaid": self.is_paid,
            "previewLocked": self.preview_locked,
            "html": self.html if (self.is_paid and self.stage == PipelineStage.COMPLETED) else None,
            "recordId": self.record_id,
            "orderNumber": self.order_number,
            "paymentStep": self.payment_step.value if self.payment_step else None,
            "error": self.error,
            "busy": self.in_flight,
        }


class SessionRegistry:
    """Process-local map of live sessions."""

    def __init__(self, gateway_factory, store=None, paywall_enabled: bool = True,
                 max_upload_bytes: int = MAX_UPLOAD_BYTES):
        self.gateway_factory = gateway_factory
        self.store = store
        self.paywall_enabled = paywall_enabled
        self.max_upload_bytes = max_upload_bytes
        self._sessions: Dict[str, ProcessingSession] = {}

    def create(self, owner_id: Optional[str] = None, language: Language = Language.EN) -> ProcessingSession:
        session = ProcessingSession(
            gateway=self.gateway_factory(),
            store=self.store,
            owner_id=owner_id,
            language=language,
            paywall_enabled=self.paywall_enabled,
            max_upload_bytes=self.max_upload_bytes,
        )
        self._sessions[session.id] = session
        logger.info(f"Created session {session.id} (owner={owner_id or 'anonymous'})")
        return session

    def get(self, session_id: str) -> ProcessingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def discard(self, session_id: str):
        self._sessions.pop(session_id, None)

    def __len__(self):
        return len(self._sessions)
