# backend/services/paywall.py
"""
Paywall Gate

Binary unlock controlling access to the optimized resume. A freshly produced
document is locked: the preview is blurred and every export/copy operation is
a no-op. Confirming a payment unlocks it for good, both in the session and
(best effort) in the record store.

Payment itself goes through a PaymentGateway collaborator. The shipped
SimulatedPaymentGateway only waits a fixed delay, so a real processor can be
plugged in without touching the pipeline.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from errors import InvalidTransition, PaymentError, RecordNotFound, StoreUnavailable
from services import export_transcoder
from services.pipeline import PipelineStage, ProcessingSession

logger = logging.getLogger(__name__)


class PaymentStep(str, Enum):
    DETAILS = "details"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class CardDetails(BaseModel):
    """Card-like form fields. Required, but never checked against a real processor."""
    name: str = Field(min_length=1)
    card_number: str = Field(min_length=1, alias="cardNumber")
    expiry: str = Field(min_length=1)
    cvv: str = Field(min_length=1)

    model_config = {"populate_by_name": True}

    @property
    def masked_number(self) -> str:
        digits = "".join(ch for ch in self.card_number if ch.isdigit())
        return f"**** {digits[-4:]}" if digits else "****"


class PaymentGateway(ABC):
    """External payment collaborator."""

    @abstractmethod
    async def initiate_charge(self, amount: int, currency: str, card: CardDetails) -> str:
        """Start a charge and return its id."""

    @abstractmethod
    async def confirm_charge(self, charge_id: str) -> bool:
        """Confirm a started charge; True when the money was captured."""


class SimulatedPaymentGateway(PaymentGateway):
    """
    Stand-in processor: every charge succeeds after fixed delays.

    Args:
        processing_delay: seconds spent in initiate_charge
        success_delay: seconds spent in confirm_charge
    """

    def __init__(self, processing_delay: float = 2.5, success_delay: float = 2.0):
        self.processing_delay = processing_delay
        self.success_delay = success_delay
        self.charges: Dict[str, Dict] = {}

    async def initiate_charge(self, amount: int, currency: str, card: CardDetails) -> str:
        charge_id = f"sim_{uuid4().hex[:16]}"
        self.charges[charge_id] = {"amount": amount, "currency": currency, "status": "pending"}
        logger.info(f"Simulated charge {charge_id}: {amount} {currency} on card {card.masked_number}")
        await asyncio.sleep(self.processing_delay)
        return charge_id

    async def confirm_charge(self, charge_id: str) -> bool:
        charge = self.charges.get(charge_id)
        if charge is None:
            return False
        await asyncio.sleep(self.success_delay)
        charge["status"] = "captured"
        return True


class PaywallGate:
    """
    Gate between a completed document and its deliverables.

    Args:
        payment_gateway: collaborator that takes the money
        store: record store used to persist the paid flag (optional)
        enabled: False turns the paywall off entirely
        amount: price charged per document
        currency: price currency
    """

    def __init__(self, payment_gateway: PaymentGateway, store=None, enabled: bool = True,
                 amount: int = 39, currency: str = "EGP"):
        self.payment_gateway = payment_gateway
        self.store = store
        self.enabled = enabled
        self.amount = amount
        self.currency = currency

    def begin_payment(self, session: ProcessingSession) -> Dict:
        """Open the payment form for a locked document."""
        if session.stage != PipelineStage.COMPLETED or not session.html:
            raise InvalidTransition("There is no completed resume to pay for.")
        if not session.is_paid:
            session.payment_step = PaymentStep.DETAILS
        return {"amount": self.amount, "currency": self.currency, "isPaid": session.is_paid}

    def is_unlocked(self, session: ProcessingSession) -> bool:
        return session.stage == PipelineStage.COMPLETED and bool(session.html) and session.is_paid

    async def confirm_payment(self, session: ProcessingSession, card: CardDetails) -> ProcessingSession:
        """
        details -> processing -> success, then unlock.

        Paying for an already unlocked document does not charge again.
        """
        if session.stage != PipelineStage.COMPLETED or not session.html:
            raise InvalidTransition("There is no completed resume to pay for.")
        if session.is_paid:
            return session

        with session.guard():
            session.payment_step = PaymentStep.PROCESSING
            try:
                charge_id = await self.payment_gateway.initiate_charge(self.amount, self.currency, card)
                captured = await self.payment_gateway.confirm_charge(charge_id)
            except PaymentError:
                session.payment_step = PaymentStep.FAILED
                raise
            if not captured:
                session.payment_step = PaymentStep.FAILED
                raise PaymentError("The payment could not be completed. Please try again.")

            session.payment_step = PaymentStep.SUCCESS
            self.unlock(session)

        return session

    def unlock(self, session: ProcessingSession):
        """Set the paid flag. Never reverts; store failures are logged only."""
        session.is_paid = True

        if session.record_id and self.store:
            try:
                self.store.mark_paid(session.record_id)
            except (StoreUnavailable, RecordNotFound) as e:
                logger.error(f"Failed to update payment status for {session.record_id}: {e}")

    # ------------------------------------------------------------------
    # Gated deliverables. Each returns None while the document is locked.
    # ------------------------------------------------------------------

    def render_preview(self, session: ProcessingSession) -> Optional[str]:
        """Print-styled preview; blurred and non-interactive while locked."""
        if session.stage != PipelineStage.COMPLETED or not session.html:
            return None

        document = export_transcoder.build_print_document(session.html, auto_print=False)
        if self.is_unlocked(session):
            return document

        blur = (
            "<style>body { filter: blur(10px) grayscale(0.2); user-select: none; "
            "pointer-events: none; transform: scale(0.98); }</style>"
        )
        return document.replace("</head>", f"{blur}\n</head>", 1)

    def print_document(self, session: ProcessingSession) -> Optional[str]:
        if not self.is_unlocked(session):
            return None
        return export_transcoder.build_print_document(session.html)

    def export_pdf(self, session: ProcessingSession) -> Optional[bytes]:
        if not self.is_unlocked(session):
            return None
        return export_transcoder.render_pdf(session.html)

    def export_docx(self, session: ProcessingSession) -> Optional[bytes]:
        if not self.is_unlocked(session):
            return None
        direction = "rtl" if (
            session.language.direction == "rtl" or export_transcoder.is_rtl_document(session.html)
        ) else "ltr"
        return export_transcoder.convert_to_docx(session.html, direction)

    def copy_text(self, session: ProcessingSession) -> Optional[str]:
        if not self.is_unlocked(session):
            return None
        return export_transcoder.html_to_text(session.html)

    def copy_html(self, session: ProcessingSession) -> Optional[str]:
        if not self.is_unlocked(session):
            return None
        return session.html
