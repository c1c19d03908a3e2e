# backend/services/__init__.py
"""
Services Package for the CV Optimizer

    - ai_gateway: analyze / optimize / chat against the OpenAI API
    - record_store: persisted optimizations and user accounts
    - pipeline: per-session processing state machine
    - export_transcoder: print, PDF and RTL-aware DOCX output
    - paywall: payment flow and gated deliverables
    - authorization: role -> action permission checks
    - user_context: request-scoped current user
"""

from .ai_gateway import (
    AIGateway,
    get_ai_gateway,
    reset_ai_gateway,
)
from .record_store import OptimizationRecordStore, UserDirectory
from .pipeline import (
    PipelineStage,
    ProcessingSession,
    SessionRegistry,
    validate_upload,
)
from .export_transcoder import (
    build_print_document,
    render_pdf,
    convert_to_docx,
    force_rtl_blocks,
    html_to_text,
)
from .paywall import (
    CardDetails,
    PaymentGateway,
    PaymentStep,
    PaywallGate,
    SimulatedPaymentGateway,
)
from .authorization import Action, Role, is_allowed, require
from .user_context import UserContext, get_current_user

__all__ = [
    # AI gateway
    "AIGateway",
    "get_ai_gateway",
    "reset_ai_gateway",
    # Persistence
    "OptimizationRecordStore",
    "UserDirectory",
    # Pipeline
    "PipelineStage",
    "ProcessingSession",
    "SessionRegistry",
    "validate_upload",
    # Export
    "build_print_document",
    "render_pdf",
    "convert_to_docx",
    "force_rtl_blocks",
    "html_to_text",
    # Paywall
    "CardDetails",
    "PaymentGateway",
    "PaymentStep",
    "PaywallGate",
    "SimulatedPaymentGateway",
    # Access control
    "Action",
    "Role",
    "is_allowed",
    "require",
    "UserContext",
    "get_current_user",
]
