# HTTP API for the CV optimizer: upload -> analyze -> optimize -> pay -> export

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field

import db
from config import get_settings
from errors import (
    CVOptimizerError,
    ExportError,
    GatewayError,
    InvalidTransition,
    NotAuthorized,
    PaymentError,
    PaymentRequired,
    RecordNotFound,
    SessionNotFound,
    StoreUnavailable,
    TransitionInProgress,
    ValidationError,
)
from models import ChatTurn, Language, OptimizationRecord
from prompts.resume_prompts import PromptTemplates
from services.ai_gateway import get_ai_gateway
from services.authorization import Action, Role, default_admin_tab, parse_role, require
from services.export_transcoder import DOCX_FILENAME, DOCX_MIME_TYPE, PDF_FILENAME
from services.paywall import CardDetails, PaywallGate, SimulatedPaymentGateway
from services.pipeline import ProcessingSession, SessionRegistry, validate_upload
from services.record_store import OptimizationRecordStore, UserDirectory
from services.user_context import UserContext, get_current_user

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ---------- Shared services ----------
_record_store: Optional[OptimizationRecordStore] = None
_user_directory: Optional[UserDirectory] = None
_paywall_gate: Optional[PaywallGate] = None
_session_registry: Optional[SessionRegistry] = None


def get_record_store() -> OptimizationRecordStore:
    global _record_store
    if _record_store is None:
        _record_store = OptimizationRecordStore(db.engine)
    return _record_store


def get_user_directory() -> UserDirectory:
    global _user_directory
    if _user_directory is None:
        _user_directory = UserDirectory(db.engine)
    return _user_directory


def get_paywall_gate() -> PaywallGate:
    global _paywall_gate
    if _paywall_gate is None:
        settings = get_settings()
        _paywall_gate = PaywallGate(
            payment_gateway=SimulatedPaymentGateway(
                processing_delay=settings.payment_processing_delay,
                success_delay=settings.payment_success_delay,
            ),
            store=get_record_store(),
            enabled=settings.paywall_enabled,
            amount=settings.price_amount,
            currency=settings.price_currency,
        )
    return _paywall_gate


def get_session_registry() -> SessionRegistry:
    global _session_registry
    if _session_registry is None:
        settings = get_settings()
        # Sessions follow the gate so the two never disagree on the paywall switch
        _session_registry = SessionRegistry(
            gateway_factory=get_ai_gateway,
            store=get_record_store(),
            paywall_enabled=get_paywall_gate().enabled,
            max_upload_bytes=settings.max_upload_bytes,
        )
    return _session_registry


# ---------- FastAPI & CORS ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    logger.info("Database tables ready")
    yield


app = FastAPI(title="CV Optimizer", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS = [
    (ValidationError, 400),
    (PaymentRequired, 402),
    (PaymentError, 402),
    (NotAuthorized, 403),
    (SessionNotFound, 404),
    (RecordNotFound, 404),
    (InvalidTransition, 409),
    (TransitionInProgress, 409),
    (ExportError, 422),
    (GatewayError, 502),
    (StoreUnavailable, 503),
]


@app.exception_handler(CVOptimizerError)
async def handle_app_error(request: Request, exc: CVOptimizerError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error": exc.__class__.__name__},
    )


# ---------- Request / response shapes ----------
class CreateSessionReq(BaseModel):
    language: Language = Language.EN


class LanguageReq(BaseModel):
    language: Language


class OptimizeReq(BaseModel):
    instructions: Optional[str] = Field(default=None, max_length=4000)


class ChatReq(BaseModel):
    messages: List[ChatTurn]
    language: Language = Language.EN


class ChatResp(BaseModel):
    text: str
    fallback: bool = False


class RoleUpdateReq(BaseModel):
    role: Role


def record_summary(record: OptimizationRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "ownerId": record.owner_id,
        "filename": record.original_filename,
        "isPaid": record.is_paid,
        "orderNumber": record.order_number,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


def load_session(session_id: str, user: UserContext, registry: SessionRegistry) -> ProcessingSession:
    session = registry.get(session_id)
    # Sessions of signed-in users are private to them
    if session.owner_id and session.owner_id != user.user_id:
        raise SessionNotFound(f"Session {session_id} not found")
    return session


def caller_role(user: UserContext, directory: UserDirectory) -> Role:
    if not user.is_authenticated:
        raise NotAuthorized("Please sign in to access the admin panel.")
    return parse_role(directory.get_or_create(user.user_id, user.email).role)


# ---------- Health & public config ----------
@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


@app.get("/api/config")
def public_config(gate: PaywallGate = Depends(get_paywall_gate)) -> Dict[str, Any]:
    settings = get_settings()
    return {
        "paywallEnabled": gate.enabled,
        "price": gate.amount,
        "currency": gate.currency,
        "maxUploadBytes": settings.max_upload_bytes,
        "acceptedTypes": ["application/pdf", "image/*"],
        "languages": [lang.value for lang in Language],
    }


# ---------- Pipeline ----------
@app.post("/api/sessions")
def create_session(
    req: CreateSessionReq,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    if user.is_authenticated:
        try:
            directory.get_or_create(user.user_id, user.email)
        except StoreUnavailable as e:
            logger.error(f"Could not register user {user.user_id}: {e}")

    session = registry.create(owner_id=user.user_id, language=req.language)
    return session.snapshot()


@app.get("/api/sessions/{session_id}")
def get_session_state(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Dict[str, Any]:
    return load_session(session_id, user, registry).snapshot()


@app.post("/api/sessions/{session_id}/language")
def set_session_language(
    session_id: str,
    req: LanguageReq,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    session.set_language(req.language)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/upload")
async def upload_resume(
    session_id: str,
    file: UploadFile = File(...),
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    # Reject by the declared size before buffering the body
    if file.size is not None:
        validate_upload(file.content_type, file.size, session.max_upload_bytes)
    data = await file.read()
    await session.select_file(file.filename or "resume", file.content_type, data)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/optimize")
async def optimize_resume(
    session_id: str,
    req: OptimizeReq,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    await session.start_optimization(req.instructions)
    return session.snapshot()


@app.post("/api/sessions/{session_id}/reset")
def reset_session(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    session.reset()
    return session.snapshot()


@app.get("/api/sessions/{session_id}/preview", response_class=HTMLResponse)
def preview_resume(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
):
    preview = gate.render_preview(load_session(session_id, user, registry))
    if preview is None:
        raise InvalidTransition("There is no completed resume to preview.")
    return HTMLResponse(preview)


# ---------- Paywall ----------
@app.post("/api/sessions/{session_id}/payment/start")
def start_payment(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    return {**gate.begin_payment(session), "paymentStep": session.payment_step.value if session.payment_step else None}


@app.post("/api/sessions/{session_id}/payment")
async def confirm_payment(
    session_id: str,
    card: CardDetails,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    await gate.confirm_payment(session, card)
    return session.snapshot()


# ---------- Export (gated) ----------
def _locked() -> PaymentRequired:
    return PaymentRequired("Unlock the optimized resume to export it.")


@app.get("/api/sessions/{session_id}/export/pdf")
def export_pdf(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
):
    pdf_bytes = gate.export_pdf(load_session(session_id, user, registry))
    if pdf_bytes is None:
        raise _locked()
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{PDF_FILENAME}"'},
    )


@app.get("/api/sessions/{session_id}/export/print", response_class=HTMLResponse)
def export_print(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
):
    document = gate.print_document(load_session(session_id, user, registry))
    if document is None:
        raise _locked()
    return HTMLResponse(document)


@app.get("/api/sessions/{session_id}/export/docx")
def export_docx(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
):
    docx_bytes = gate.export_docx(load_session(session_id, user, registry))
    if docx_bytes is None:
        raise _locked()
    return Response(
        content=docx_bytes,
        media_type=DOCX_MIME_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{DOCX_FILENAME}"'},
    )


@app.get("/api/sessions/{session_id}/copy/text")
def copy_text(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
) -> Dict[str, str]:
    text = gate.copy_text(load_session(session_id, user, registry))
    if text is None:
        raise _locked()
    return {"text": text}


@app.get("/api/sessions/{session_id}/copy/html")
def copy_html(
    session_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    gate: PaywallGate = Depends(get_paywall_gate),
) -> Dict[str, str]:
    html = gate.copy_html(load_session(session_id, user, registry))
    if html is None:
        raise _locked()
    return {"html": html}


# ---------- History ----------
@app.get("/api/history")
def list_history(
    user: UserContext = Depends(get_current_user),
    store: OptimizationRecordStore = Depends(get_record_store),
) -> List[Dict[str, Any]]:
    if not user.is_authenticated:
        return []
    try:
        records = store.list_by_owner(user.user_id)
    except StoreUnavailable as e:
        logger.error(f"Error fetching history for {user.user_id}: {e}")
        return []
    return [record_summary(r) for r in records]


@app.post("/api/sessions/{session_id}/history/{record_id}")
def resume_history_item(
    session_id: str,
    record_id: str,
    user: UserContext = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    store: OptimizationRecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    session = load_session(session_id, user, registry)
    record = store.get(record_id)
    if record.owner_id != user.user_id:
        raise RecordNotFound(f"Optimization {record_id} not found")

    session.open_from_history(record)
    return session.snapshot()


# ---------- Career consultant chat ----------
@app.post("/api/chat", response_model=ChatResp)
async def chat_with_consultant(req: ChatReq):
    if not req.messages:
        raise ValidationError("Please type a message first.")

    history = req.messages[-get_settings().chat_history_limit:]
    try:
        text = await get_ai_gateway().chat(history, req.language.value)
    except GatewayError as e:
        logger.error(f"Chat failed: {e.message}")
        return ChatResp(text=PromptTemplates.chat_fallback(req.language.value), fallback=True)

    return ChatResp(text=text or PromptTemplates.chat_fallback(req.language.value), fallback=not text)


# ---------- Admin ----------
@app.get("/api/admin/me")
def admin_me(
    user: UserContext = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    role = caller_role(user, directory)
    return {"userId": user.user_id, "role": role.value, "defaultTab": default_admin_tab(role)}


@app.get("/api/admin/optimizations")
def admin_optimizations(
    limit: int = 100,
    user: UserContext = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
    store: OptimizationRecordStore = Depends(get_record_store),
) -> List[Dict[str, Any]]:
    require(caller_role(user, directory), Action.VIEW_OPTIMIZATIONS)
    return [record_summary(r) for r in store.list_all(limit=max(1, min(limit, 500)))]


@app.get("/api/admin/users")
def admin_users(
    user: UserContext = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
) -> List[Dict[str, Any]]:
    require(caller_role(user, directory), Action.MANAGE_USERS)
    return [
        {"id": u.id, "email": u.email, "role": parse_role(u.role).value, "createdAt": u.created_at.isoformat()}
        for u in directory.list_users()
    ]


@app.put("/api/admin/users/{user_id}/role")
def admin_set_role(
    user_id: str,
    req: RoleUpdateReq,
    user: UserContext = Depends(get_current_user),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    require(caller_role(user, directory), Action.MANAGE_USERS)
    account = directory.set_role(user_id, req.role.value)
    logger.info(f"{user.user_id} set role of {user_id} to {req.role.value}")
    return {"id": account.id, "email": account.email, "role": account.role}
