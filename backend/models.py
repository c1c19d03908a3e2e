# models.py
import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number() -> str:
    """
    Human readable order reference: last 6 digits of the millisecond
    timestamp plus two random base-36 characters, e.g. ORD-483920K7.
    """
    millis = str(int(time.time() * 1000))[-6:]
    alphabet = string.digits + string.ascii_uppercase
    suffix = "".join(random.choice(alphabet) for _ in range(2))
    return f"ORD-{millis}{suffix}"


class Language(str, Enum):
    EN = "en"
    AR = "ar"

    @property
    def direction(self) -> str:
        return "rtl" if self is Language.AR else "ltr"


class OptimizationRecord(SQLModel, table=True):
    """
    One optimize invocation and its paywall status.

    html_content is written once by the optimize step and never revised;
    is_paid only ever moves from False to True.
    """
    __tablename__ = "optimizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    original_filename: str = Field(index=True)
    html_content: str
    is_paid: bool = Field(default=False)
    order_number: str = Field(default_factory=generate_order_number, index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


class UserAccount(SQLModel, table=True):
    __tablename__ = "user_accounts"

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    role: str = Field(default="individual_user")
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


# ---------- Non-persisted shapes ----------

class AnalysisReport(BaseModel):
    """Structured critique returned by the analyze step. Lives only in the session."""
    score: int = PydanticField(ge=0, le=100)
    grammarIssues: List[str] = PydanticField(default_factory=list, max_length=3)
    structureGaps: List[str] = PydanticField(default_factory=list, max_length=3)
    atsCompatibility: Literal["Low", "Medium", "High"]
    impactOptimizations: List[str] = PydanticField(default_factory=list, max_length=3)
    summary: str = ""


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str
