# backend/services/record_store.py
"""
Optimization Record Store

Durable record of each optimize invocation and its paywall status, plus the
small user directory the admin views rely on.

Writes are append-only (`create`) or single-field idempotent updates
(`mark_paid`, `set_role`), so no locking is needed. Every database failure is
raised as StoreUnavailable; callers decide how to degrade.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from errors import RecordNotFound, StoreUnavailable
from models import OptimizationRecord, UserAccount

logger = logging.getLogger(__name__)


class OptimizationRecordStore:
    def __init__(self, engine):
        self.engine = engine

    def create(self, owner_id: str, filename: str, html: str, is_paid: bool = False) -> OptimizationRecord:
        """Persist a new record; id, order number and timestamp are assigned here."""
        record = OptimizationRecord(
            owner_id=owner_id,
            original_filename=filename,
            html_content=html,
            is_paid=is_paid,
        )
        try:
            with Session(self.engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create optimization record for {owner_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        logger.info(f"Created optimization record {record.id} ({record.order_number})")
        return record

    def get(self, record_id: str) -> OptimizationRecord:
        try:
            with Session(self.engine) as session:
                record = session.get(OptimizationRecord, record_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

        if record is None:
            raise RecordNotFound(f"Optimization {record_id} not found")
        return record

    def find_recent(self, owner_id: str, filename: str) -> Optional[OptimizationRecord]:
        """Most recently created record for (owner, filename), if any."""
        statement = (
            select(OptimizationRecord)
            .where(
                OptimizationRecord.owner_id == owner_id,
                OptimizationRecord.original_filename == filename,
            )
            .order_by(OptimizationRecord.created_at.desc())
            .limit(1)
        )
        try:
            with Session(self.engine) as session:
                return session.exec(statement).first()
        except SQLAlchemyError as e:
            logger.error(f"Recent-record lookup failed for {owner_id}/{filename}: {e}")
            raise StoreUnavailable(str(e)) from e

    def mark_paid(self, record_id: str) -> OptimizationRecord:
        """Set is_paid=True. Calling it again on a paid record is a no-op."""
        try:
            with Session(self.engine) as session:
                record = session.get(OptimizationRecord, record_id)
                if record is None:
                    raise RecordNotFound(f"Optimization {record_id} not found")
                if not record.is_paid:
                    record.is_paid = True
                    session.add(record)
                    session.commit()
                    session.refresh(record)
                    logger.info(f"Optimization {record_id} marked as paid")
                return record
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark optimization {record_id} as paid: {e}")
            raise StoreUnavailable(str(e)) from e

    def list_by_owner(self, owner_id: str) -> List[OptimizationRecord]:
        statement = (
            select(OptimizationRecord)
            .where(OptimizationRecord.owner_id == owner_id)
            .order_by(OptimizationRecord.created_at.desc())
        )
        try:
            with Session(self.engine) as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            logger.error(f"History lookup failed for {owner_id}: {e}")
            raise StoreUnavailable(str(e)) from e

    def list_all(self, limit: int = 100) -> List[OptimizationRecord]:
        statement = (
            select(OptimizationRecord)
            .order_by(OptimizationRecord.created_at.desc())
            .limit(limit)
        )
        try:
            with Session(self.engine) as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e


class UserDirectory:
    """Accounts and their platform role."""

    def __init__(self, engine):
        self.engine = engine

    def get_or_create(self, user_id: str, email: Optional[str] = None) -> UserAccount:
        try:
            with Session(self.engine) as session:
                account = session.get(UserAccount, user_id)
                if account is None:
                    account = UserAccount(id=user_id, email=email)
                    session.add(account)
                    session.commit()
                    session.refresh(account)
                return account
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    def set_role(self, user_id: str, role: str) -> UserAccount:
        try:
            with Session(self.engine) as session:
                account = session.get(UserAccount, user_id)
                if account is None:
                    raise RecordNotFound(f"User {user_id} not found")
                account.role = role
                session.add(account)
                session.commit()
                session.refresh(account)
                return account
        except SQLAlchemyError as e:
            logger.error(f"Failed to update role for {user_id}: {e}")
            raise StoreUnavailable(str(e)) from e

    def list_users(self) -> List[UserAccount]:
        try:
            with Session(self.engine) as session:
                return list(session.exec(select(UserAccount).order_by(UserAccount.created_at.desc())).all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e
