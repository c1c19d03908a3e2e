"""
Test suite for the Optimization Record Store and User Directory

Tests:
1. Records get an id, an order number and a creation time on create
2. find_recent returns the newest record for (owner, filename)
3. mark_paid only ever moves is_paid from False to True
4. Database failures surface as StoreUnavailable
5. User roles can be read and changed

Run tests with: pytest backend/tests/test_record_store.py -v
"""

import pytest
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
import sys
import os

# Add backend directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from errors import RecordNotFound, StoreUnavailable
from models import OptimizationRecord, generate_order_number


ORDER_NUMBER_RE = re.compile(r"^ORD-\d{6}[0-9A-Z]{2}$")


def insert_record(engine, owner_id, filename, minutes_ago, html="<p>x</p>"):
    record = OptimizationRecord(
        owner_id=owner_id,
        original_filename=filename,
        html_content=html,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )
    with Session(engine) as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    return record


class TestOrderNumber:

    def test_format(self):
        for _ in range(20):
            assert ORDER_NUMBER_RE.match(generate_order_number())


class TestCreateAndGet:

    def test_create_assigns_identity(self, record_store, sample_html):
        record = record_store.create("user-1", "cv.pdf", sample_html)

        assert record.id
        assert ORDER_NUMBER_RE.match(record.order_number)
        assert record.created_at is not None
        assert record.is_paid is False

    def test_get_round_trip(self, record_store, sample_html):
        created = record_store.create("user-1", "cv.pdf", sample_html)

        fetched = record_store.get(created.id)

        assert fetched.html_content == sample_html
        assert fetched.owner_id == "user-1"

    def test_get_unknown_raises(self, record_store):
        with pytest.raises(RecordNotFound):
            record_store.get("does-not-exist")


class TestFindRecent:

    def test_returns_newest_for_owner_and_filename(self, record_store, memory_engine):
        insert_record(memory_engine, "user-1", "cv.pdf", minutes_ago=30, html="<p>old</p>")
        newest = insert_record(memory_engine, "user-1", "cv.pdf", minutes_ago=1, html="<p>new</p>")
        insert_record(memory_engine, "user-1", "other.pdf", minutes_ago=0)
        insert_record(memory_engine, "user-2", "cv.pdf", minutes_ago=0)

        found = record_store.find_recent("user-1", "cv.pdf")

        assert found.id == newest.id
        assert found.html_content == "<p>new</p>"

    def test_returns_none_when_absent(self, record_store):
        assert record_store.find_recent("user-1", "cv.pdf") is None


class TestMarkPaid:

    def test_mark_paid_is_idempotent(self, record_store, sample_html):
        record = record_store.create("user-1", "cv.pdf", sample_html)

        first = record_store.mark_paid(record.id)
        second = record_store.mark_paid(record.id)

        assert first.is_paid is True
        assert second.is_paid is True
        assert record_store.get(record.id).is_paid is True

    def test_mark_paid_unknown_raises(self, record_store):
        with pytest.raises(RecordNotFound):
            record_store.mark_paid("missing")


class TestListing:

    def test_list_by_owner_newest_first(self, record_store, memory_engine):
        insert_record(memory_engine, "user-1", "a.pdf", minutes_ago=10)
        insert_record(memory_engine, "user-1", "b.pdf", minutes_ago=5)
        insert_record(memory_engine, "user-2", "c.pdf", minutes_ago=1)

        records = record_store.list_by_owner("user-1")

        assert [r.original_filename for r in records] == ["b.pdf", "a.pdf"]

    def test_list_all_respects_limit(self, record_store, memory_engine):
        for i in range(5):
            insert_record(memory_engine, f"user-{i}", "cv.pdf", minutes_ago=i)

        assert len(record_store.list_all(limit=3)) == 3


class TestStoreFailures:

    def test_database_error_becomes_store_unavailable(self, record_store):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        with patch("services.record_store.Session", side_effect=error):
            with pytest.raises(StoreUnavailable):
                record_store.list_by_owner("user-1")
            with pytest.raises(StoreUnavailable):
                record_store.create("user-1", "cv.pdf", "<p>x</p>")


class TestUserDirectory:

    def test_new_user_is_individual(self, user_directory):
        account = user_directory.get_or_create("user-1", "jane@example.com")

        assert account.role == "individual_user"
        assert account.email == "jane@example.com"

    def test_get_or_create_is_stable(self, user_directory):
        user_directory.get_or_create("user-1", "jane@example.com")
        user_directory.get_or_create("user-1")

        assert len(user_directory.list_users()) == 1

    def test_set_role(self, user_directory):
        user_directory.get_or_create("user-1")

        updated = user_directory.set_role("user-1", "super_admin")

        assert updated.role == "super_admin"
        assert user_directory.get_or_create("user-1").role == "super_admin"

    def test_set_role_unknown_user(self, user_directory):
        with pytest.raises(RecordNotFound):
            user_directory.set_role("ghost", "super_admin")
