"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest before running tests.
It points the app at an in-memory SQLite database and removes the simulated
payment delays so the suite runs offline and fast.
"""

import os
import sys

# Add backend directory to path for imports FIRST
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Test defaults win over any local .env
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("OPENAI_API_KEY", "test-api-key-for-testing")
os.environ["PAYMENT_PROCESSING_DELAY"] = "0"
os.environ["PAYMENT_SUCCESS_DELAY"] = "0"
os.environ["PAYWALL_ENABLED"] = "true"

import pytest
from unittest.mock import AsyncMock, MagicMock

from db import build_engine, init_db
from models import AnalysisReport
from services.record_store import OptimizationRecordStore, UserDirectory


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires real OpenAI access)"
    )


# ============================================================================
# FIXTURES - Reusable test setup components
# ============================================================================

SAMPLE_HTML = (
    '<!DOCTYPE html><html dir="ltr"><head><title>Resume</title>'
    "<style>body { font-family: Arial; }</style></head><body>"
    "<h1>Jane Doe</h1><p>jane@example.com | Cairo</p>"
    "<h2>Experience</h2><h3>Team Lead, Acme</h3>"
    "<ul><li>Led a team of 8 engineers</li><li>Increased sales by 15%</li></ul>"
    "</body></html>"
)


@pytest.fixture
def memory_engine():
    """Fresh in-memory database with all tables created."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def record_store(memory_engine):
    return OptimizationRecordStore(memory_engine)


@pytest.fixture
def user_directory(memory_engine):
    return UserDirectory(memory_engine)


@pytest.fixture
def sample_report():
    return AnalysisReport(
        score=62,
        grammarIssues=["Inconsistent tense in experience section"],
        structureGaps=["Missing LinkedIn URL"],
        atsCompatibility="Medium",
        impactOptimizations=["Quantify results"],
        summary="Optimizing will surface your leadership impact.",
    )


@pytest.fixture
def sample_html():
    return SAMPLE_HTML


@pytest.fixture
def mock_gateway(sample_report, sample_html):
    """AI gateway double with successful analyze/optimize calls."""
    gateway = MagicMock()
    gateway.analyze = AsyncMock(return_value=sample_report)
    gateway.optimize = AsyncMock(return_value=sample_html)
    gateway.chat = AsyncMock(return_value="Use action verbs.")
    return gateway
