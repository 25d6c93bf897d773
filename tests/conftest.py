"""
Shared test configuration for identiq.

Fixtures build detections, person records and engines with small, explicit
limits so tests never depend on the environment's IDENTIQ_* settings.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from identiq.config import Settings, get_settings
from identiq.core import Identiq
from identiq.pipeline.merger import merge_person
from identiq.schemas import PersonDetection


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_identiq_logging():
    """setup_logging() detaches our loggers from root; undo it after each test."""
    yield
    for name in ("identiq", "audit.identiq"):
        target = logging.getLogger(name)
        target.handlers.clear()
        target.propagate = True
        target.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """get_settings() is lru_cached; keep tests independent."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# DATA BUILDERS
# =============================================================================

@pytest.fixture
def observed_at():
    """Fixed turn timestamp."""
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def later(observed_at):
    """A timestamp one hour after observed_at."""
    return observed_at + timedelta(hours=1)


@pytest.fixture
def make_detection():
    """Factory for PersonDetection with sensible defaults."""
    def _make(matched_name="John Smith", confidence=0.9, **kwargs):
        return PersonDetection(matched_name=matched_name, confidence=confidence, **kwargs)
    return _make


@pytest.fixture
def make_record(make_detection, observed_at):
    """Factory for a fresh PersonRecord built through the merger."""
    def _make(person_id=1, matched_name="John Smith", **kwargs):
        detection = make_detection(matched_name=matched_name, **kwargs)
        return merge_person(None, detection, person_id=person_id, observed_at=observed_at)
    return _make


@pytest.fixture
def john_and_jane(make_record):
    """Two persons: John Smith (1) with an email, Jane Doe (2) with a phone."""
    return {
        1: make_record(1, "John Smith", emails=["john@x.com"]),
        2: make_record(2, "Jane Doe", phones=["555-1234"]),
    }


# =============================================================================
# ENGINE
# =============================================================================

@pytest.fixture
def settings():
    """Small, explicit settings."""
    return Settings(
        max_sessions=3,
        history_window=4,
        session_lock_timeout_seconds=0.5,
    )


@pytest.fixture
def engine(settings):
    """Identiq engine, closed after the test."""
    instance = Identiq(settings=settings)
    yield instance
    instance.close()


@pytest.fixture
def turn1_payload():
    """First turn: John Smith introduces himself with an email."""
    return {
        "raw_text": "Hi, I'm John Smith, email john@x.com",
        "persons": [
            {
                "matched_name": "John Smith",
                "emails": ["john@x.com"],
                "confidence": 0.9,
            }
        ],
    }


@pytest.fixture
def turn2_payload():
    """Second turn: the same person adds a phone number."""
    return {
        "raw_text": "My phone is 555-1234",
        "persons": [
            {
                "matched_name": "John Smith",
                "phones": ["555-1234"],
                "confidence": 0.8,
            }
        ],
    }
