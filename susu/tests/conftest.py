"""Pytest configuration and fixtures."""

from datetime import date
from uuid import UUID

import pytest

from susu.config.settings import Settings
from susu.service import SusuLedgerService
from susu.storage import InMemoryStorage

ACCOUNT_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_ACCOUNT_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
TODAY = date(2024, 3, 4)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def service(storage, settings):
    return SusuLedgerService(storage=storage, settings=settings)
