"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# Add the repository root to path for ``src.`` imports
root_path = Path(__file__).parent.parent
sys.path.insert(0, str(root_path))

from src.core.config import EligibilitySettings  # noqa: E402
from src.services.edi.payer_profiles import (  # noqa: E402
    InMemoryPayerProfileStore,
    InMemoryProviderStore,
)
from src.services.edi.x12_270_generator import PatientQuery  # noqa: E402


FIXED_TODAY = date(2026, 10, 19)
FIXED_NOW = datetime(2026, 10, 19, 9, 30, 0)


@pytest.fixture
def fixed_today() -> date:
    """Reference date used for coverage expiry and DOB checks."""
    return FIXED_TODAY


@pytest.fixture
def fixed_now() -> datetime:
    """Local timestamp used for ISA/GS/BHT dates."""
    return FIXED_NOW


@pytest.fixture
def payer_store() -> InMemoryPayerProfileStore:
    """Built-in payer profiles."""
    return InMemoryPayerProfileStore()


@pytest.fixture
def provider_store() -> InMemoryProviderStore:
    """Built-in provider identities."""
    return InMemoryProviderStore()


@pytest.fixture
def eligibility_settings() -> EligibilitySettings:
    """Office Ally settings with test credentials, isolated from .env."""
    return EligibilitySettings(
        _env_file=None,
        OFFICE_ALLY_USERNAME="moonlit_test",
        OFFICE_ALLY_PASSWORD="s3cret&<pw>",
        UHIN_USERNAME="uhin_test",
        UHIN_PASSWORD="uhin_pw",
        REQUEST_TIMEOUT_SECONDS=15.0,
        BATCH_CONCURRENCY=2,
    )


@pytest.fixture
def medicaid_query() -> PatientQuery:
    """Utah Medicaid patient searched by name and DOB."""
    return PatientQuery(
        first_name="Jeremy",
        last_name="Montoya",
        date_of_birth=date(1984, 7, 17),
        gender="M",
        service_date=FIXED_TODAY,
    )


@pytest.fixture
def commercial_query() -> PatientQuery:
    """Aetna patient with a member ID."""
    return PatientQuery(
        first_name="Eleanor",
        last_name="Hopkins",
        date_of_birth=date(1983, 5, 15),
        gender="F",
        member_id="W12345678",
        service_date=FIXED_TODAY,
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
