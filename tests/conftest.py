"""
Pytest configuration and shared fixtures for access engine tests.
"""

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from triage_access.application import build_coordinator  # noqa: E402
from triage_access.auth.coordinator import AccessCoordinator  # noqa: E402
from triage_access.auth.identity import IdentityClaims, StaticIdentityProvider  # noqa: E402
from triage_access.auth.session import SessionTokenSigner  # noqa: E402
from triage_access.config import (  # noqa: E402
    AccessConfig,
    CredentialConfig,
    ServiceTokenDefinition,
    SessionConfig,
)
from triage_access.store import MemoryAccessStore, StoreGuard  # noqa: E402

from support import (  # noqa: E402
    IDENTITY_TOKEN,
    IDENTITY_UID,
    SERVICE_TOKEN,
    SESSION_SECRET,
    FixedClock,
)


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to a whole minute mid-month."""
    return FixedClock(datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def store() -> MemoryAccessStore:
    """Fresh in-memory store."""
    return MemoryAccessStore()


@pytest.fixture
def guard() -> StoreGuard:
    """Guard with a short timeout and no backoff delay."""
    return StoreGuard(timeout_seconds=1.0, read_retries=2, backoff_seconds=0.0)


@pytest.fixture
def config() -> AccessConfig:
    """Configuration with a session secret and one service token."""
    return AccessConfig(
        session=SessionConfig(secret=SESSION_SECRET),
        credentials=CredentialConfig(
            service_tokens=[ServiceTokenDefinition(name="scanner", token=SERVICE_TOKEN)]
        ),
    )


@pytest.fixture
def identity_provider() -> StaticIdentityProvider:
    """Identity provider that accepts one known token."""
    return StaticIdentityProvider(
        {IDENTITY_TOKEN: IdentityClaims(uid=IDENTITY_UID, email="id@example.com")}
    )


@pytest.fixture
def signer(config: AccessConfig, clock: FixedClock) -> SessionTokenSigner:
    """Session token signer sharing the test clock."""
    return SessionTokenSigner.from_config(config.session, clock=clock)


@pytest.fixture
def coordinator(
    config: AccessConfig,
    store: MemoryAccessStore,
    clock: FixedClock,
    identity_provider: StaticIdentityProvider,
) -> AccessCoordinator:
    """Coordinator over the memory store."""
    return build_coordinator(config, store, clock=clock, identity_provider=identity_provider)


# =============================================================================
# Markers Configuration
# =============================================================================


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
