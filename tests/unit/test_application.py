"""Tests for AccessApplication lifecycle."""

import logging

import pytest

from triage_access.application import AccessApplication
from triage_access.auth import Scope
from triage_access.config import AccessConfig, SessionConfig

from support import SESSION_SECRET, bearer


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Drop the handler installed by initialize()."""
    yield
    root = logging.getLogger("triage_access")
    for handler in list(root.handlers):
        if getattr(handler, "_triage_access", False):
            root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


@pytest.fixture
def app_config() -> AccessConfig:
    return AccessConfig(session=SessionConfig(secret=SESSION_SECRET))


class TestAccessApplication:
    """Tests for AccessApplication."""

    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self, app_config, clock, identity_provider):
        app = AccessApplication(
            config=app_config,
            clock=clock,
            identity_provider=identity_provider,
            run_retention=False,
        )
        assert not app.initialized

        coordinator = await app.initialize()
        assert app.initialized
        assert app.store is not None
        assert app.retention is None
        assert await app.initialize() is coordinator

        await app.shutdown()
        assert not app.initialized
        assert app.store is None
        assert app.coordinator is None

    @pytest.mark.asyncio
    async def test_retention_task_lifecycle(self, app_config, clock):
        app = AccessApplication(config=app_config, clock=clock)
        await app.initialize()
        assert app.retention is not None
        await app.shutdown()
        assert app.retention is None

    @pytest.mark.asyncio
    async def test_coordinator_authorizes_sessions(self, app_config, clock, signer):
        app = AccessApplication(config=app_config, clock=clock, run_retention=False)
        coordinator = await app.initialize()
        try:
            decision = await coordinator.authorize(
                bearer(signer.issue("user_1")), required_scope=Scope.READ
            )
            assert decision.allowed
            assert decision.principal.id == "user_1"
        finally:
            await app.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_flushes_key_usage(self, app_config, clock, signer):
        app = AccessApplication(config=app_config, clock=clock, run_retention=False)
        coordinator = await app.initialize()
        store = app.store
        owner = await coordinator.authenticate(bearer(signer.issue("user_1")))
        issued = await coordinator.issue_key(owner, "ci", scopes=["read"])

        await coordinator.authenticate(bearer(issued.secret))
        await app.shutdown()

        assert (await store.get_api_key(issued.record.id)).request_count == 1
