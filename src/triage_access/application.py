"""Access application - wires every component from configuration.

Initialization sequence:

1. Config loading
2. Logging setup
3. Backing store (memory or Redis)
4. Store guard (timeouts, read retries)
5. Credential parser and verifier registry
6. API key store, quota ledger, rate limiter
7. Access coordinator
8. Quota retention task
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from triage_access.auth import (
    ApiKeyVerifier,
    CredentialParser,
    HttpIdentityProvider,
    IdentityProvider,
    IdentityTokenVerifier,
    ServiceTokenVerifier,
    SessionTokenSigner,
    SessionTokenVerifier,
    TierResolver,
    VerifierRegistry,
    parse_scopes,
)
from triage_access.auth.coordinator import AccessCoordinator
from triage_access.auth.key_store import ApiKeyStore
from triage_access.auth.rate_limiter import RateLimiter
from triage_access.clock import Clock, utc_now
from triage_access.config import AccessConfig, ConfigLoader
from triage_access.quota import QuotaLedger, QuotaRetentionManager, TierQuotaPolicy
from triage_access.store import AccessStore, StoreGuard, open_store
from triage_access.telemetry import configure_logging

if TYPE_CHECKING:
    from triage_access.telemetry import AccessMetrics

logger = logging.getLogger(__name__)


def build_coordinator(
    config: AccessConfig,
    store: AccessStore,
    clock: Clock = utc_now,
    identity_provider: IdentityProvider | None = None,
    metrics: AccessMetrics | None = None,
) -> AccessCoordinator:
    """Assemble a coordinator over an existing store.

    Args:
        config: Engine configuration
        store: Connected backing store
        clock: Time source shared by every component
        identity_provider: Overrides the HTTP provider from ``config.identity``
        metrics: Optional metrics sink
    """
    guard = StoreGuard.from_config(config.store, metrics=metrics)
    tiers = TierResolver(store, guard)
    user_scopes = parse_scopes(config.credentials.user_scopes)

    key_store = ApiKeyStore(store, guard, policy=config.api_keys, clock=clock)
    signer = SessionTokenSigner.from_config(config.session, clock=clock)
    provider = identity_provider or HttpIdentityProvider.from_config(config.identity)

    verifiers = VerifierRegistry()
    verifiers.register(ServiceTokenVerifier(config.credentials.service_tokens))
    verifiers.register(ApiKeyVerifier(key_store, tiers, clock=clock))
    verifiers.register(SessionTokenVerifier(signer, tiers, user_scopes=user_scopes, clock=clock))
    verifiers.register(
        IdentityTokenVerifier(
            provider,
            tiers,
            user_scopes=user_scopes,
            timeout_seconds=config.identity.timeout_seconds,
        )
    )

    return AccessCoordinator(
        parser=CredentialParser.from_config(config.credentials),
        verifiers=verifiers,
        key_store=key_store,
        ledger=QuotaLedger(store, guard, policy=TierQuotaPolicy(config.quota), clock=clock),
        rate_limiter=RateLimiter(store, guard, presets=config.rate_limits, clock=clock),
        clock=clock,
        metrics=metrics,
    )


class AccessApplication:
    """Owns the store, coordinator and background retention task."""

    def __init__(
        self,
        config: AccessConfig | None = None,
        config_path: str | None = None,
        clock: Clock = utc_now,
        identity_provider: IdentityProvider | None = None,
        metrics: AccessMetrics | None = None,
        run_retention: bool = True,
    ):
        """Initialize application.

        Args:
            config: Explicit configuration (skips file loading)
            config_path: Path to config file (optional)
            clock: Time source
            identity_provider: Identity provider override
            metrics: Optional metrics sink
            run_retention: Start the periodic quota cleanup task
        """
        self._config_path = config_path
        self._clock = clock
        self._identity_provider = identity_provider
        self._metrics = metrics
        self._run_retention = run_retention
        self._initialized = False

        self.config: AccessConfig | None = config
        self.store: AccessStore | None = None
        self.coordinator: AccessCoordinator | None = None
        self.retention: QuotaRetentionManager | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> AccessCoordinator:
        """Load config, connect the store and build the coordinator."""
        if self._initialized and self.coordinator is not None:
            return self.coordinator

        if self.config is None:
            self.config = ConfigLoader().load(self._config_path)
        configure_logging(self.config.logging)

        self.store = await open_store(self.config.store)
        self.coordinator = build_coordinator(
            self.config,
            self.store,
            clock=self._clock,
            identity_provider=self._identity_provider,
            metrics=self._metrics,
        )

        if self._run_retention:
            self.retention = QuotaRetentionManager.from_config(
                self.store,
                self.config.quota,
                guard=StoreGuard.from_config(self.config.store, metrics=self._metrics),
                clock=self._clock,
            )
            await self.retention.start()

        self._initialized = True
        logger.info(f"Access engine ready (store={self.config.store.backend.value})")
        return self.coordinator

    async def shutdown(self) -> None:
        """Stop background work and release the store."""
        if self.retention is not None:
            await self.retention.stop()
            self.retention = None
        if self.coordinator is not None:
            await self.coordinator.verifiers.drain()
        if self.store is not None:
            await self.store.close()
            self.store = None
        self.coordinator = None
        self._initialized = False
