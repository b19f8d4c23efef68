"""Access decision coordinator.

Pipeline for every protected request:

    parse -> verify -> scope -> rate limit -> quota -> Decision

Each stage can end the pipeline with a denial; later stages never run after
a denial, so a request refused for scope never consumes rate allowance or
quota. Service-token principals skip rate and quota enforcement.

Policy denials and backend failures are both returned as a ``Decision``.
Validation and configuration errors (caller bugs) are raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from triage_access.clock import Clock, utc_now
from triage_access.errors import AccessError, ErrorCategory, create_error
from triage_access.quota import Meter, QuotaLedger, QuotaRequest, UsageBalance
from triage_access.telemetry.context import get_request_id
from triage_access.telemetry.logging import get_logger
from triage_access.telemetry.metrics import MetricLabels

from .credentials import CredentialParser, parse_authorization_header
from .key_store import ApiKeyStore
from .models import ApiKey, Decision, IssuedApiKey, Principal, RevokeResult, Scheme, Scope
from .rate_limiter import RateLimiter, RateLimitRule
from .verifiers import VerifierRegistry

if TYPE_CHECKING:
    from triage_access.telemetry.metrics import AccessMetrics

logger = get_logger("coordinator")

RAISED_CATEGORIES = frozenset({ErrorCategory.VALIDATION, ErrorCategory.SYSTEM})


class AccessCoordinator:
    """Single entry point for access decisions and key lifecycle."""

    def __init__(
        self,
        parser: CredentialParser,
        verifiers: VerifierRegistry,
        key_store: ApiKeyStore,
        ledger: QuotaLedger,
        rate_limiter: RateLimiter,
        clock: Clock = utc_now,
        metrics: AccessMetrics | None = None,
    ):
        self.parser = parser
        self.verifiers = verifiers
        self.key_store = key_store
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self._clock = clock
        self._metrics = metrics

    # ─────────────────────────────────────────────────────────────────
    # Authorization
    # ─────────────────────────────────────────────────────────────────

    async def authenticate(self, raw_header: str | None) -> Principal:
        """Parse and verify only.

        Raises:
            AccessError: credential failure or BACKEND_UNAVAILABLE
        """
        token = parse_authorization_header(raw_header)
        if token is None:
            raise create_error("NO_CREDENTIAL")
        credential = self.parser.classify(token)
        try:
            return await self.verifiers.verify(credential)
        except AccessError as e:
            raise e.with_context(scheme=credential.scheme.value)

    async def authorize(
        self,
        raw_header: str | None,
        required_scope: Scope | None = None,
        quota: QuotaRequest | None = None,
        rate_limit: str | RateLimitRule | None = None,
    ) -> Decision:
        """Decide whether the request may proceed.

        Args:
            raw_header: Authorization header value
            required_scope: Scope the operation needs
            quota: Consumption to enforce (skipped for service principals)
            rate_limit: Category name or explicit rule (skipped for service
                principals)

        Returns:
            Decision; ``reason`` carries the stable code when denied

        Raises:
            AccessError: VALIDATION_FAILED / CONFIG_INVALID for caller bugs
                such as unknown rate limit categories
        """
        principal: Principal | None = None
        try:
            principal = await self.authenticate(raw_header)

            if required_scope is not None and not principal.has_scope(required_scope):
                raise create_error(
                    "INSUFFICIENT_SCOPE",
                    principal_id=principal.id,
                    scope=required_scope.value,
                    scheme=principal.scheme.value,
                )

            if principal.is_service:
                return self._record(Decision.allow(principal))

            rate_result = None
            if rate_limit is not None:
                rule = (
                    self.rate_limiter.rule_for(rate_limit)
                    if isinstance(rate_limit, str)
                    else rate_limit
                )
                rate_result = await self.rate_limiter.check_rule(
                    principal.id, rule, principal.rate_limit_override
                )
                if not rate_result.allowed:
                    error = create_error(
                        "RATE_LIMITED",
                        principal_id=principal.id,
                        scheme=principal.scheme.value,
                        category=rule.category,
                        max_per_window=rate_result.limit,
                        window_seconds=rule.window_seconds,
                        retry_after_seconds=rate_result.retry_after_seconds,
                        remaining=0,
                        reset_at=rate_result.reset_at,
                    )
                    return self._record(Decision.deny(error, principal, rate_limit=rate_result))

            quota_result = None
            if quota is not None:
                ceiling = self.ledger.policy.ceiling(principal.tier, quota.meter)
                period_id = self.ledger.current_period_id()
                quota_result = await self.ledger.try_consume(
                    principal.id,
                    period_id,
                    quota.amount,
                    ceiling,
                    meter=quota.meter,
                    idempotency_key=quota.idempotency_key,
                    operation=quota.operation,
                    operation_count=quota.multiplier,
                )
                if not quota_result.allowed:
                    error = create_error(
                        "QUOTA_EXCEEDED",
                        principal_id=principal.id,
                        scheme=principal.scheme.value,
                        meter=quota.meter.value,
                        ceiling=ceiling,
                        period_id=period_id,
                        remaining=quota_result.remaining,
                        reset_at=quota_result.reset_at,
                    )
                    return self._record(
                        Decision.deny(
                            error, principal, quota=quota_result, rate_limit=rate_result
                        )
                    )
                if self._metrics is not None and not quota_result.replayed:
                    self._metrics.record_quota_consumed(
                        quota.meter.value, principal.tier.value, quota.amount
                    )

            return self._record(
                Decision.allow(principal, quota=quota_result, rate_limit=rate_result)
            )

        except AccessError as e:
            if e.category in RAISED_CATEGORIES:
                raise
            return self._record(Decision.deny(e, principal))

    def _record(self, decision: Decision) -> Decision:
        """Log and count a decision."""
        request_id = get_request_id()
        if request_id:
            decision.metadata["request_id"] = request_id
        scheme = decision.metadata.get("scheme")
        if decision.allowed:
            outcome = MetricLabels.OUTCOME_ALLOWED
            logger.debug("Access allowed", **decision.metadata)
        elif decision.is_policy_denial:
            outcome = MetricLabels.OUTCOME_DENIED
            logger.info("Access denied", reason=decision.reason, **decision.metadata)
        else:
            outcome = MetricLabels.OUTCOME_UNAVAILABLE
            logger.error(
                "Access check unavailable",
                reason=decision.reason,
                detail=decision.error.detail if decision.error else None,
                **decision.metadata,
            )

        if self._metrics is not None:
            self._metrics.record_decision(outcome, decision.reason, scheme)
        return decision

    # ─────────────────────────────────────────────────────────────────
    # Key lifecycle
    # ─────────────────────────────────────────────────────────────────

    async def issue_key(
        self,
        principal: Principal,
        name: str,
        scopes: list[str] | None = None,
        expires_in_days: int | None = None,
        rate_limit: int | None = None,
        ip_allow_list: list[str] | None = None,
        owner_id: str | None = None,
    ) -> IssuedApiKey:
        """Issue a key on behalf of an authenticated principal.

        Rules:
        - api-key principals can never issue keys
        - the caller needs ``write``
        - requested scopes must be a subset of the caller's (admin may grant any)
        - service callers must name ``owner_id``; other non-admin callers may
          only issue for themselves

        Raises:
            AccessError: INSUFFICIENT_SCOPE, VALIDATION_FAILED, BACKEND_UNAVAILABLE
        """
        self._require_key_manager(principal, Scope.WRITE)
        requested = self.key_store.resolve_scopes(scopes)

        if not principal.is_admin and not requested <= principal.scopes:
            missing = sorted(s.value for s in requested - principal.scopes)
            raise create_error(
                "INSUFFICIENT_SCOPE",
                principal_id=principal.id,
                scope=",".join(missing),
                scheme=principal.scheme.value,
            )

        owner = self._resolve_owner(principal, owner_id)
        return await self.key_store.issue(
            owner,
            name,
            requested,
            expires_in_days=expires_in_days,
            rate_limit=rate_limit,
            ip_allow_list=ip_allow_list,
        )

    async def revoke_key(self, principal: Principal, key_id: str) -> RevokeResult:
        """Revoke a key owned by the principal (or any key, for admins).

        Raises:
            AccessError: INSUFFICIENT_SCOPE for api-key principals,
                KEY_NOT_FOUND, KEY_FORBIDDEN, BACKEND_UNAVAILABLE
        """
        self._require_key_manager(principal, Scope.WRITE)
        result = await self.key_store.revoke(key_id, principal.id, principal.is_admin)
        if result == RevokeResult.NOT_FOUND:
            raise create_error("KEY_NOT_FOUND", key_id=key_id, principal_id=principal.id)
        if result == RevokeResult.FORBIDDEN:
            raise create_error("KEY_FORBIDDEN", key_id=key_id, principal_id=principal.id)
        return result

    async def list_keys(self, principal: Principal, owner_id: str | None = None) -> list[ApiKey]:
        """List keys of the principal, or of ``owner_id`` for admins."""
        if not principal.has_scope(Scope.READ):
            raise create_error(
                "INSUFFICIENT_SCOPE", principal_id=principal.id, scope=Scope.READ.value
            )
        owner = principal.id
        if owner_id is not None and owner_id != principal.id:
            if not principal.is_admin:
                raise create_error(
                    "INSUFFICIENT_SCOPE", principal_id=principal.id, scope=Scope.ADMIN.value
                )
            owner = owner_id
        return await self.key_store.list_keys(owner)

    async def usage(self, principal: Principal) -> list[UsageBalance]:
        """Current-period balance for every meter."""
        now = self._clock()
        return [
            await self.ledger.balance(principal.id, principal.tier, meter, now)
            for meter in Meter
        ]

    async def usage_history(
        self, principal: Principal, meter: Meter = Meter.TOKENS, months: int = 6
    ) -> list[UsageBalance]:
        """Per-period balances of one meter, newest first."""
        return await self.ledger.history(
            principal.id, principal.tier, meter, months, now=self._clock()
        )

    def _require_key_manager(self, principal: Principal, scope: Scope) -> None:
        if principal.scheme == Scheme.API_KEY:
            logger.warning(
                "API key principal attempted key management", **principal.describe()
            )
            raise create_error(
                "INSUFFICIENT_SCOPE",
                principal_id=principal.id,
                scope="key-management",
                scheme=principal.scheme.value,
                detail="API keys cannot manage API keys; sign in with a session",
            )
        if not principal.has_scope(scope):
            raise create_error(
                "INSUFFICIENT_SCOPE",
                principal_id=principal.id,
                scope=scope.value,
                scheme=principal.scheme.value,
            )

    def _resolve_owner(self, principal: Principal, owner_id: str | None) -> str:
        if principal.is_service:
            if not owner_id:
                raise create_error(
                    "VALIDATION_FAILED",
                    field="owner_id",
                    reason="Service callers must name the key owner",
                )
            return owner_id
        if owner_id is None or owner_id == principal.id:
            return principal.id
        if not principal.is_admin:
            raise create_error(
                "INSUFFICIENT_SCOPE",
                principal_id=principal.id,
                scope=Scope.ADMIN.value,
                scheme=principal.scheme.value,
            )
        return owner_id
