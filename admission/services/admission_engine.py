"""Admission engine orchestrating the full decision pipeline.

For one ``(limit_key, context)`` the engine:
1) resolves the effective policy (no policy means allow),
2) checks exemptions (exempt requests are never counted),
3) derives the scope key and counts the request in its window,
4) maps the decision to an enforcement when asked to enforce,
5) records metrics without blocking the caller.

Protection failures (backend down, unexpected errors) answer ``limited=False``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from admission.adapters.counter_store.base import WindowSpec
from admission.adapters.policy_store.base import AbstractPolicyStore
from admission.core.errors import ErrorKind, ValidationAppError
from admission.core.logging import hash_identity
from admission.schemas.context import RequestContext
from admission.schemas.decision import Decision, Enforcement, MetricsReport, PolicyStatus
from admission.schemas.policy import Policy
from admission.services.action_dispatcher import ActionDispatcher
from admission.services.circuit_breaker import CircuitBreakerRegistry
from admission.services.config_resolver import ConfigResolver
from admission.services.exemption_evaluator import ExemptionEvaluator
from admission.services.metrics_recorder import DEFAULT_TIME_RANGE, MetricsRecorder
from admission.services.scope_key import build_scope_key
from admission.services.window_counter import WindowCounter

logger = logging.getLogger(__name__)

REASON_NO_POLICY = "no rate limit configured"
REASON_EXEMPT = "exempt from rate limiting"
REASON_BREAKER_OPEN = "circuit breaker open"
REASON_FAIL_OPEN = "rate limiting error - fail open"


def window_spec(policy: Policy) -> WindowSpec:
    return WindowSpec(
        limit=policy.max_requests,
        window_seconds=policy.time_window_seconds,
        sliding=policy.sliding_window,
    )


class AdmissionEngine:
    """Owned engine instance; construct via ``build_engine`` in production."""

    def __init__(
        self,
        *,
        policy_store: AbstractPolicyStore,
        resolver: ConfigResolver,
        exemptions: ExemptionEvaluator,
        counter: WindowCounter,
        breakers: CircuitBreakerRegistry,
        dispatcher: ActionDispatcher,
        recorder: MetricsRecorder,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        self._policy_store = policy_store
        self._resolver = resolver
        self._exemptions = exemptions
        self._counter = counter
        self._breakers = breakers
        self._dispatcher = dispatcher
        self._recorder = recorder
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds

        self._sweep_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def policy_store(self) -> AbstractPolicyStore:
        return self._policy_store

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def counter(self) -> WindowCounter:
        return self._counter

    @property
    def recorder(self) -> MetricsRecorder:
        return self._recorder

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic local counter sweep (idempotent)."""

        if self._sweep_task is not None and not self._sweep_task.done():
            return
        if self._sweep_interval <= 0:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="admission-sweep")
        logger.info(
            "engine.started",
            extra={
                "store": self._counter.store.name,
                "sweep_interval_s": self._sweep_interval,
            },
        )

    async def stop(self) -> None:
        """Cancel the sweep, wait for background work and close the stores."""

        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self._counter.close()
        logger.info("engine.stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                removed = self._counter.sweep(self._clock())
            except Exception as exc:  # noqa: BLE001 - keep sweeping on the next tick
                logger.warning(
                    "engine.sweep_failed",
                    extra={"error_type": type(exc).__name__},
                )
                continue
            if removed:
                logger.debug("engine.swept", extra={"removed": removed})

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Decisions

    async def evaluate(self, limit_key: str, context: RequestContext) -> Decision:
        """Decide whether the request identified by ``context`` is over quota.

        Args:
            limit_key: Rule family identifier (e.g. ``login``, ``api_user``).
            context: Request attributes.

        Returns:
            Decision. Never raises for backend or unexpected pipeline errors.
        """

        started = time.perf_counter()
        decision = await self._evaluate(limit_key, context)
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._recorder.record(
            limit_key,
            limited=decision.limited,
            processing_time_ms=elapsed_ms,
            user_id=context.user_id,
            ip=context.ip,
        )
        return decision

    async def _evaluate(self, limit_key: str, context: RequestContext) -> Decision:
        policy: Policy | None = None
        try:
            policy = await self._resolver.resolve(limit_key, context)
            if policy is None:
                return Decision(limited=False, reason=REASON_NO_POLICY)

            if self._exemptions.is_exempt(policy, context):
                return Decision(
                    limited=False,
                    policy=policy,
                    reason=REASON_EXEMPT,
                    remaining=policy.max_requests,
                    exempt=True,
                )

            scope_key = build_scope_key(policy, context)
        except Exception as exc:  # noqa: BLE001 - protection failures admit the request
            return self._fail_open(limit_key, policy, exc, stage="resolve")

        try:
            outcome = await self._counter.count(
                limit_key, scope_key, window_spec(policy), now=self._clock()
            )
        except Exception as exc:  # noqa: BLE001 - protection failures admit the request
            # Only counting failures feed the counter backend's breaker.
            self._breakers.record_failure(limit_key)
            return self._fail_open(limit_key, policy, exc, stage="count")

        if outcome.breaker_open:
            return Decision(
                limited=False,
                policy=policy,
                reason=REASON_BREAKER_OPEN,
                remaining=policy.max_requests,
                scope_key=scope_key,
                error_kind=ErrorKind.BACKEND_UNAVAILABLE,
            )

        if outcome.result is None:
            return Decision(
                limited=False,
                policy=policy,
                reason=REASON_FAIL_OPEN,
                remaining=policy.max_requests,
                scope_key=scope_key,
                degraded=True,
                error_kind=outcome.error_kind,
            )

        result = outcome.result
        decision = Decision(
            limited=result.limited,
            policy=policy,
            remaining=result.remaining,
            reset_at=result.reset_at,
            current_count=result.count,
            scope_key=scope_key,
            degraded=outcome.degraded,
            error_kind=outcome.error_kind,
        )

        if decision.limited:
            self._on_limit_exceeded(decision, policy, context)
        return decision

    def _fail_open(
        self,
        limit_key: str,
        policy: Policy | None,
        exc: Exception,
        *,
        stage: str,
    ) -> Decision:
        logger.exception(
            "rate_limit.evaluation_failed",
            extra={
                "limit_key": limit_key,
                "stage": stage,
                "error_type": type(exc).__name__,
            },
        )
        return Decision(
            limited=False,
            policy=policy,
            reason=REASON_FAIL_OPEN,
            remaining=policy.max_requests if policy else 0,
        )

    def _on_limit_exceeded(
        self,
        decision: Decision,
        policy: Policy,
        context: RequestContext,
    ) -> None:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "limit_key": policy.limit_key,
                "policy_id": policy.id,
                "action": policy.action_on_limit.value,
                "current_count": decision.current_count,
                "limit": policy.max_requests,
                "scope_key_hash": hash_identity(decision.scope_key),
                "user_id_hash": hash_identity(context.user_id),
                "ip_hash": hash_identity(context.ip),
            },
        )

        if policy.alert_threshold_percentage > 0:
            threshold = policy.max_requests * (policy.alert_threshold_percentage / 100)
            if decision.current_count >= threshold:
                logger.warning(
                    "rate_limit.alert_threshold_exceeded",
                    extra={
                        "limit_key": policy.limit_key,
                        "threshold_pct": policy.alert_threshold_percentage,
                        "current_count": decision.current_count,
                        "limit": policy.max_requests,
                    },
                )

        self._spawn(self._record_trigger(policy))

    async def _record_trigger(self, policy: Policy) -> None:
        try:
            await self._policy_store.record_trigger(policy.id, datetime.now(timezone.utc))
        except Exception as exc:  # noqa: BLE001 - trigger stats are best-effort
            logger.warning(
                "rate_limit.trigger_stats_failed",
                extra={
                    "limit_key": policy.limit_key,
                    "policy_id": policy.id,
                    "error_type": type(exc).__name__,
                },
            )

    async def enforce(
        self,
        limit_key: str,
        context: RequestContext,
    ) -> tuple[Decision, Enforcement]:
        """Evaluate and map the decision to its enforcement."""

        decision = await self.evaluate(limit_key, context)
        enforcement = await self._dispatcher.dispatch(decision)
        return decision, enforcement

    # Introspection and admin

    async def status(self, limit_key: str, context: RequestContext) -> PolicyStatus | None:
        """Return the counter state for ``context`` without counting a request."""

        policy = await self._resolver.resolve(limit_key, context)
        if policy is None:
            return None

        scope_key = build_scope_key(policy, context)
        current = await self._counter.current_count(
            limit_key, scope_key, window_spec(policy), now=self._clock()
        )
        return PolicyStatus(
            limit_key=limit_key,
            scope_key=scope_key,
            current_count=current,
            remaining=max(0, policy.max_requests - current),
            exempt=self._exemptions.is_exempt(policy, context),
            policy_summary=policy.summary(),
            circuit_state=self._breakers.state(limit_key).value,
        )

    async def reset_counters(self, limit_key: str, context: RequestContext) -> str:
        """Clear the counter for the scope key ``context`` maps to.

        Returns:
            The scope key that was reset.

        Raises:
            ValidationAppError: If no policy is configured for ``limit_key``.
            BackendUnavailableError: If the shared store cannot be reached.
        """

        policy = await self._resolver.resolve(limit_key, context)
        if policy is None:
            raise ValidationAppError(
                code="policy_not_found",
                message=f"No rate limit configured for '{limit_key}'",
                details={"limit_key": limit_key, "environment": context.environment},
                kind=ErrorKind.POLICY_NOT_FOUND,
            )

        scope_key = build_scope_key(policy, context)
        await self._counter.reset(scope_key, window_spec(policy), now=self._clock())
        logger.info(
            "rate_limit.reset",
            extra={"limit_key": limit_key, "scope_key_hash": hash_identity(scope_key)},
        )
        return scope_key

    def metrics(
        self,
        limit_key: str | None = None,
        time_range: str = DEFAULT_TIME_RANGE,
    ) -> MetricsReport:
        return self._recorder.summarize(limit_key=limit_key, time_range=time_range)

    def invalidate(self, limit_key: str | None = None, policy_id: str | None = None) -> None:
        """Drop cached policy resolutions and exemption results."""

        removed = self._resolver.invalidate(limit_key=limit_key, policy_id=policy_id)
        if policy_id is not None:
            removed += self._exemptions.invalidate_policy(policy_id)
        logger.debug(
            "engine.cache_invalidated",
            extra={"limit_key": limit_key, "policy_id": policy_id, "removed": removed},
        )
