"""Engine construction from settings.

The counter store is picked once here: the shared Redis store when
``ENGINE_COUNTER_BACKEND=redis``, otherwise the in-process store. The
in-process store always exists as the fallback for backend failures.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from admission.adapters.counter_store import (
    AbstractCounterStore,
    LocalCounterStore,
    RedisCounterStore,
)
from admission.adapters.policy_store import AbstractPolicyStore, InMemoryPolicyStore
from admission.core.config import Settings, settings as default_settings
from admission.services.action_dispatcher import ActionDispatcher
from admission.services.admission_engine import AdmissionEngine
from admission.services.circuit_breaker import CircuitBreakerRegistry
from admission.services.config_resolver import ConfigResolver
from admission.services.default_policies import default_policies
from admission.services.exemption_evaluator import ExemptionEvaluator
from admission.services.metrics_recorder import MetricsRecorder
from admission.services.window_counter import WindowCounter

logger = logging.getLogger(__name__)


def build_counter_store(cfg: Settings, fallback: LocalCounterStore) -> AbstractCounterStore:
    if cfg.engine.counter_backend == "redis":
        return RedisCounterStore.from_url(
            cfg.redis.url,
            key_prefix=cfg.redis.key_prefix,
            socket_timeout=cfg.redis.socket_timeout_seconds,
            socket_connect_timeout=cfg.redis.socket_connect_timeout_seconds,
        )
    return fallback


def build_engine(
    cfg: Settings | None = None,
    *,
    policy_store: AbstractPolicyStore | None = None,
    counter_store: AbstractCounterStore | None = None,
    clock: Callable[[], float] = time.time,
) -> AdmissionEngine:
    """Wire an ``AdmissionEngine`` from settings.

    Args:
        cfg: Settings to use (module-level settings when None).
        policy_store: Policy store; an in-memory store when None, seeded with
            the built-in policies if ``seed_default_policies`` is enabled.
        counter_store: Primary counter store override (tests, custom backends).
        clock: Time source in UNIX seconds, shared by every component.

    Returns:
        Engine ready for ``start()``.
    """

    cfg = cfg or default_settings
    engine_cfg = cfg.engine

    if policy_store is None:
        seed = default_policies() if engine_cfg.seed_default_policies else []
        policy_store = InMemoryPolicyStore(seed)

    fallback = LocalCounterStore(
        max_keys=engine_cfg.local_max_keys,
        idle_grace_seconds=engine_cfg.idle_grace_seconds,
    )
    store = counter_store or build_counter_store(cfg, fallback)

    breakers = CircuitBreakerRegistry(
        error_threshold=engine_cfg.breaker_error_threshold,
        open_duration_seconds=engine_cfg.breaker_open_seconds,
        clock=clock,
    )

    counter = WindowCounter(
        store,
        fallback=fallback,
        breakers=breakers,
        timeout_seconds=engine_cfg.backend_timeout_seconds,
    )

    engine = AdmissionEngine(
        policy_store=policy_store,
        resolver=ConfigResolver(
            policy_store,
            ttl_seconds=engine_cfg.policy_cache_ttl_seconds,
            max_entries=engine_cfg.cache_max_entries,
            clock=clock,
        ),
        exemptions=ExemptionEvaluator(
            ttl_seconds=engine_cfg.exemption_cache_ttl_seconds,
            max_entries=engine_cfg.cache_max_entries,
            clock=clock,
        ),
        counter=counter,
        breakers=breakers,
        dispatcher=ActionDispatcher(
            max_throttle_delay_seconds=engine_cfg.throttle_max_delay_seconds,
            include_headers=cfg.app.rate_limit_include_headers,
        ),
        recorder=MetricsRecorder(buffer_size=engine_cfg.metrics_buffer_size, clock=clock),
        clock=clock,
        sweep_interval_seconds=engine_cfg.sweep_interval_seconds,
    )

    logger.info(
        "engine.built",
        extra={
            "store": store.name,
            "seeded_defaults": engine_cfg.seed_default_policies,
            "breaker_threshold": engine_cfg.breaker_error_threshold,
        },
    )
    return engine
