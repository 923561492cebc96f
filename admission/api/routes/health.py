from __future__ import annotations

from fastapi import APIRouter, Depends

from admission.core.rate_limit import get_engine
from admission.services.admission_engine import AdmissionEngine
from admission.services.circuit_breaker import CircuitState

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(engine: AdmissionEngine = Depends(get_engine)) -> dict:
    """Liveness check.

    Always ``ok`` while the process serves requests: a failing counter backend
    degrades limiting but never takes the service down. The counter store in
    use and the limit keys with an open circuit breaker are reported for
    operators.
    """

    open_breakers = sorted(
        key
        for key, state in engine.breakers.snapshot().items()
        if state["state"] != CircuitState.CLOSED.value
    )
    return {
        "status": "ok",
        "counter_store": engine.counter.store.name,
        "open_breakers": open_breakers,
    }
