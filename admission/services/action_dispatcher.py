"""Mapping from a limiting decision to a concrete enforcement.

With ``limited=True`` the policy's action decides the effect:
- block: deny with 429, optional Retry-After and custom message
- throttle: sleep min(cap, window * 0.1s), then allow
- queue: allow, flagging that the caller should queue the request
- captcha: deny with 429 and a challenge requirement
- log: allow, only record the violation

Allowed requests still get informational X-RateLimit-* headers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from admission.core.logging import hash_identity
from admission.schemas.decision import Decision, Enforcement
from admission.schemas.policy import LimitAction, Policy

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Rate limit exceeded"
DEFAULT_MESSAGE = "Too many requests"
CHALLENGE_MESSAGE = "Too many requests. Complete the challenge before retrying."
THROTTLE_FACTOR = 0.1


def rate_limit_headers(decision: Decision, *, denied: bool = False) -> dict[str, str]:
    """Build X-RateLimit-* (and Retry-After on denial) response headers."""

    policy = decision.policy
    if policy is None:
        return {}

    headers = {
        "X-RateLimit-Limit": str(policy.max_requests),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }
    if denied and policy.retry_after_header:
        headers["Retry-After"] = str(policy.time_window_seconds)
    return headers


class ActionDispatcher:
    """Turns decisions into enforcements."""

    def __init__(
        self,
        *,
        max_throttle_delay_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        include_headers: bool = True,
    ) -> None:
        self._max_delay = max_throttle_delay_seconds
        self._sleep = sleep
        self._include_headers = include_headers

    def throttle_delay(self, policy: Policy) -> float:
        return min(self._max_delay, policy.time_window_seconds * THROTTLE_FACTOR)

    def _headers(self, decision: Decision, *, denied: bool) -> dict[str, str]:
        if not self._include_headers:
            return {}
        return rate_limit_headers(decision, denied=denied)

    def _deny(self, decision: Decision, policy: Policy, *, challenge: bool) -> Enforcement:
        body: dict[str, object] = {
            "error": DEFAULT_ERROR,
            "message": policy.custom_error_message
            or (CHALLENGE_MESSAGE if challenge else DEFAULT_MESSAGE),
            "retry_after": policy.time_window_seconds,
        }
        if challenge:
            body["challenge_required"] = True
            body["challenge_type"] = "captcha"

        return Enforcement(
            allowed=False,
            action=LimitAction.CAPTCHA if challenge else LimitAction.BLOCK,
            status_code=429,
            headers=self._headers(decision, denied=True),
            body=body,
            challenge_required=challenge,
        )

    async def dispatch(self, decision: Decision) -> Enforcement:
        """Apply the enforcement for ``decision``.

        Args:
            decision: Outcome of the evaluation.

        Returns:
            Enforcement describing whether and how the request proceeds.
        """

        policy = decision.policy
        if not decision.limited or policy is None:
            return Enforcement(allowed=True, headers=self._headers(decision, denied=False))

        action = policy.action_on_limit

        if action is LimitAction.CAPTCHA:
            return self._deny(decision, policy, challenge=True)

        if action is LimitAction.THROTTLE:
            delay = self.throttle_delay(policy)
            logger.info(
                "rate_limit.throttled",
                extra={"limit_key": policy.limit_key, "delay_s": delay},
            )
            await self._sleep(delay)
            return Enforcement(
                allowed=True,
                action=action,
                headers=self._headers(decision, denied=False),
                delay_seconds=delay,
            )

        if action is LimitAction.QUEUE:
            logger.info(
                "rate_limit.queue_requested",
                extra={"limit_key": policy.limit_key},
            )
            return Enforcement(
                allowed=True,
                action=action,
                headers=self._headers(decision, denied=False),
                should_queue=True,
            )

        if action is LimitAction.LOG:
            logger.warning(
                "rate_limit.exceeded_log_only",
                extra={
                    "limit_key": policy.limit_key,
                    "scope_key_hash": hash_identity(decision.scope_key),
                    "current_count": decision.current_count,
                    "limit": policy.max_requests,
                },
            )
            return Enforcement(
                allowed=True,
                action=action,
                headers=self._headers(decision, denied=False),
            )

        return self._deny(decision, policy, challenge=False)
