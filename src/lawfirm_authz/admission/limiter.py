from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from lawfirm_authz.admission.stores import WindowStore
from lawfirm_authz.configs.logging_config import get_logger
from lawfirm_authz.configs.settings import RateLimitPolicy
from lawfirm_authz.errors import RateLimitError
from lawfirm_authz.utils.time_utils import now_ms, seconds_until

log = get_logger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    limit: int
    remaining: int
    # Epoch ms when the oldest entry leaves the window.
    reset_at: int
    policy: str
    message: str = ""
    # Store was unreachable; the decision came from the policy's failure mode.
    degraded: bool = False

    def retry_after(self, now: int | None = None) -> int:
        if self.allowed:
            return 0
        return max(seconds_until(self.reset_at, now=now), 1)

    def headers(self) -> dict[str, str]:
        out = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            out["Retry-After"] = str(self.retry_after())
        return out


class AdmissionController:
    """
    Per-key sliding-window admission.

    Usage:
        controller = AdmissionController(policies, MemoryWindowStore())
        decision = await controller.check_admission("ip:10.0.0.1", "publicApi")
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy],
        store: WindowStore,
        *,
        clock: Callable[[], int] = now_ms,
    ):
        self._policies = dict(policies)
        self._store = store
        self._clock = clock

    @property
    def policies(self) -> Mapping[str, RateLimitPolicy]:
        return self._policies

    def _policy(self, policy_name: str) -> RateLimitPolicy:
        policy = self._policies.get(policy_name)
        if policy is None:
            raise ValueError(f"unknown admission policy: {policy_name}")
        return policy

    async def check_admission(self, key: str, policy_name: str) -> AdmissionDecision:
        policy = self._policy(policy_name)
        now = self._clock()
        window_ms = policy.window_seconds * 1000
        try:
            state = await self._store.hit(
                f"{policy_name}:{key}", limit=policy.max_requests, window_ms=window_ms, now_ms=now
            )
        except Exception as exc:
            allowed = not policy.fail_closed
            log.error(
                "admission.store_unavailable policy=%s key=%s fail_closed=%s error=%s",
                policy_name,
                key,
                policy.fail_closed,
                str(exc),
            )
            return AdmissionDecision(
                allowed=allowed,
                limit=policy.max_requests,
                remaining=policy.max_requests if allowed else 0,
                reset_at=now + window_ms,
                policy=policy_name,
                message="" if allowed else policy.message,
                degraded=True,
            )

        decision = AdmissionDecision(
            allowed=state.allowed,
            limit=policy.max_requests,
            remaining=max(policy.max_requests - state.count, 0),
            reset_at=state.oldest_ms + window_ms,
            policy=policy_name,
            message="" if state.allowed else policy.message,
        )
        if not decision.allowed:
            log.warning(
                "admission.rejected policy=%s key=%s limit=%s reset_at=%s",
                policy_name,
                key,
                policy.max_requests,
                decision.reset_at,
            )
        return decision

    async def reset(self, key: str, policy_name: str) -> None:
        self._policy(policy_name)
        await self._store.reset(f"{policy_name}:{key}")
        log.info("admission.reset policy=%s key=%s", policy_name, key)

    async def enforce(self, key: str, policy_name: str) -> AdmissionDecision:
        """check_admission for use inside handlers: a rejection raises RateLimitError."""
        decision = await self.check_admission(key, policy_name)
        if not decision.allowed:
            raise RateLimitError(decision.message or "rate limit exceeded", retry_after=decision.retry_after())
        return decision
