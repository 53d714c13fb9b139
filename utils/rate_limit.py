"""
Sliding-window command rate limiting, per user and per action class.
"""
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from discord.ext import tasks

from config import RateLimitSettings
from utils.logger import set_logger

logger = set_logger(logging.getLogger('Cadence.RateLimit'))


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    reason: Optional[str] = None
    scope: Optional[str] = None  # "global" or the action class that tripped
    retry_after: float = 0.0


class RateLimiter:
    """
    Admission control over a sliding window.

    Only admitted calls are recorded, so a user who keeps hammering a blocked
    command does not push their own window further out.
    """

    def __init__(self, settings: RateLimitSettings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self._clock = clock
        # user id -> action class -> admission timestamps
        self._usage: Dict[int, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
        self._sweep_loop: Optional[tasks.Loop] = None

    def is_exempt(self, user_id: int, role_ids: Iterable[int] = ()) -> bool:
        if user_id in self.settings.exempt_users:
            return True
        return any(role_id in self.settings.exempt_roles for role_id in role_ids)

    def _prune(self, user_id: int, now: float) -> Dict[str, List[float]]:
        window_start = now - self.settings.window_seconds
        usage = self._usage[user_id]
        for action, stamps in usage.items():
            usage[action] = [ts for ts in stamps if ts > window_start]
        return usage

    def _retry_after(self, stamps: List[float], now: float) -> float:
        if not stamps:
            return 0.0
        return max(0.0, min(stamps) + self.settings.window_seconds - now)

    def check(self, user_id: int, action: str, role_ids: Iterable[int] = ()) -> RateLimitResult:
        """Admit or reject one call of `action` by `user_id`."""
        if not self.settings.enabled or self.is_exempt(user_id, role_ids):
            return RateLimitResult(allowed=True)

        now = self._clock()
        usage = self._prune(user_id, now)

        all_stamps = [ts for stamps in usage.values() for ts in stamps]
        if len(all_stamps) >= self.settings.commands_per_minute:
            logger.info(f"Rate limit: user {user_id} hit the global ceiling ({action})")
            return RateLimitResult(
                allowed=False,
                reason="You're using commands too quickly. Please slow down.",
                scope="global",
                retry_after=self._retry_after(all_stamps, now),
            )

        action_limit = self.settings.action_limits.get(action)
        if action_limit is not None and len(usage[action]) >= action_limit:
            logger.info(f"Rate limit: user {user_id} hit the '{action}' ceiling")
            return RateLimitResult(
                allowed=False,
                reason=f"You're using /{action} too quickly. Please slow down.",
                scope=action,
                retry_after=self._retry_after(usage[action], now),
            )

        usage[action].append(now)
        return RateLimitResult(allowed=True)

    def sweep(self) -> int:
        """Drop users and actions with no activity in the idle window. Returns users removed."""
        idle_start = self._clock() - self.settings.idle_seconds
        removed = 0
        for user_id in list(self._usage):
            usage = self._usage[user_id]
            for action in list(usage):
                recent = [ts for ts in usage[action] if ts > idle_start]
                if recent:
                    usage[action] = recent
                else:
                    del usage[action]
            if not usage:
                del self._usage[user_id]
                removed += 1
        if removed:
            logger.debug(f"Rate limit sweep removed {removed} idle user(s)")
        return removed

    def reset_user(self, user_id: int):
        self._usage.pop(user_id, None)

    def clear_all(self):
        self._usage.clear()

    def get_user_stats(self, user_id: int) -> Dict[str, object]:
        if user_id not in self._usage:
            return {"command_counts": {}, "total": 0}
        window_start = self._clock() - self.settings.window_seconds
        counts = {}
        for action, stamps in self._usage[user_id].items():
            recent = sum(1 for ts in stamps if ts > window_start)
            if recent:
                counts[action] = recent
        return {"command_counts": counts, "total": sum(counts.values())}

    def tracked_users(self) -> int:
        return len(self._usage)

    # --- Background sweep ---

    def start(self):
        """Start the periodic sweep. Needs a running event loop."""
        if self._sweep_loop is not None and self._sweep_loop.is_running():
            return

        async def _sweep():
            self.sweep()

        self._sweep_loop = tasks.loop(seconds=self.settings.sweep_interval_seconds)(_sweep)
        self._sweep_loop.start()

    def stop(self):
        if self._sweep_loop is not None:
            self._sweep_loop.cancel()
            self._sweep_loop = None
