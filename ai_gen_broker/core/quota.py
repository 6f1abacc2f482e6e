"""
Daily token quota enforcement.

Implements role-tiered daily limits with a UTC-midnight reset.

Admission order:
1. Rollover - a stale day bucket is reset before anything reads it
2. Exhaustion - users at or over their limit are rejected outright
3. Reservation - a request whose estimate exceeds what is left is rejected

Reservation is advisory: it does not hold tokens. Two concurrent requests
can both pass admission against the same snapshot, so the day can overshoot
by at most one in-flight request. `commit` itself is a single atomic update
and never loses an increment. `UserLocks` closes the race for callers that
opt in to per-user serialization.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional

from ai_gen_broker.storage.models import UserQuotaState
from ai_gen_broker.storage.repository import UserRepository

from .errors import NotFound, QuotaExceeded, WouldExceedQuota

logger = logging.getLogger(__name__)

DEFAULT_TIERS: Dict[str, int] = {
    "developer": 10000,
    "sme": 25000,
    "admin": 100000,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QuotaUsage:
    """Snapshot of a user's quota after rollover."""
    user_id: str
    role: str
    limit: int
    tokens_used: int
    request_count: int
    monthly_tokens_used: int
    monthly_request_count: int
    total_tokens_used: int
    total_requests: int
    next_reset: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.tokens_used)

    @property
    def exceeded(self) -> bool:
        return self.tokens_used >= self.limit

    def to_dict(self) -> Dict[str, object]:
        return {
            "role": self.role,
            "daily": {
                "limit": self.limit,
                "used": self.tokens_used,
                "remaining": self.remaining,
                "requests": self.request_count,
            },
            "monthly": {
                "used": self.monthly_tokens_used,
                "requests": self.monthly_request_count,
            },
            "total": {
                "tokensUsed": self.total_tokens_used,
                "requests": self.total_requests,
            },
            "nextReset": self.next_reset.isoformat(),
        }


class QuotaLedger:
    """Owns and mutates per-user quota state.

    Every entry point calls `rollover_if_stale` first, so the daily bucket
    read or written always belongs to the current UTC day.
    """

    def __init__(
        self,
        users: UserRepository,
        tiers: Optional[Dict[str, int]] = None,
        default_role: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the ledger.

        Args:
            users: User/role store holding the counters
            tiers: Role -> daily token limit mapping
            default_role: Tier used for unknown roles; must be the lowest tier
                (resolved to it if None)
            clock: Callable returning the current aware UTC datetime
        """
        self.users = users
        self.tiers = dict(tiers or DEFAULT_TIERS)
        if not self.tiers:
            raise ValueError("tiers cannot be empty")
        lowest = min(self.tiers, key=self.tiers.get)
        self.default_role = default_role or lowest
        if self.default_role not in self.tiers:
            raise ValueError(f"default_role '{self.default_role}' is not a configured tier")
        if self.tiers[self.default_role] != self.tiers[lowest]:
            raise ValueError(f"default_role '{self.default_role}' must be the lowest tier ({lowest})")
        self.clock = clock or _utcnow

    def today(self) -> str:
        return self.clock().astimezone(timezone.utc).date().isoformat()

    def next_reset(self) -> datetime:
        """Next UTC midnight."""
        now = self.clock().astimezone(timezone.utc)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(days=1)

    def get_daily_limit(self, role: str) -> int:
        """Daily token limit for a role; unknown roles get the lowest tier."""
        return self.tiers.get(role, self.tiers[self.default_role])

    def rollover_if_stale(self, user_id: str) -> bool:
        """Reset the user's day bucket if it is dated before today.

        Returns:
            True if a reset happened
        """
        rolled = self.users.rollover_if_stale(user_id, self.today())
        if rolled:
            logger.debug("Daily usage rolled over for user %s", user_id)
        return rolled

    def get_usage(self, user_id: str) -> QuotaUsage:
        """Current usage after rollover.

        Raises:
            NotFound: If the user does not exist
        """
        self.rollover_if_stale(user_id)
        state = self.users.get_user(user_id)
        if state is None:
            raise NotFound("User not found")
        return self._to_usage(state)

    def has_exceeded(self, user_id: str) -> bool:
        return self.get_usage(user_id).exceeded

    def check_admission(self, user_id: str) -> QuotaUsage:
        """Reject users who already spent their whole daily budget.

        Raises:
            QuotaExceeded: If tokens_used >= limit
        """
        usage = self.get_usage(user_id)
        if usage.exceeded:
            raise QuotaExceeded(
                f"Daily token limit exceeded. You have used {usage.tokens_used}/"
                f"{usage.limit} tokens today. Limit resets at midnight UTC.",
                self._details(usage),
            )
        return usage

    def reserve(self, user_id: str, estimated_tokens: int) -> QuotaUsage:
        """Advisory pre-check of a request's estimated cost.

        Does not mutate usage.

        Args:
            user_id: Requesting user
            estimated_tokens: Estimated cost of the request

        Returns:
            The usage snapshot the check ran against

        Raises:
            WouldExceedQuota: If estimated_tokens > remaining
        """
        usage = self.get_usage(user_id)
        if estimated_tokens > usage.remaining:
            details = self._details(usage)
            details["estimated_tokens"] = estimated_tokens
            details["suggestion"] = "Try a shorter prompt or wait until tomorrow"
            raise WouldExceedQuota(
                f"Request would exceed daily token limit. Estimated tokens: "
                f"{estimated_tokens}, Remaining: {usage.remaining}.",
                details,
            )
        return usage

    def commit(self, user_id: str, actual_tokens: int) -> QuotaUsage:
        """Atomically add measured tokens and one request to today's usage."""
        self.rollover_if_stale(user_id)
        state = self.users.increment_usage(user_id, actual_tokens, self.today())
        usage = self._to_usage(state)
        logger.debug(
            "Committed %d tokens for user %s (%d/%d)",
            actual_tokens, user_id, usage.tokens_used, usage.limit,
        )
        return usage

    def _to_usage(self, state: UserQuotaState) -> QuotaUsage:
        today = self.today()
        daily_current = state.daily.date == today
        monthly_current = state.monthly.month == today[:7]
        return QuotaUsage(
            user_id=state.user_id,
            role=state.role,
            limit=self.get_daily_limit(state.role),
            tokens_used=state.daily.tokens_used if daily_current else 0,
            request_count=state.daily.request_count if daily_current else 0,
            monthly_tokens_used=state.monthly.tokens_used if monthly_current else 0,
            monthly_request_count=state.monthly.request_count if monthly_current else 0,
            total_tokens_used=state.total_tokens_used,
            total_requests=state.total_requests,
            next_reset=self.next_reset(),
        )

    @staticmethod
    def _details(usage: QuotaUsage) -> Dict[str, object]:
        return {
            "limit": usage.limit,
            "used": usage.tokens_used,
            "remaining": usage.remaining,
            "next_reset": usage.next_reset.isoformat(),
        }


class UserLocks:
    """One lock per user id, created on demand."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._meta_lock = threading.Lock()

    def _get(self, user_id: str) -> threading.Lock:
        with self._meta_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._get(user_id)
        with lock:
            yield
