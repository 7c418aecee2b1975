from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from video2doc.errors import QuotaCheckFailedError, QuotaExceededError, StoreUnavailableError
from video2doc.repositories.account_repository import AccountRepository
from video2doc.repositories.common import month_key
from video2doc.repositories.usage_repository import UsageRepository, UsageSnapshot
from video2doc.services.subscription_limits import (
    DEFAULT_TIER,
    SubscriptionLimits,
    limits_for_tier,
)

LOGGER = logging.getLogger("video2doc.quota")


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: str | None
    tier: str
    limits: SubscriptionLimits
    usage: UsageSnapshot


class QuotaEvaluator:
    """Decides whether an account may process a video of a given duration.

    The check is a pure read: nothing is reserved, so two concurrent
    submissions can both pass and jointly overshoot a metered limit.
    """

    def __init__(
        self,
        *,
        accounts: AccountRepository,
        usage: UsageRepository,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._accounts = accounts
        self._usage = usage
        self._now = now

    def can_process(self, account_id: str, proposed_duration_seconds: int) -> QuotaDecision:
        month = month_key(self._now() if self._now is not None else None)
        try:
            tier = self._accounts.get_tier(account_id) or DEFAULT_TIER
            usage = self._usage.get(user_id=account_id, month=month)
        except StoreUnavailableError as exc:
            raise QuotaCheckFailedError(f"quota lookup failed for {account_id}: {exc}") from exc

        limits = limits_for_tier(tier)
        proposed = max(0, proposed_duration_seconds)
        reason = _evaluate(limits, usage, proposed)
        decision = QuotaDecision(
            allowed=reason is None,
            reason=reason,
            tier=limits.tier,
            limits=limits,
            usage=usage,
        )
        LOGGER.debug(
            "quota evaluated account_id=%s tier=%s month=%s allowed=%s proposed_seconds=%s",
            account_id,
            limits.tier,
            month,
            decision.allowed,
            proposed,
        )
        return decision

    def ensure_can_process(self, account_id: str, proposed_duration_seconds: int) -> QuotaDecision:
        decision = self.can_process(account_id, proposed_duration_seconds)
        if not decision.allowed:
            raise QuotaExceededError(decision.reason or "quota exceeded")
        return decision


def _evaluate(limits: SubscriptionLimits, usage: UsageSnapshot, proposed: int) -> str | None:
    max_duration = limits.max_video_duration_seconds
    if not limits.metered:
        if max_duration is not None and proposed > max_duration:
            return (
                f"Video duration of {proposed}s exceeds the {max_duration}s per-video "
                f"limit of the {limits.tier} plan."
            )
        return None

    projected_total = usage.total_video_duration_seconds + proposed
    if max_duration is not None and projected_total > max_duration:
        return (
            f"Video duration limit reached: {usage.total_video_duration_seconds}s used plus "
            f"{proposed}s requested exceeds the {max_duration}s monthly limit of the "
            f"{limits.tier} plan."
        )
    documents_per_month = limits.documents_per_month
    assert documents_per_month is not None
    if usage.documents_processed >= documents_per_month:
        return (
            f"Document limit reached: {usage.documents_processed} of {documents_per_month} "
            f"documents processed this month on the {limits.tier} plan."
        )
    return None
