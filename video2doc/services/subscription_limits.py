from __future__ import annotations

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class SubscriptionLimits:
    """Limits derived from a subscription tier.

    ``documents_per_month`` is ``None`` for unlimited tiers. For metered tiers
    ``max_video_duration_seconds`` caps the monthly total of processed video;
    for unlimited tiers it is a per-video ceiling, and ``None`` means no
    ceiling at all.
    """

    tier: str
    documents_per_month: int | None
    max_video_duration_seconds: int | None
    features: dict[str, bool]

    @property
    def metered(self) -> bool:
        return self.documents_per_month is not None

    def has_feature(self, name: str) -> bool:
        return self.features.get(name, False)


FEATURE_NAMES: Final[tuple[str, ...]] = (
    "transcription",
    "summary",
    "sentiment_analysis",
    "topic_analysis",
    "custom_templates",
    "api_access",
)

_TIER_TABLE: Final[dict[str, tuple[int | None, int | None, frozenset[str]]]] = {
    "free": (5, 600, frozenset({"transcription", "summary"})),
    "pro": (
        None,
        7200,
        frozenset({"transcription", "summary", "sentiment_analysis", "topic_analysis"}),
    ),
    "enterprise": (None, None, frozenset(FEATURE_NAMES)),
}
DEFAULT_TIER: Final[str] = "free"


def limits_for_tier(tier: str) -> SubscriptionLimits:
    normalized = tier.strip().lower()
    if normalized not in _TIER_TABLE:
        normalized = DEFAULT_TIER
    documents_per_month, max_duration, enabled = _TIER_TABLE[normalized]
    return SubscriptionLimits(
        tier=normalized,
        documents_per_month=documents_per_month,
        max_video_duration_seconds=max_duration,
        features={name: name in enabled for name in FEATURE_NAMES},
    )


def known_tiers() -> tuple[str, ...]:
    return tuple(_TIER_TABLE)
