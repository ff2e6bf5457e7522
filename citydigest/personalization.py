"""
Per-user personalization of selected content.

Each item gets a 0-100 personal relevance from the user's category
interests, neighborhood, borough and commute. Anything matching a muted
source, keyword or category is filtered (score 0) and always sorts last.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from .config import PersonalizationConfig
from .errors import OrchestrationError
from .logging import LoggingMixin, log_processing_stage
from .models.items import ContentCategory, ScoredItem
from .selection import ContentSelection
from .utils import utc_now

NEUTRAL_RELEVANCE = 50
PREFERRED_CATEGORY_BOOST = 20

BOROUGH_NEIGHBORHOODS: dict[str, tuple[str, ...]] = {
    "manhattan": (
        "harlem", "east harlem", "upper west side", "upper east side",
        "midtown", "hell's kitchen", "chelsea", "gramercy", "murray hill",
        "east village", "west village", "greenwich village", "soho", "tribeca",
        "lower east side", "chinatown", "financial district", "battery park",
    ),
    "brooklyn": (
        "williamsburg", "greenpoint", "bushwick", "bed-stuy", "crown heights",
        "park slope", "prospect heights", "dumbo", "brooklyn heights", "cobble hill",
        "carroll gardens", "red hook", "sunset park", "bay ridge", "flatbush",
        "ditmas park", "prospect lefferts", "fort greene", "clinton hill",
    ),
    "queens": (
        "astoria", "long island city", "sunnyside", "woodside", "jackson heights",
        "flushing", "forest hills", "rego park", "jamaica", "ridgewood",
    ),
    "bronx": (
        "south bronx", "mott haven", "hunts point", "fordham", "riverdale",
        "kingsbridge", "morris park", "pelham bay", "city island",
    ),
    "staten island": (
        "st. george", "stapleton", "tottenville", "great kills",
    ),
}

SUBWAY_LINE_BOROUGHS: dict[str, tuple[str, ...]] = {
    "1": ("manhattan",),
    "2": ("manhattan", "bronx", "brooklyn"),
    "3": ("manhattan", "brooklyn"),
    "7": ("manhattan", "queens"),
    "A": ("manhattan", "brooklyn", "queens"),
    "B": ("manhattan", "brooklyn", "bronx"),
    "C": ("manhattan", "brooklyn"),
    "D": ("manhattan", "brooklyn", "bronx"),
    "E": ("manhattan", "queens"),
    "F": ("manhattan", "brooklyn", "queens"),
    "G": ("brooklyn", "queens"),
    "J": ("manhattan", "brooklyn"),
    "L": ("manhattan", "brooklyn"),
    "M": ("manhattan", "brooklyn", "queens"),
    "N": ("manhattan", "brooklyn", "queens"),
    "Q": ("manhattan", "brooklyn"),
    "R": ("manhattan", "brooklyn", "queens"),
}

DEFAULT_INTEREST_SCORES: dict[ContentCategory, int] = {
    ContentCategory.BREAKING: 100,
    ContentCategory.ESSENTIAL: 90,
    ContentCategory.MONEY: 70,
    ContentCategory.LOCAL: 60,
    ContentCategory.CULTURE: 50,
    ContentCategory.CIVIC: 40,
    ContentCategory.LIFESTYLE: 30,
}

# Subscription modules map onto the categories a user implicitly prefers
MODULE_CATEGORY_MAP: dict[str, ContentCategory] = {
    "transit": ContentCategory.ESSENTIAL,
    "parking": ContentCategory.ESSENTIAL,
    "events": ContentCategory.CULTURE,
    "housing": ContentCategory.MONEY,
    "food": ContentCategory.MONEY,
    "deals": ContentCategory.MONEY,
}

MUTED_REASON = "Muted by preference"


@dataclass
class UserProfile:
    """What the pipeline knows about one subscriber."""
    user_id: str
    neighborhood: str | None = None
    borough: str | None = None
    commute_lines: list[str] = field(default_factory=list)
    commute_stations: list[str] = field(default_factory=list)
    preferred_categories: list[ContentCategory] = field(default_factory=list)
    muted_categories: list[ContentCategory] = field(default_factory=list)
    muted_sources: list[str] = field(default_factory=list)
    muted_keywords: list[str] = field(default_factory=list)
    interest_scores: dict[ContentCategory, int] = field(default_factory=dict)
    preferred_delivery_time: str | None = None
    timezone: str = "America/New_York"
    is_weekend_different: bool = False
    avg_minutes_to_open: float = 30.0

    def __post_init__(self):
        if not self.interest_scores:
            self.interest_scores = build_interest_scores(self.preferred_categories)

    @classmethod
    def from_modules(cls, user_id: str, enabled_modules: Sequence[str], **kwargs) -> "UserProfile":
        """Build a profile whose preferred categories follow subscribed modules."""
        preferred = []
        for module in enabled_modules:
            category = MODULE_CATEGORY_MAP.get(module)
            if category is not None and category not in preferred:
                preferred.append(category)
        return cls(user_id=user_id, preferred_categories=preferred, **kwargs)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "UserProfile":
        """Build a profile from a plain mapping, e.g. a JSON fixture entry."""
        data = dict(record)
        for key in ("preferred_categories", "muted_categories"):
            data[key] = [ContentCategory(value) for value in data.get(key, [])]
        if "interest_scores" in data:
            data["interest_scores"] = {
                ContentCategory(category): score for category, score in data["interest_scores"].items()
            }
        for module in data.pop("enabled_modules", []):
            category = MODULE_CATEGORY_MAP.get(module)
            if category is not None and category not in data["preferred_categories"]:
                data["preferred_categories"].append(category)
        return cls(**data)


def build_interest_scores(preferred: Sequence[ContentCategory]) -> dict[ContentCategory, int]:
    """Default interests with preferred categories raised, capped at 100."""
    scores = dict(DEFAULT_INTEREST_SCORES)
    for category in preferred:
        scores[category] = min(100, scores[category] + PREFERRED_CATEGORY_BOOST)
    return scores


class ProfileProvider(Protocol):
    """Source of user profiles."""

    async def get_profile(self, user_id: str) -> UserProfile | None:
        ...


class InMemoryProfileProvider:
    """Profile provider backed by a dict."""

    def __init__(self, profiles: Sequence[UserProfile] = ()):
        self._profiles = {profile.user_id: profile for profile in profiles}

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)


@dataclass
class PersonalizedItem:
    """A scored item with its personal relevance."""
    scored: ScoredItem
    personal_relevance: int
    final_score: float
    reasons: list[str] = field(default_factory=list)
    boosted: bool = False
    filtered: bool = False
    filter_reason: str | None = None

    @property
    def id(self) -> str:
        return self.scored.id

    @property
    def title(self) -> str:
        return self.scored.title


@dataclass
class DeliveryTime:
    """Recommended send time in the user's timezone."""
    time: str
    reason: str


@dataclass
class PersonalizationResult:
    """Personalized ordering for one user."""
    user_id: str
    items: list[PersonalizedItem] = field(default_factory=list)
    profile_found: bool = False
    delivery_time: DeliveryTime | None = None
    boosted_count: int = 0
    filtered_count: int = 0
    avg_personal_relevance: int = 0
    errors: list[OrchestrationError] = field(default_factory=list)


def in_borough(borough: str, text: str) -> bool:
    """Whether text names ``borough`` or one of its neighborhoods."""
    borough = borough.lower()
    lowered = text.lower()
    neighborhoods = BOROUGH_NEIGHBORHOODS.get(borough, ())
    return borough in lowered or any(hood in lowered for hood in neighborhoods)


def mentions_commute(profile: UserProfile, text: str) -> bool:
    """Whether text mentions one of the user's lines or stations."""
    lowered = text.lower()
    for line in profile.commute_lines:
        line = line.lower()
        patterns = (f"{line} train", f"{line} line", f"[{line}]", f"({line})")
        if any(pattern in lowered for pattern in patterns):
            return True
    return any(station.lower() in lowered for station in profile.commute_stations)


def compute_delivery_time(profile: UserProfile, now: datetime | None = None) -> DeliveryTime:
    """Pick a delivery time from preference, weekday and open latency.

    Args:
        profile: User profile
        now: Reference time; converted into the profile's timezone

    Returns:
        Recommended ``HH:MM`` with a reason
    """
    if profile.preferred_delivery_time:
        return DeliveryTime(profile.preferred_delivery_time, "User preference")

    local_now = (now or utc_now()).astimezone(ZoneInfo(profile.timezone))
    if local_now.weekday() >= 5 and profile.is_weekend_different:
        return DeliveryTime("09:00", "Weekend (later start)")

    if profile.avg_minutes_to_open < 15:
        return DeliveryTime("06:30", "Early opener - send before commute")
    if profile.avg_minutes_to_open > 120:
        return DeliveryTime("08:00", "Late opener - send mid-morning")

    return DeliveryTime("07:00", "Standard morning delivery")


class ContentPersonalizer(LoggingMixin):
    """Reorders selected content for a single user."""

    def __init__(
        self,
        profiles: ProfileProvider | None = None,
        config: PersonalizationConfig | None = None
    ):
        self.profiles = profiles or InMemoryProfileProvider()
        self.config = config or PersonalizationConfig()

    def score_item(self, scored: ScoredItem, profile: UserProfile) -> PersonalizedItem:
        """Compute personal relevance for one item.

        Args:
            scored: Item with its content scores
            profile: User profile

        Returns:
            Personalized item; muted items have relevance 0 and ``filtered`` set
        """
        fields = scored.fields
        text = fields.text
        location_text = f"{fields.location or ''} {text}"
        reasons: list[str] = []

        interest = profile.interest_scores.get(scored.category, NEUTRAL_RELEVANCE)
        score = NEUTRAL_RELEVANCE + (interest - NEUTRAL_RELEVANCE) * self.config.interest_factor

        if profile.neighborhood and profile.neighborhood.lower() in location_text.lower():
            score += self.config.neighborhood_boost
            reasons.append("In your neighborhood")
        elif profile.borough and in_borough(profile.borough, location_text):
            score += self.config.borough_boost
            reasons.append("In your borough")

        if mentions_commute(profile, text):
            score += self.config.commute_boost
            reasons.append("Affects your commute")

        filter_reason = self._mute_reason(scored, profile, text)
        if filter_reason:
            return PersonalizedItem(
                scored=scored,
                personal_relevance=0,
                final_score=self._final_score(scored, 0),
                filtered=True,
                filter_reason=filter_reason,
            )

        relevance = max(0, min(100, round(score)))
        return PersonalizedItem(
            scored=scored,
            personal_relevance=relevance,
            final_score=self._final_score(scored, relevance),
            reasons=reasons,
            boosted=bool(reasons),
        )

    async def personalize(
        self,
        pool: ContentSelection | Sequence[ScoredItem],
        user_id: str,
        now: datetime | None = None
    ) -> PersonalizationResult:
        """Personalize a pool of selected items for ``user_id``.

        Without a profile every item keeps a neutral relevance of 50 and the
        original score order.
        """
        items = pool.all_items() if isinstance(pool, ContentSelection) else list(pool)
        result = PersonalizationResult(user_id=user_id)
        profile = await self.profiles.get_profile(user_id)

        if profile is None:
            self.logger.info("No profile found, using neutral relevance", user_id=user_id)
            result.items = [
                PersonalizedItem(
                    scored=item,
                    personal_relevance=NEUTRAL_RELEVANCE,
                    final_score=self._final_score(item, NEUTRAL_RELEVANCE),
                )
                for item in items
            ]
            result.items.sort(key=lambda p: p.final_score, reverse=True)
            result.avg_personal_relevance = NEUTRAL_RELEVANCE if items else 0
            return result

        result.profile_found = True
        personalized = [self.score_item(item, profile) for item in items]
        personalized.sort(key=lambda p: (p.filtered, -p.final_score))

        result.items = personalized
        result.boosted_count = sum(1 for p in personalized if p.boosted)
        result.filtered_count = sum(1 for p in personalized if p.filtered)
        kept = [p for p in personalized if not p.filtered]
        if kept:
            result.avg_personal_relevance = round(sum(p.personal_relevance for p in kept) / len(kept))
        result.delivery_time = compute_delivery_time(profile, now)

        self.logger.info(
            "Personalization complete",
            user_id=user_id,
            **log_processing_stage(
                "personalization",
                len(items),
                len(kept),
                boosted=result.boosted_count,
                filtered=result.filtered_count,
            )
        )
        return result

    def _final_score(self, scored: ScoredItem, relevance: int) -> float:
        return scored.overall * self.config.overall_weight + relevance * self.config.personal_weight

    @staticmethod
    def _mute_reason(scored: ScoredItem, profile: UserProfile, text: str) -> str | None:
        if scored.source and scored.source in profile.muted_sources:
            return MUTED_REASON
        lowered = text.lower()
        if any(keyword.lower() in lowered for keyword in profile.muted_keywords):
            return MUTED_REASON
        if scored.category in profile.muted_categories:
            return MUTED_REASON
        return None


async def personalize_content(
    pool: ContentSelection | Sequence[ScoredItem],
    user_id: str,
    profiles: ProfileProvider | None = None,
    config: PersonalizationConfig | None = None,
    now: datetime | None = None
) -> PersonalizationResult:
    """Convenience function to personalize content for one user."""
    return await ContentPersonalizer(profiles, config).personalize(pool, user_id, now)
