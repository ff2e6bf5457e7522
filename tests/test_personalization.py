"""Tests for per-user personalization."""

from datetime import UTC, datetime

import pytest

from citydigest.models.items import ContentCategory
from citydigest.personalization import (
    MUTED_REASON,
    ContentPersonalizer,
    InMemoryProfileProvider,
    UserProfile,
    compute_delivery_time,
    in_borough,
    mentions_commute,
    personalize_content,
)


@pytest.fixture
def profile():
    return UserProfile(
        user_id="user-1",
        neighborhood="Williamsburg",
        borough="Brooklyn",
        commute_lines=["L"],
        muted_sources=["NY Post"],
        muted_keywords=["celebrity"],
        muted_categories=[ContentCategory.LIFESTYLE],
    )


@pytest.fixture
def personalizer(profile):
    return ContentPersonalizer(InMemoryProfileProvider([profile]))


class TestProfiles:
    """Test profile construction."""

    def test_default_interest_scores(self, profile):
        assert profile.interest_scores[ContentCategory.BREAKING] == 100
        assert profile.interest_scores[ContentCategory.LOCAL] == 60

    def test_preferred_categories_raise_interest(self):
        profile = UserProfile(user_id="u", preferred_categories=[ContentCategory.ESSENTIAL, ContentCategory.CIVIC])

        assert profile.interest_scores[ContentCategory.ESSENTIAL] == 100
        assert profile.interest_scores[ContentCategory.CIVIC] == 60

    def test_from_modules(self):
        profile = UserProfile.from_modules("u", ["transit", "deals", "food", "unknown"])

        assert profile.preferred_categories == [ContentCategory.ESSENTIAL, ContentCategory.MONEY]

    def test_from_record(self):
        profile = UserProfile.from_record({
            "user_id": "u2",
            "neighborhood": "Astoria",
            "preferred_categories": ["culture"],
            "muted_categories": ["lifestyle"],
            "enabled_modules": ["transit", "events"],
        })

        assert profile.preferred_categories == [ContentCategory.CULTURE, ContentCategory.ESSENTIAL]
        assert profile.muted_categories == [ContentCategory.LIFESTYLE]
        assert profile.interest_scores[ContentCategory.CULTURE] == 70

    @pytest.mark.asyncio
    async def test_provider(self, profile):
        provider = InMemoryProfileProvider()
        assert await provider.get_profile("user-1") is None

        provider.add(profile)
        assert await provider.get_profile("user-1") is profile


class TestLocationMatching:
    """Test borough and commute detection."""

    def test_in_borough(self):
        assert in_borough("Brooklyn", "Park Slope")
        assert in_borough("bronx", "Concert in the Bronx")
        assert in_borough("Brooklyn", "Manhattan-bound trains skip stops in Brooklyn")
        assert not in_borough("Queens", "Somewhere else")

    def test_mentions_commute(self, profile):
        assert mentions_commute(profile, "l train suspended overnight")
        assert mentions_commute(profile, "Delays on the (L) this weekend")
        assert not mentions_commute(profile, "Large crowds expected downtown")

    def test_station_mentions(self):
        profile = UserProfile(user_id="u", commute_stations=["Bedford Av"])
        assert mentions_commute(profile, "Elevator outage at Bedford Av")


class TestScoring:
    """Test personal relevance of single items."""

    def test_neighborhood_match(self, personalizer, profile, make_scored, unique_title):
        scored = make_scored(unique_title(), 70, ContentCategory.LOCAL, neighborhood="Williamsburg")

        item = personalizer.score_item(scored, profile)

        assert item.personal_relevance == 83
        assert item.reasons == ["In your neighborhood"]
        assert item.boosted
        assert item.final_score == pytest.approx(70 * 0.6 + 83 * 0.4)

    def test_borough_match(self, personalizer, profile, make_scored, unique_title):
        scored = make_scored(unique_title(), 70, ContentCategory.LOCAL, neighborhood="Park Slope")

        item = personalizer.score_item(scored, profile)

        assert item.personal_relevance == 68
        assert item.reasons == ["In your borough"]

    def test_borough_match_when_text_names_two_boroughs(self, personalizer, profile, make_scored):
        scored = make_scored("Manhattan-bound trains skip stops in Brooklyn tonight", 70, ContentCategory.LOCAL)

        item = personalizer.score_item(scored, profile)

        assert item.personal_relevance == 68
        assert item.reasons == ["In your borough"]

    def test_commute_match(self, personalizer, profile, make_scored):
        scored = make_scored("L train service suspended overnight", 70, ContentCategory.LOCAL)

        item = personalizer.score_item(scored, profile)

        assert item.personal_relevance == 78
        assert item.reasons == ["Affects your commute"]

    def test_unrelated_item(self, personalizer, profile, make_scored, unique_title):
        item = personalizer.score_item(make_scored(unique_title(), 70, ContentCategory.CIVIC), profile)

        # Civic interest 40 pulls relevance just below neutral
        assert item.personal_relevance == 47
        assert not item.boosted

    @pytest.mark.parametrize("kwargs,category", [
        ({"source": "NY Post"}, ContentCategory.LOCAL),
        ({"summary": "A celebrity sighting in SoHo"}, ContentCategory.LOCAL),
        ({}, ContentCategory.LIFESTYLE),
    ])
    def test_muted(self, personalizer, profile, make_scored, unique_title, kwargs, category):
        scored = make_scored(unique_title(), 90, category, neighborhood="Williamsburg", **kwargs)

        item = personalizer.score_item(scored, profile)

        assert item.filtered
        assert item.personal_relevance == 0
        assert item.filter_reason == MUTED_REASON
        assert item.reasons == []


class TestPersonalize:
    """Test personalization of a whole pool."""

    @pytest.mark.asyncio
    async def test_filtered_items_sort_last(self, personalizer, make_scored, unique_title, now):
        muted = make_scored(unique_title(), 95, ContentCategory.LOCAL, source="NY Post")
        local = make_scored(unique_title(), 60, ContentCategory.LOCAL, neighborhood="Williamsburg")
        other = make_scored(unique_title(), 70, ContentCategory.CIVIC)

        result = await personalizer.personalize([muted, other, local], "user-1", now)

        assert result.profile_found
        assert [item.id for item in result.items] == [local.id, other.id, muted.id]
        assert result.filtered_count == 1
        assert result.boosted_count == 1
        assert result.avg_personal_relevance == round((83 + 47) / 2)
        assert result.delivery_time.time == "07:00"

    @pytest.mark.asyncio
    async def test_missing_profile_is_neutral(self, make_scored, unique_title, now):
        items = [make_scored(unique_title(), score, ContentCategory.LOCAL) for score in (50, 90, 70)]

        result = await personalize_content(items, "nobody", now=now)

        assert not result.profile_found
        assert result.delivery_time is None
        assert all(item.personal_relevance == 50 for item in result.items)
        assert [item.scored.overall for item in result.items] == [90, 70, 50]
        assert result.avg_personal_relevance == 50


class TestDeliveryTime:
    """Test delivery time recommendations."""

    @pytest.mark.parametrize("minutes,expected", [(10, "06:30"), (150, "08:00"), (30, "07:00")])
    def test_open_latency(self, now, minutes, expected):
        profile = UserProfile(user_id="u", avg_minutes_to_open=minutes)
        assert compute_delivery_time(profile, now).time == expected

    def test_user_preference_wins(self, now):
        profile = UserProfile(user_id="u", preferred_delivery_time="06:45", avg_minutes_to_open=10)

        delivery = compute_delivery_time(profile, now)

        assert delivery.time == "06:45"
        assert delivery.reason == "User preference"

    def test_weekend(self):
        saturday = datetime(2026, 1, 17, 15, 0, tzinfo=UTC)

        assert compute_delivery_time(UserProfile(user_id="u", is_weekend_different=True), saturday).time == "09:00"
        assert compute_delivery_time(UserProfile(user_id="u"), saturday).time == "07:00"

    def test_weekday_in_users_timezone(self):
        # Saturday 02:00 UTC is still Friday evening in New York
        late_friday = datetime(2026, 1, 17, 2, 0, tzinfo=UTC)
        profile = UserProfile(user_id="u", is_weekend_different=True)

        assert compute_delivery_time(profile, late_friday).time == "07:00"
