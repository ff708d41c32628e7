from datetime import date, timedelta

import pytest

from matkassen.services import noshow_service, settings_service
from matkassen.services.noshow_service import count_consecutive_no_shows
from matkassen.services.settings_service import NoShowConfig

from conftest import NOW, at_local


def _history(make_parcel, household, location, outcomes):
    """Create resolved parcels one week apart, most recent first ("n" no-show, "p" picked up)."""
    parcels = []
    for weeks_ago, outcome in enumerate(outcomes, start=1):
        earliest = at_local(date(2025, 6, 9) - timedelta(weeks=weeks_ago), 10)
        fields = {"no_show_at": earliest} if outcome == "n" else {"is_picked_up": True}
        parcels.append(make_parcel(household, location, earliest, **fields))
    return parcels


class TestStreak:
    @pytest.mark.parametrize(
        "flags,expected",
        [
            ([], 0),
            ([True, True, False, True], 2),
            ([False, True, True], 0),
            ([True, True, True], 3),
        ],
    )
    def test_count_consecutive(self, flags, expected):
        assert count_consecutive_no_shows(flags) == expected

    def test_stats_ignore_pending_and_deleted_parcels(
        self, db, make_location, make_household, make_parcel
    ):
        location = make_location()
        household = make_household()
        _history(make_parcel, household, location, "nnpn")
        # Upcoming, unresolved
        make_parcel(household, location, at_local(date(2025, 6, 10), 10))
        # Deleted no-show
        make_parcel(
            household,
            location,
            at_local(date(2025, 6, 9), 9),
            no_show_at=NOW,
            deleted_at=NOW,
        )

        stats = noshow_service.get_household_noshow_stats(db, household.id)
        assert stats.total_no_shows == 3
        assert stats.consecutive_no_shows == 2
        assert stats.last_no_show_at == at_local(date(2025, 6, 2), 10)


class TestFollowups:
    def test_thresholds(self, db, make_location, make_household, make_parcel):
        location = make_location()
        streak = make_household(first_name="Streak")
        total = make_household(first_name="Total")
        fine = make_household(first_name="Fine")
        _history(make_parcel, streak, location, "nnp")
        _history(make_parcel, total, location, "pnpnpnpn")
        _history(make_parcel, fine, location, "npn")

        matches, count = noshow_service.get_households_needing_followup(db, NoShowConfig())
        assert count == 2
        # Latest no-show first
        assert [m.first_name for m in matches] == ["Streak", "Total"]

    def test_disabled_returns_nothing(self, db, make_location, make_household, make_parcel):
        _history(make_parcel, make_household(), make_location(), "nnnn")
        assert noshow_service.get_households_needing_followup(
            db, NoShowConfig(enabled=False)
        ) == ([], 0)

    def test_anonymized_households_are_excluded(
        self, db, make_location, make_household, make_parcel
    ):
        household = make_household()
        _history(make_parcel, household, make_location(), "nn")
        household.anonymized_at = NOW
        db.commit()
        assert noshow_service.count_households_needing_followup(db, NoShowConfig()) == 0

    def test_dismissal_holds_until_next_no_show(
        self, db, clock, make_location, make_household, make_parcel
    ):
        location = make_location()
        household = make_household()
        _history(make_parcel, household, location, "nn")
        config = NoShowConfig()

        noshow_service.dismiss_noshow_followup(db, household.id, "admin", clock)
        assert noshow_service.count_households_needing_followup(db, config) == 0

        make_parcel(
            household,
            location,
            at_local(date(2025, 6, 9), 9),
            no_show_at=NOW + timedelta(hours=1),
        )
        matches, _ = noshow_service.get_households_needing_followup(db, config)
        assert [m.household_id for m in matches] == [household.id]
        assert matches[0].consecutive_no_shows == 3

    def test_limit_keeps_total(self, db, make_location, make_household, make_parcel):
        location = make_location()
        for index in range(3):
            _history(make_parcel, make_household(first_name=f"H{index}"), location, "nn")
        matches, total = noshow_service.get_households_needing_followup(
            db, NoShowConfig(), limit=2
        )
        assert len(matches) == 2
        assert total == 3


class TestConfig:
    def test_defaults(self, db):
        assert settings_service.get_noshow_config(db) == NoShowConfig(True, 2, 4)

    @pytest.mark.parametrize("stored", ["abc", "0", "11"])
    def test_bad_stored_values_fall_back_to_default(self, db, stored):
        settings_service.set_setting(db, settings_service.NOSHOW_CONSECUTIVE_THRESHOLD_KEY, stored)
        db.commit()
        assert settings_service.get_noshow_config(db).consecutive_threshold == 2

    def test_update(self, db):
        config = settings_service.update_noshow_config(
            db, enabled=False, consecutive_threshold=3, total_threshold=10, actor="admin"
        )
        assert config == NoShowConfig(False, 3, 10)
        assert settings_service.get_setting(db, "noshow_followup_enabled") == "false"

    @pytest.mark.parametrize(
        "kwargs", [{"consecutive_threshold": 0}, {"consecutive_threshold": 11}, {"total_threshold": 51}]
    )
    def test_update_rejects_out_of_range(self, db, kwargs):
        with pytest.raises(ValueError):
            settings_service.update_noshow_config(db, **kwargs)


async def test_followup_routes(client, make_location, make_household, make_parcel):
    household = make_household()
    _history(make_parcel, household, make_location(), "nn")

    response = await client.get("/noshow/followups")
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 1
    assert body["items"][0]["household_id"] == str(household.id)

    response = await client.post(f"/households/{household.id}/noshow-followup/dismiss")
    assert response.status_code == 200
    assert (await client.get("/noshow/followups")).json()["total_count"] == 0

    response = await client.put("/noshow/config", json={"consecutive_threshold": 20})
    assert response.status_code == 422
