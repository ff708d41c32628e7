"""Tests for parcel writes and their SMS side effects."""

import uuid
from datetime import date, timedelta

import pytest

from matkassen.db.enums import SmsIntent, SmsStatus
from matkassen.db.models import FoodParcel, OutgoingSms
from matkassen.services import parcel_service
from matkassen.services.parcel_service import (
    NotFoundError,
    ParcelInput,
    ParcelStateError,
)
from matkassen.services.parcel_validation import ParcelValidationError

from conftest import NOW, at_local

TUESDAY = date(2025, 6, 10)
WEDNESDAY = date(2025, 6, 11)
THURSDAY = date(2025, 6, 12)


def _input(location, day, hour, minute=0):
    earliest = at_local(day, hour, minute)
    return ParcelInput(location.id, earliest, earliest + timedelta(minutes=15))


def _sms_for(db, parcel_id, intent=None):
    query = db.query(OutgoingSms).filter(OutgoingSms.parcel_id == parcel_id)
    if intent:
        query = query.filter(OutgoingSms.intent == intent.value)
    return query.order_by(OutgoingSms.created_at).all()


class TestCreateParcels:
    def test_creates_parcels_and_queues_reminders(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        household = make_household()
        parcels = parcel_service.create_parcels(
            db,
            household.id,
            [_input(location, TUESDAY, 10), _input(location, THURSDAY, 10)],
            clock,
        )
        assert len(parcels) == 2

        soon, later = (_sms_for(db, p.id)[0] for p in parcels)
        assert soon.intent == SmsIntent.PICKUP_REMINDER.value
        assert soon.status == SmsStatus.QUEUED.value
        assert soon.to_e164 == "+46701234567"
        # Less than 48h away: send after the grace period
        assert soon.next_attempt_at == NOW + timedelta(minutes=5)
        assert later.next_attempt_at == at_local(THURSDAY, 10) - timedelta(hours=48)
        assert soon.idempotency_key == f"pickup_reminder|{parcels[0].id}"
        assert soon.text.startswith("Matpaket tis 10 juni 10:00: https://matkassen.test/p/")

    def test_invalid_entry_rolls_back_whole_batch(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        household = make_household()
        with pytest.raises(ParcelValidationError) as exc_info:
            parcel_service.create_parcels(
                db,
                household.id,
                [_input(location, TUESDAY, 10), _input(location, TUESDAY, 13)],
                clock,
            )
        assert exc_info.value.errors[0].field == "parcel_1_time_slot"
        assert db.query(FoodParcel).filter(FoodParcel.household_id == household.id).count() == 0
        assert db.query(OutgoingSms).count() == 0

    def test_unknown_household(self, db, clock, make_location):
        with pytest.raises(NotFoundError):
            parcel_service.create_parcels(
                db, uuid.uuid4(), [_input(make_location(), TUESDAY, 10)], clock
            )

    def test_anonymized_household_is_rejected(self, db, clock, make_location, make_household):
        household = make_household()
        household.anonymized_at = NOW
        db.commit()
        with pytest.raises(ParcelStateError):
            parcel_service.create_parcels(
                db, household.id, [_input(make_location(), TUESDAY, 10)], clock
            )


class TestUpdateParcel:
    def test_reschedule_replaces_unsent_reminder(self, db, clock, make_location, make_household):
        location = make_location()
        household = make_household()
        (parcel,) = parcel_service.create_parcels(
            db, household.id, [_input(location, TUESDAY, 10)], clock
        )
        clock.advance(minutes=1)
        parcel_service.update_parcel(db, parcel.id, _input(location, THURSDAY, 11), clock)

        messages = _sms_for(db, parcel.id)
        assert [m.status for m in messages] == [SmsStatus.CANCELLED.value, SmsStatus.QUEUED.value]
        active = messages[1]
        assert active.intent == SmsIntent.PICKUP_REMINDER.value
        assert active.idempotency_key == messages[0].idempotency_key
        assert active.next_attempt_at == at_local(THURSDAY, 11) - timedelta(hours=48)

    @pytest.mark.parametrize("stuck", [SmsStatus.FAILED, SmsStatus.SENDING])
    def test_reschedule_replaces_undelivered_reminder(
        self, db, clock, make_location, make_household, stuck
    ):
        location = make_location()
        (parcel,) = parcel_service.create_parcels(
            db, make_household().id, [_input(location, THURSDAY, 10)], clock
        )
        _sms_for(db, parcel.id)[0].status = stuck.value
        db.commit()

        clock.advance(minutes=1)
        parcel_service.update_parcel(db, parcel.id, _input(location, THURSDAY, 14), clock)

        old, new = _sms_for(db, parcel.id)
        assert old.status == SmsStatus.CANCELLED.value
        assert new.status == SmsStatus.QUEUED.value
        assert new.intent == SmsIntent.PICKUP_REMINDER.value
        assert new.text.startswith("Matpaket tors 12 juni 14:00")

    def test_reschedule_after_reminder_sent_queues_update(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        household = make_household()
        (parcel,) = parcel_service.create_parcels(
            db, household.id, [_input(location, TUESDAY, 10)], clock
        )
        reminder = _sms_for(db, parcel.id)[0]
        reminder.status = SmsStatus.SENT.value
        db.commit()

        parcel_service.update_parcel(db, parcel.id, _input(location, TUESDAY, 14), clock)

        updates = _sms_for(db, parcel.id, SmsIntent.PICKUP_UPDATED)
        assert len(updates) == 1
        assert updates[0].text.startswith("Uppdatering! Matpaket tis 10 juni 14:00")

    def test_unchanged_time_queues_nothing(self, db, clock, make_location, make_household):
        location = make_location()
        (parcel,) = parcel_service.create_parcels(
            db, make_household().id, [_input(location, TUESDAY, 10)], clock
        )
        parcel_service.update_parcel(db, parcel.id, _input(location, TUESDAY, 10), clock)
        assert len(_sms_for(db, parcel.id)) == 1

    def test_picked_up_parcel_cannot_change(
        self, db, clock, make_location, make_household, make_parcel
    ):
        location = make_location()
        parcel = make_parcel(
            make_household(), location, at_local(TUESDAY, 10), is_picked_up=True
        )
        with pytest.raises(ParcelStateError):
            parcel_service.update_parcel(db, parcel.id, _input(location, TUESDAY, 11), clock)


class TestReplaceHouseholdParcels:
    def test_keeps_moves_removes_and_creates(self, db, clock, make_location, make_household):
        location = make_location()
        household = make_household()
        tuesday, wednesday = parcel_service.create_parcels(
            db,
            household.id,
            [_input(location, TUESDAY, 10), _input(location, WEDNESDAY, 10)],
            clock,
        )

        result = parcel_service.replace_household_parcels(
            db,
            household.id,
            [_input(location, TUESDAY, 11), _input(location, THURSDAY, 10)],
            clock,
            actor="admin",
        )

        assert result[0].id == tuesday.id
        assert result[0].pickup_date_time_earliest == at_local(TUESDAY, 11)
        assert result[1].id not in (tuesday.id, wednesday.id)

        db.refresh(wednesday)
        assert wednesday.deleted_at == NOW
        assert wednesday.deleted_by == "admin"
        assert [m.status for m in _sms_for(db, wednesday.id)] == [SmsStatus.CANCELLED.value]
        assert len(_sms_for(db, result[1].id)) == 1

    def test_removed_parcels_free_capacity(
        self, db, clock, make_location, make_household
    ):
        location = make_location(max_parcels_per_day=1)
        household = make_household()
        parcel_service.create_parcels(db, household.id, [_input(location, WEDNESDAY, 10)], clock)

        other = make_household(first_name="Other")
        # Frees the Wednesday capacity for the other household
        parcel_service.replace_household_parcels(db, household.id, [], clock, actor="admin")
        created = parcel_service.create_parcels(
            db, other.id, [_input(location, WEDNESDAY, 12)], clock
        )
        assert len(created) == 1

    def test_failure_leaves_existing_parcels_untouched(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        household = make_household()
        (existing,) = parcel_service.create_parcels(
            db, household.id, [_input(location, WEDNESDAY, 10)], clock
        )
        with pytest.raises(ParcelValidationError):
            parcel_service.replace_household_parcels(
                db,
                household.id,
                [_input(location, TUESDAY, 7)],
                clock,
                actor="admin",
            )
        db.refresh(existing)
        assert existing.deleted_at is None


class TestCancelAndOutcomes:
    def test_soft_delete_cancels_unsent_sms(self, db, clock, make_location, make_household):
        location = make_location()
        (parcel,) = parcel_service.create_parcels(
            db, make_household().id, [_input(location, TUESDAY, 10)], clock
        )
        parcel_service.soft_delete_parcel(db, parcel.id, "admin", clock)

        messages = _sms_for(db, parcel.id)
        assert [m.status for m in messages] == [SmsStatus.CANCELLED.value]
        with pytest.raises(NotFoundError):
            parcel_service.get_parcel(db, parcel.id)

    def test_soft_delete_cancels_reminder_being_sent(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        (parcel,) = parcel_service.create_parcels(
            db, make_household().id, [_input(location, TUESDAY, 10)], clock
        )
        _sms_for(db, parcel.id)[0].status = SmsStatus.SENDING.value
        db.commit()

        parcel_service.soft_delete_parcel(db, parcel.id, "admin", clock)
        messages = _sms_for(db, parcel.id)
        assert [(m.intent, m.status) for m in messages] == [
            (SmsIntent.PICKUP_REMINDER.value, SmsStatus.CANCELLED.value)
        ]

    def test_soft_delete_after_reminder_sent_notifies_household(
        self, db, clock, make_location, make_household
    ):
        location = make_location()
        (parcel,) = parcel_service.create_parcels(
            db, make_household().id, [_input(location, TUESDAY, 10)], clock
        )
        _sms_for(db, parcel.id)[0].status = SmsStatus.SENT.value
        db.commit()

        parcel_service.soft_delete_parcel(db, parcel.id, "admin", clock)
        cancellations = _sms_for(db, parcel.id, SmsIntent.PICKUP_CANCELLED)
        assert len(cancellations) == 1
        assert cancellations[0].text == "Matpaket tis 10 juni 10:00 är inställt."

    def test_no_show_rules(self, db, clock, make_location, make_household, make_parcel):
        location = make_location()
        household = make_household()
        past = make_parcel(household, location, at_local(date(2025, 6, 2), 10))
        future = make_parcel(household, location, at_local(TUESDAY, 10))

        with pytest.raises(ParcelStateError):
            parcel_service.mark_no_show(db, future.id, "admin", clock)

        marked = parcel_service.mark_no_show(db, past.id, "admin", clock)
        assert marked.no_show_at == NOW
        # Idempotent
        assert parcel_service.mark_no_show(db, past.id, "other", clock).no_show_by == "admin"
        with pytest.raises(ParcelStateError):
            parcel_service.mark_picked_up(db, past.id, "admin", clock)

    def test_same_day_parcel_can_be_marked_no_show(
        self, db, clock, make_location, make_household, make_parcel
    ):
        parcel = make_parcel(make_household(), make_location(), at_local(date(2025, 6, 9), 15))
        assert parcel_service.mark_no_show(db, parcel.id, "admin", clock).no_show_at == NOW

    def test_picked_up_parcel_cannot_be_no_show(
        self, db, clock, make_location, make_household, make_parcel
    ):
        parcel = make_parcel(make_household(), make_location(), at_local(date(2025, 6, 2), 10))
        parcel_service.mark_picked_up(db, parcel.id, "admin", clock)
        with pytest.raises(ParcelStateError):
            parcel_service.mark_no_show(db, parcel.id, "admin", clock)
