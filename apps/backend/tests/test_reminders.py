"""
Tests for the reminder sweep.

The sweep is run with an injected "now" so the 24h and 2h windows are
evaluated against a fixed local time in the business's timezone.
"""
from datetime import date, datetime, time

import pytest
import requests

from autoflow.config import settings
from autoflow.models.booking import Booking
from autoflow.models.enums import BookingStatus
from autoflow.models.profile import Profile
from autoflow.services import reminder_service, sms_service
from autoflow.services.datetime_parser import business_tz

from conftest import CUSTOMER_NUMBER

REAL_SEND_SMS = sms_service.send_sms

# Monday 19 Oct 2026, 09:00 in Adelaide
NOW = business_tz("Australia/Adelaide").localize(datetime(2026, 10, 19, 9, 0))
TODAY = date(2026, 10, 19)
TOMORROW = date(2026, 10, 20)


def add_booking(db, profile, day, start, status=BookingStatus.CONFIRMED, phone=CUSTOMER_NUMBER, name="Jo Smith"):
    booking = Booking(
        user_id=profile.id,
        customer_name=name,
        customer_phone=phone,
        title=f"Job: {name}",
        booking_date=day,
        start_time=start,
        end_time=time(start.hour + 1, start.minute),
        status=status,
    )
    db.add(booking)
    db.commit()
    return booking


@pytest.mark.asyncio
async def test_sends_each_window_once(db, profile, outbox):
    tomorrow = add_booking(db, profile, TOMORROW, time(10))
    soon = add_booking(db, profile, TODAY, time(11))

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.as_dict() == {"sent24h": 1, "sent2h": 1, "errors": 0}
    db.refresh(tomorrow)
    db.refresh(soon)
    assert tomorrow.reminder_sent_24h is True
    assert soon.reminder_sent_2h is True
    assert "tomorrow (Tuesday) at 10:00am" in outbox.sms[0]["body"]
    assert "11:00am" in outbox.sms[1]["body"]
    assert all(m["from"] == profile.twilio_phone_number for m in outbox.sms)

    again = await reminder_service.run_reminders(db, now=NOW)

    assert again.as_dict() == {"sent24h": 0, "sent2h": 0, "errors": 0}
    assert len(outbox.sms) == 2


@pytest.mark.asyncio
async def test_bookings_outside_windows_are_left_alone(db, profile, outbox):
    add_booking(db, profile, TODAY, time(13))                  # 4h away
    add_booking(db, profile, TODAY, time(10))                  # 1h away
    add_booking(db, profile, date(2026, 10, 22), time(10))     # 3 days away
    add_booking(db, profile, TOMORROW, time(14), status=BookingStatus.PENDING)
    add_booking(db, profile, TOMORROW, time(15), status=BookingStatus.CANCELLED)

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.as_dict() == {"sent24h": 0, "sent2h": 0, "errors": 0}
    assert outbox.sms == []


@pytest.mark.asyncio
async def test_two_hour_window_edges_are_inclusive(db, profile, outbox):
    add_booking(db, profile, TODAY, time(10, 30), name="Edge Early")   # 90 min
    add_booking(db, profile, TODAY, time(11, 30), name="Edge Late")    # 150 min

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.sent2h == 2


@pytest.mark.asyncio
async def test_booking_without_phone_is_skipped(db, profile, outbox):
    add_booking(db, profile, TOMORROW, time(10), phone=None)

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.as_dict() == {"sent24h": 0, "sent2h": 0, "errors": 0}


@pytest.mark.asyncio
async def test_claim_held_by_another_run_skips_send(db, profile, outbox, fake_redis):
    booking = add_booking(db, profile, TOMORROW, time(10))
    fake_redis.set(f"autoflow:reminder:{booking.id}:24h", "1", nx=True)

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.sent24h == 0
    assert outbox.sms == []
    db.refresh(booking)
    assert booking.reminder_sent_24h is False


@pytest.mark.asyncio
async def test_send_failure_leaves_flag_and_releases_claim(db, profile, outbox, fake_redis):
    booking = add_booking(db, profile, TOMORROW, time(10))
    outbox.fail_sms = True

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.as_dict() == {"sent24h": 0, "sent2h": 0, "errors": 1}
    db.refresh(booking)
    assert booking.reminder_sent_24h is False
    assert fake_redis.store == {}

    outbox.fail_sms = False
    retry = await reminder_service.run_reminders(db, now=NOW)
    assert retry.sent24h == 1


@pytest.mark.asyncio
async def test_businesses_without_twilio_number_are_skipped(db, profile, outbox):
    other = Profile(email="quiet@example.com", business_name="Quiet Co", timezone="Australia/Adelaide")
    db.add(other)
    db.commit()
    add_booking(db, other, TOMORROW, time(10))

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.sent24h == 0


def test_mark_sent_flips_flag_only_once(db, profile):
    booking = add_booking(db, profile, TOMORROW, time(10))

    assert reminder_service.mark_sent(db, booking.id, reminder_service.WINDOW_24H) is True
    assert reminder_service.mark_sent(db, booking.id, reminder_service.WINDOW_24H) is False


def test_reminder_text_uses_first_name_and_day(profile):
    booking = Booking(customer_name="Jo Smith", booking_date=date(2026, 10, 22), start_time=time(14))

    text = reminder_service.reminder_text(profile, booking, reminder_service.WINDOW_24H, TODAY)

    assert text.startswith("Hi Jo,")
    assert "on Thursday at 2:00pm" in text
    assert "Sparky Co" in text


class FlakyMessages:
    """Twilio messages resource whose first create() drops the connection."""

    def __init__(self):
        self.created = []

    def create(self, body, from_, to):
        if not self.created:
            self.created.append(None)
            raise requests.exceptions.ConnectionError("connection reset")
        self.created.append(to)
        return type("Message", (), {"sid": f"SM{len(self.created):032d}"})()


@pytest.mark.asyncio
async def test_connection_error_does_not_stop_the_sweep(db, profile, fake_redis, monkeypatch):
    messages = FlakyMessages()
    monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", "ACtest")
    monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "token")
    monkeypatch.setattr(sms_service, "send_sms", REAL_SEND_SMS)
    monkeypatch.setattr(sms_service, "get_client", lambda: type("Client", (), {"messages": messages})())
    tomorrow = add_booking(db, profile, TOMORROW, time(10))
    soon = add_booking(db, profile, TODAY, time(11), phone="+61400333444", name="Alex Brown")

    results = await reminder_service.run_reminders(db, now=NOW)

    assert results.as_dict() == {"sent24h": 0, "sent2h": 1, "errors": 1}
    assert messages.created[1:] == ["+61400333444"]
    db.refresh(tomorrow)
    db.refresh(soon)
    assert tomorrow.reminder_sent_24h is False
    assert soon.reminder_sent_2h is True
    assert f"autoflow:reminder:{tomorrow.id}:24h" not in fake_redis.store
