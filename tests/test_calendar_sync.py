from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from masterbook.models.calendar_sync import ExternalEventMapping
from masterbook.services.calendar import google_calendar_service as gcal
from masterbook.services.calendar.google_calendar_service import (
    GoogleCalendarService,
    booking_content_hash,
    hash_for_booking,
)
from masterbook.services.calendar.ics_feed import escape_ics_text, render_calendar

UTC = timezone.utc
START = datetime(2030, 1, 7, 9, 0, tzinfo=UTC)
END = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)


def _booking(status="confirmed", start=START, end=END):
    return SimpleNamespace(
        id=uuid4(),
        master_id=uuid4(),
        start_at=start,
        end_at=end,
        status=status,
        client_note=None,
        master_note=None,
        service=SimpleNamespace(name="Haircut"),
        client=SimpleNamespace(name="Olga"),
    )


def _mapping_db(mapping):
    db = MagicMock()
    db.query.return_value.filter_by.return_value.first.return_value = mapping
    return db


@pytest.fixture
def service():
    return GoogleCalendarService()


@pytest.fixture
def binding(service):
    return SimpleNamespace(
        id=uuid4(),
        master_id=uuid4(),
        sync_mode="push",
        external_calendar_id="primary",
        access_token_encrypted=service.fernet.encrypt(b"access-token"),
        refresh_token_encrypted=service.fernet.encrypt(b"refresh-token"),
        token_expires_at=datetime.now(UTC) + timedelta(hours=1),
        last_sync_at=None,
    )


@pytest.fixture
def remote(service, binding, monkeypatch):
    """Google client stand-in; the binding lookup always finds `binding`"""
    calendar = MagicMock()
    calendar.events.return_value.insert.return_value.execute.return_value = {"id": "evt-1"}
    monkeypatch.setattr(GoogleCalendarService, "get_binding", staticmethod(lambda db, master_id: binding))
    monkeypatch.setattr(service, "_calendar_client", lambda b, db: calendar)
    return calendar


# ============================================================================
# Content hash
# ============================================================================

def test_hash_is_stable_and_short():
    first = booking_content_hash(START, END, "confirmed", "Haircut")
    again = booking_content_hash(START.astimezone(timezone(timedelta(hours=3))), END, "confirmed", "Haircut")
    assert first == again
    assert len(first) == 16


@pytest.mark.parametrize("changes", [
    {"start": START + timedelta(minutes=10)},
    {"end": END + timedelta(minutes=10)},
    {"status": "canceled"},
    {"service_name": "Coloring"},
])
def test_hash_changes_with_mirrored_fields(changes):
    base = {"start": START, "end": END, "status": "confirmed", "service_name": "Haircut"}
    changed = {**base, **changes}
    assert booking_content_hash(
        base["start"], base["end"], base["status"], base["service_name"]
    ) != booking_content_hash(
        changed["start"], changed["end"], changed["status"], changed["service_name"]
    )


# ============================================================================
# Push
# ============================================================================

def test_first_push_creates_event_and_mapping(service, binding, remote):
    booking = _booking()
    db = _mapping_db(None)

    mapping = service.sync_booking(db, booking)

    remote.events.return_value.insert.assert_called_once()
    assert mapping.external_event_id == "evt-1"
    assert mapping.last_pushed_hash == hash_for_booking(booking)
    db.add.assert_called_once()
    assert binding.last_sync_at is not None


def test_unchanged_booking_makes_no_remote_call(service, remote):
    booking = _booking()
    existing = ExternalEventMapping(booking_id=booking.id, provider="google",
                                    external_event_id="evt-1", last_pushed_hash=hash_for_booking(booking))

    result = service.sync_booking(_mapping_db(existing), booking)

    assert result is existing
    remote.events.assert_not_called()


def test_changed_booking_updates_existing_event(service, remote):
    booking = _booking()
    existing = ExternalEventMapping(booking_id=booking.id, provider="google",
                                    external_event_id="evt-1", last_pushed_hash="stale")

    service.sync_booking(_mapping_db(existing), booking)

    update = remote.events.return_value.update
    update.assert_called_once()
    assert update.call_args.kwargs["eventId"] == "evt-1"
    remote.events.return_value.insert.assert_not_called()
    assert existing.last_pushed_hash == hash_for_booking(booking)


def test_no_binding_means_no_sync(service, monkeypatch):
    monkeypatch.setattr(GoogleCalendarService, "get_binding", staticmethod(lambda db, master_id: None))
    assert service.sync_booking(MagicMock(), _booking()) is None


def test_remove_tolerates_event_already_gone(service, remote):
    existing = ExternalEventMapping(booking_id=uuid4(), provider="google", external_event_id="evt-1")
    db = _mapping_db(existing)
    remote.events.return_value.delete.return_value.execute.side_effect = HttpError(
        SimpleNamespace(status=410, reason="Gone"), b"gone"
    )

    assert service.remove_booking(db, uuid4(), existing.booking_id) is True
    db.delete.assert_called_once_with(existing)


def test_event_body_marks_canceled_bookings():
    body = GoogleCalendarService.build_event_body(_booking(status="canceled"))
    assert body["status"] == "cancelled"
    assert body["start"] == {"dateTime": "2030-01-07T09:00:00.000Z"}
    assert body["summary"] == "Haircut - Olga"


# ============================================================================
# Tokens
# ============================================================================

def test_token_close_to_expiry_is_refreshed(service, binding, monkeypatch):
    binding.token_expires_at = datetime.now(UTC) + timedelta(minutes=4)
    new_expiry = datetime.now(UTC).replace(tzinfo=None) + timedelta(hours=1)

    def fake_refresh(self, request):
        self.token = "fresh-token"
        self.expiry = new_expiry

    monkeypatch.setattr(Credentials, "refresh", fake_refresh)
    db = MagicMock()

    credentials = service.get_valid_credentials(binding, db)

    assert credentials.token == "fresh-token"
    assert service.fernet.decrypt(binding.access_token_encrypted) == b"fresh-token"
    assert binding.token_expires_at == new_expiry.replace(tzinfo=UTC)
    db.commit.assert_called_once()


def test_valid_token_is_used_without_refresh(service, binding, monkeypatch):
    monkeypatch.setattr(Credentials, "refresh", lambda self, request: pytest.fail("unexpected refresh"))
    credentials = service.get_valid_credentials(binding, MagicMock())
    assert credentials.token == "access-token"


def test_missing_refresh_token_requires_reconnect(service, binding):
    binding.token_expires_at = None
    binding.refresh_token_encrypted = None
    with pytest.raises(gcal.CalendarNotConnected):
        service.get_valid_credentials(binding, MagicMock())


def test_oauth_state_round_trip_and_tampering():
    master_id = uuid4()
    state = GoogleCalendarService.encode_state(master_id)
    assert GoogleCalendarService.decode_state(state) == master_id
    with pytest.raises(ValueError):
        GoogleCalendarService.decode_state(state + "x")


# ============================================================================
# ICS feed
# ============================================================================

def test_ics_feed_renders_events():
    master = SimpleNamespace(display_name="Anna", timezone="Europe/Berlin")
    pending = _booking(status="pending")
    body = render_calendar(master, [_booking(), pending], now=START)

    assert body.startswith("BEGIN:VCALENDAR\r\n")
    assert body.count("BEGIN:VEVENT") == 2
    assert "DTSTART:20300107T090000Z" in body
    assert "STATUS:TENTATIVE" in body
    assert f"UID:booking-{pending.id}@masterbook" in body


def test_ics_text_escaping():
    assert escape_ics_text("a,b;c\nd") == r"a\,b\;c\nd"


def test_ics_text_normalizes_carriage_returns():
    assert escape_ics_text("a\r\nb\rc") == r"a\nb\nc"


def test_ics_feed_has_no_bare_carriage_returns():
    master = SimpleNamespace(display_name="Anna", timezone="Europe/Berlin")
    booking = _booking()
    booking.client_note = "Side entrance\r\nring twice\r"

    body = render_calendar(master, [booking], now=START)

    assert r"Client comment: Side entrance\nring twice\n" in body
    assert "\r" not in body.replace("\r\n", "")
