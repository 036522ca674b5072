# masterbook/services/calendar/google_calendar_service.py
import hashlib
import logging
from datetime import timedelta, datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

import httpx
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from masterbook.config.settings import get_settings
from masterbook.models.booking import Booking, BookingStatus
from masterbook.models.calendar_sync import CalendarSyncBinding, ExternalEventMapping
from masterbook.models.master import Master
from masterbook.utils.encryption import get_cipher
from masterbook.utils.time_windows import local_datetime_to_instant, parse_date, to_iso, utc_now

settings = get_settings()

logger = logging.getLogger(__name__)

PROVIDER = "google"
REFRESH_MARGIN = timedelta(minutes=5)
STATE_TTL = timedelta(minutes=15)
REVOKE_URL = "https://oauth2.googleapis.com/revoke"


def booking_content_hash(start_at: datetime, end_at: datetime, status: str, service_name: Optional[str]) -> str:
    """Fingerprint of everything mirrored to the remote event"""
    raw = f"{to_iso(start_at)}|{to_iso(end_at)}|{status}|{service_name or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def hash_for_booking(booking: Booking) -> str:
    return booking_content_hash(
        booking.start_at,
        booking.end_at,
        booking.status,
        booking.service.name if booking.service else None,
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # google-auth reports expiry as naive UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_google_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CalendarNotConnected(Exception):
    pass


class GoogleCalendarService:
    SCOPES = ['https://www.googleapis.com/auth/calendar']

    def __init__(self):
        self.fernet = get_cipher()

        redirect_uri = settings.GOOGLE_REDIRECT_URI
        if not redirect_uri:
            error_msg = "GOOGLE_REDIRECT_URI is not set! Please add it to your .env file."
            logger.error(error_msg)
            raise ValueError(error_msg)

        # OAuth credentials from Google Cloud Console
        self.client_config = {
            "web": {
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uris": [redirect_uri],
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token"
            }
        }

    # ========================================================================
    # OAuth
    # ========================================================================

    def _flow(self) -> Flow:
        return Flow.from_client_config(
            self.client_config,
            scopes=self.SCOPES,
            redirect_uri=self.client_config['web']['redirect_uris'][0]
        )

    @staticmethod
    def encode_state(master_id) -> str:
        payload = {"sub": str(master_id), "purpose": "calendar_oauth", "exp": utc_now() + STATE_TTL}
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def decode_state(state: str) -> UUID:
        try:
            payload = jwt.decode(state, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError as e:
            raise ValueError(f"Invalid OAuth state: {e}") from e
        if payload.get("purpose") != "calendar_oauth":
            raise ValueError("Invalid OAuth state")
        return UUID(payload["sub"])

    def generate_authorization_url(self, master_id) -> str:
        """Step 1: Generate OAuth URL for the master"""
        authorization_url, _ = self._flow().authorization_url(
            access_type='offline',  # Gets refresh token
            include_granted_scopes='true',
            prompt='consent',  # Force consent screen to get refresh token
            state=self.encode_state(master_id)
        )
        logger.info(f"Generated Google authorization URL for master {master_id}")
        return authorization_url

    def handle_oauth_callback(self, code: str, state: str, db: Session) -> CalendarSyncBinding:
        """Step 2: Exchange authorization code for tokens and store the binding"""
        master_id = self.decode_state(state)

        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error(f"Failed to exchange code for tokens: {e}")
            raise
        credentials = flow.credentials

        binding = self.get_binding(db, master_id)
        if binding is None:
            binding = CalendarSyncBinding(
                master_id=master_id,
                provider=PROVIDER,
                sync_mode="push",
                external_calendar_id="primary",
            )
            db.add(binding)

        binding.access_token_encrypted = self.fernet.encrypt(credentials.token.encode())
        # Google only returns a refresh token on first consent; keep the old one otherwise
        if credentials.refresh_token:
            binding.refresh_token_encrypted = self.fernet.encrypt(credentials.refresh_token.encode())
        binding.token_expires_at = _aware(credentials.expiry)
        binding.scope = " ".join(credentials.scopes or self.SCOPES)

        db.commit()
        db.refresh(binding)
        logger.info(f"Google calendar connected for master {master_id}")
        return binding

    @staticmethod
    def get_binding(db: Session, master_id) -> Optional[CalendarSyncBinding]:
        return db.query(CalendarSyncBinding).filter_by(master_id=master_id, provider=PROVIDER).first()

    def get_valid_credentials(self, binding: CalendarSyncBinding, db: Session) -> Credentials:
        """Get valid credentials, refreshing if the token expires within five minutes"""
        now = datetime.now(timezone.utc)
        expires_at = _aware(binding.token_expires_at)
        if expires_at is None or expires_at <= now + REFRESH_MARGIN:
            return self.refresh_access_token(binding, db)

        access_token = self.fernet.decrypt(bytes(binding.access_token_encrypted)).decode()
        refresh_token = None
        if binding.refresh_token_encrypted:
            refresh_token = self.fernet.decrypt(bytes(binding.refresh_token_encrypted)).decode()
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=self.client_config['web']['token_uri'],
            client_id=self.client_config['web']['client_id'],
            client_secret=self.client_config['web']['client_secret']
        )

    def refresh_access_token(self, binding: CalendarSyncBinding, db: Session) -> Credentials:
        """Refresh expired access token using refresh token and persist the new one"""
        if not binding.refresh_token_encrypted:
            raise CalendarNotConnected(f"Binding {binding.id} has no refresh token, reconnect required")

        refresh_token = self.fernet.decrypt(bytes(binding.refresh_token_encrypted)).decode()
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.client_config['web']['token_uri'],
            client_id=self.client_config['web']['client_id'],
            client_secret=self.client_config['web']['client_secret']
        )
        credentials.refresh(Request())
        binding.access_token_encrypted = self.fernet.encrypt(credentials.token.encode())
        binding.token_expires_at = _aware(credentials.expiry)
        db.commit()
        logger.info(f"Refreshed Google access token for master {binding.master_id}")
        return credentials

    def _calendar_client(self, binding: CalendarSyncBinding, db: Session):
        credentials = self.get_valid_credentials(binding, db)
        return build('calendar', 'v3', credentials=credentials, cache_discovery=False)

    # ========================================================================
    # Push
    # ========================================================================

    @staticmethod
    def build_event_body(booking: Booking) -> Dict:
        service_name = booking.service.name if booking.service else "Booking"
        client_name = booking.client.name if booking.client else "Client"
        description = [
            f"Service: {service_name}",
            f"Client: {client_name}",
            f"Status: {booking.status}",
        ]
        if booking.client_note:
            description.append(f"Client comment: {booking.client_note}")
        return {
            "summary": f"{service_name} - {client_name}",
            "start": {"dateTime": to_iso(booking.start_at)},
            "end": {"dateTime": to_iso(booking.end_at)},
            "status": "cancelled" if booking.status == BookingStatus.CANCELED.value else "confirmed",
            "description": "\n".join(description),
        }

    def sync_booking(self, db: Session, booking: Booking) -> Optional[ExternalEventMapping]:
        """
        Mirror a booking to the master's calendar.

        No binding: nothing happens. Unchanged content hash: the existing
        mapping is returned without any remote call. Otherwise the remote event
        is created or updated and the mapping records the new hash.
        """
        binding = self.get_binding(db, booking.master_id)
        if binding is None:
            return None

        content_hash = hash_for_booking(booking)
        mapping = db.query(ExternalEventMapping).filter_by(booking_id=booking.id, provider=PROVIDER).first()
        if mapping is not None and mapping.last_pushed_hash == content_hash:
            logger.debug(f"Booking {booking.id} unchanged, calendar push skipped")
            return mapping

        calendar = self._calendar_client(binding, db)
        calendar_id = binding.external_calendar_id or "primary"
        body = self.build_event_body(booking)

        if mapping is not None:
            calendar.events().update(
                calendarId=calendar_id,
                eventId=mapping.external_event_id,
                body=body
            ).execute()
            mapping.last_pushed_hash = content_hash
            logger.info(f"Updated calendar event {mapping.external_event_id} for booking {booking.id}")
        else:
            event = calendar.events().insert(calendarId=calendar_id, body=body).execute()
            mapping = ExternalEventMapping(
                booking_id=booking.id,
                provider=PROVIDER,
                external_event_id=event["id"],
                last_pushed_hash=content_hash,
            )
            db.add(mapping)
            logger.info(f"Created calendar event {event['id']} for booking {booking.id}")

        binding.last_sync_at = utc_now()
        db.commit()
        return mapping

    def remove_booking(self, db: Session, master_id, booking_id) -> bool:
        """Delete the mirrored event; an event already gone remotely counts as deleted"""
        binding = self.get_binding(db, master_id)
        if binding is None:
            return False

        mapping = db.query(ExternalEventMapping).filter_by(booking_id=booking_id, provider=PROVIDER).first()
        if mapping is None:
            return False

        calendar = self._calendar_client(binding, db)
        try:
            calendar.events().delete(
                calendarId=binding.external_calendar_id or "primary",
                eventId=mapping.external_event_id
            ).execute()
        except HttpError as e:
            if e.resp.status not in (404, 410):
                raise
            logger.info(f"Calendar event {mapping.external_event_id} was already deleted")

        db.delete(mapping)
        db.commit()
        logger.info(f"Removed calendar event for booking {booking_id}")
        return True

    # ========================================================================
    # Pull
    # ========================================================================

    def pull_busy_times(self, db: Session, master_id, date_from, date_to) -> List[Dict[str, datetime]]:
        """Busy intervals of the external calendar; only in hybrid mode"""
        binding = self.get_binding(db, master_id)
        if binding is None or binding.sync_mode != "hybrid":
            return []

        master = db.query(Master).filter(Master.id == master_id).first()
        timezone_name = master.timezone if master else "UTC"
        time_min = local_datetime_to_instant(parse_date(date_from), "00:00", timezone_name)
        time_max = local_datetime_to_instant(parse_date(date_to) + timedelta(days=1), "00:00", timezone_name)

        calendar = self._calendar_client(binding, db)
        calendar_id = binding.external_calendar_id or "primary"
        response = calendar.freebusy().query(body={
            "timeMin": to_iso(time_min),
            "timeMax": to_iso(time_max),
            "items": [{"id": calendar_id}],
        }).execute()

        busy = response.get("calendars", {}).get(calendar_id, {}).get("busy", [])
        binding.last_sync_at = utc_now()
        db.commit()

        return [
            {"start": _parse_google_time(item["start"]), "end": _parse_google_time(item["end"])}
            for item in busy
        ]

    # ========================================================================
    # Binding management
    # ========================================================================

    def update_binding(self, db: Session, master_id, sync_mode: Optional[str] = None,
                       external_calendar_id: Optional[str] = None) -> CalendarSyncBinding:
        binding = self.get_binding(db, master_id)
        if binding is None:
            raise CalendarNotConnected("Google calendar is not connected")
        if sync_mode:
            binding.sync_mode = sync_mode
        if external_calendar_id:
            binding.external_calendar_id = external_calendar_id
        db.commit()
        db.refresh(binding)
        return binding

    def disconnect(self, db: Session, master_id) -> bool:
        """Revoke the token (best effort) and forget the binding and its event mappings"""
        binding = self.get_binding(db, master_id)
        if binding is None:
            return False

        try:
            token = self.fernet.decrypt(bytes(binding.access_token_encrypted)).decode()
            httpx.post(REVOKE_URL, params={"token": token}, timeout=10.0)
        except Exception as e:
            logger.warning(f"Token revoke failed for master {master_id}: {e}")

        booking_ids = select(Booking.id).where(Booking.master_id == master_id)
        db.query(ExternalEventMapping).filter(
            ExternalEventMapping.provider == PROVIDER,
            ExternalEventMapping.booking_id.in_(booking_ids)
        ).delete(synchronize_session=False)
        db.delete(binding)
        db.commit()
        logger.info(f"Google calendar disconnected for master {master_id}")
        return True
