# masterbook/api/errors.py
"""Maps domain exceptions to JSON error responses"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from googleapiclient.errors import HttpError

from masterbook.services.booking.errors import BookingError
from masterbook.services.calendar.google_calendar_service import CalendarNotConnected
from masterbook.services.calendar.ics_feed import FeedAccessDenied

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        logger.info(f"[{exc.code}] {exc.message} | Path={request.url.path}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(FeedAccessDenied)
    async def feed_access_handler(request: Request, exc: FeedAccessDenied):
        logger.warning(f"[feed_access_denied] {exc} | Path={request.url.path}")
        return JSONResponse(status_code=403, content={"error": "feed_access_denied", "detail": str(exc)})

    @app.exception_handler(CalendarNotConnected)
    async def calendar_not_connected_handler(request: Request, exc: CalendarNotConnected):
        return JSONResponse(
            status_code=404,
            content={"error": "calendar_not_connected", "detail": str(exc) or "Google Calendar is not connected"}
        )

    @app.exception_handler(HttpError)
    async def google_api_error_handler(request: Request, exc: HttpError):
        logger.error(f"[google_api_error] {exc} | Path={request.url.path}")
        return JSONResponse(
            status_code=502,
            content={"error": "calendar_provider_error", "detail": "Google Calendar request failed"}
        )
