"""
Google Calendar client.

Bookings are mirrored into a shared calendar as events whose description
carries "Castle: <name>" and "(Overnight)" markers; the booking adapter
reads those markers back when events are used for conflict checks.
"""

import logging
from datetime import datetime, timedelta
from itertools import count
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from core.config import settings
from core.utils_datetime import MalformedInputError, parse_booking_date, parse_booking_time


logger = logging.getLogger(__name__)

EVENT_PAGE_SIZE = 250


class CalendarError(Exception):
    """The calendar service failed or rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CalendarClient(Protocol):
    """What the booking service needs from a calendar."""

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        ...

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def delete_event(self, event_id: str) -> None:
        ...


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def build_event_body(booking: Any, timezone: str = settings.business_timezone) -> Dict[str, Any]:
    """
    Render a booking (ORM object or mapping) as a calendar event.

    Args:
        booking: Stored booking
        timezone: IANA timezone the times are expressed in

    Returns:
        Event resource for the Calendar v3 API
    """
    booking_date = parse_booking_date(_field(booking, "date"))
    end_value = _field(booking, "end_date")
    last_date = parse_booking_date(end_value, "end_date") if end_value else booking_date
    overnight = bool(_field(booking, "overnight", False))
    if overnight:
        last_date = last_date + timedelta(days=1)

    start_time = parse_booking_time(_field(booking, "start_time"), "start_time")
    end_time = parse_booking_time(_field(booking, "end_time"), "end_time")

    castle_name = _field(booking, "castle_name", "")
    customer_name = _field(booking, "customer_name", "")
    castle_line = f"Castle: {castle_name}"
    if overnight:
        castle_line += " (Overnight)"

    description = "\n".join([
        f"Booking Ref: {_field(booking, 'booking_ref', '')}",
        castle_line,
        f"Customer: {customer_name}",
        f"Phone: {_field(booking, 'customer_phone', '')}",
        f"Email: {_field(booking, 'customer_email', '')}",
        f"Total: £{_field(booking, 'total_price', 0)}",
        f"Deposit: £{_field(booking, 'deposit', 0)}",
        f"Payment: {_field(booking, 'payment_method') or 'Not set'}",
        f"Notes: {_field(booking, 'notes') or 'None'}",
    ])

    return {
        "summary": f"🏰 {customer_name} - {castle_name}",
        "description": description,
        "location": _field(booking, "customer_address", ""),
        "start": {
            "dateTime": datetime.combine(booking_date, start_time).isoformat(),
            "timeZone": timezone,
        },
        "end": {
            "dateTime": datetime.combine(last_date, end_time).isoformat(),
            "timeZone": timezone,
        },
    }


class GoogleCalendarClient:
    """Calendar v3 REST client over httpx."""

    def __init__(
        self,
        access_token: str = settings.google_calendar_access_token,
        calendar_id: str = settings.google_calendar_id,
        base_url: str = settings.google_calendar_api_url,
        timeout: float = settings.google_calendar_timeout_seconds,
        http_client: Optional[httpx.Client] = None,
    ):
        self.calendar_id = calendar_id
        self._client = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    @property
    def _events_path(self) -> str:
        return f"/calendars/{self.calendar_id}/events"

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Calendar request {method} {path} failed: {e}")
            raise CalendarError(f"Calendar request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Calendar returned {response.status_code} for {method} {path}: {response.text}")
            raise CalendarError(
                f"Calendar returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        """All events between two instants, following page tokens."""
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": EVENT_PAGE_SIZE,
        }

        events: List[Dict[str, Any]] = []
        while True:
            payload = self._request("GET", self._events_path, params=params).json()
            events.extend(payload.get("items", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.debug(f"Fetched {len(events)} calendar events")
        return events

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        created = self._request("POST", self._events_path, json=event).json()
        logger.info(f"Calendar event created: {created.get('id')}")
        return created

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"{self._events_path}/{event_id}", json=event).json()

    def delete_event(self, event_id: str) -> None:
        self._request("DELETE", f"{self._events_path}/{event_id}")
        logger.info(f"Calendar event deleted: {event_id}")

    def close(self):
        self._client.close()


class InMemoryCalendarClient:
    """Calendar kept in process memory, for development and tests."""

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        self._ids = count(1)
        self.events: Dict[str, Dict[str, Any]] = {}
        for event in events or []:
            self.create_event(event)

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        window = (time_min.date(), time_max.date())
        found = []
        for event in self.events.values():
            start = event.get("start", {})
            raw = start.get("dateTime") or start.get("date") or ""
            try:
                day = parse_booking_date(raw)
            except MalformedInputError:
                # Undated events are still returned; the adapter skips them
                found.append(event)
                continue
            if window[0] <= day <= window[1]:
                found.append(event)
        return found

    def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(event)
        stored.setdefault("id", f"evt-{next(self._ids)}")
        stored.setdefault("status", "confirmed")
        self.events[stored["id"]] = stored
        return stored

    def update_event(self, event_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        if event_id not in self.events:
            raise CalendarError(f"Event {event_id} not found", status_code=404)
        stored = {**event, "id": event_id, "status": "confirmed"}
        self.events[event_id] = stored
        return stored

    def delete_event(self, event_id: str) -> None:
        if self.events.pop(event_id, None) is None:
            raise CalendarError(f"Event {event_id} not found", status_code=404)
