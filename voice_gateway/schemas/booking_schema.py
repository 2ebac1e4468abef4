"""Booking completion events from the scheduling widget and its webhook."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

CONVERSATION_ID_KEYS = ("conversationId", "conversation_id", "conversationid")


def _payload_of(body: dict[str, Any]) -> dict[str, Any]:
    payload = body.get("payload")
    return payload if isinstance(payload, dict) and payload else body


class BookingEvent(BaseModel):
    """An external scheduling completion, from either delivery path."""

    model_config = ConfigDict(populate_by_name=True)

    booking_id: Optional[str] = Field(default=None, alias="bookingId")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    title: str = ""
    invitee_name: Optional[str] = Field(default=None, alias="inviteeName")
    invitee_email: Optional[str] = Field(default=None, alias="inviteeEmail")
    timezone: Optional[str] = None

    @classmethod
    def from_webhook(cls, body: dict[str, Any]) -> "BookingEvent":
        """Build an event from a raw scheduling webhook body."""
        payload = _payload_of(body)
        attendees = payload.get("attendees") or []
        first = attendees[0] if attendees and isinstance(attendees[0], dict) else {}
        booking_id = payload.get("uid") or payload.get("bookingId") or payload.get("id")
        return cls(
            booking_id=str(booking_id) if booking_id is not None else None,
            start_time=payload.get("startTime"),
            title=payload.get("title") or payload.get("eventTitle") or "",
            invitee_name=first.get("name"),
            invitee_email=first.get("email"),
            timezone=first.get("timeZone") or payload.get("timeZone"),
        )

    @classmethod
    def from_client(cls, details: dict[str, Any]) -> "BookingEvent":
        """Build an event from the details the browser reports on completion."""
        booking_id = details.get("bookingId") or details.get("uid") or details.get("id")
        return cls(
            booking_id=str(booking_id) if booking_id is not None else None,
            start_time=details.get("startTime") or details.get("date"),
            title=details.get("title") or details.get("eventTypeSlug") or "",
            invitee_name=details.get("inviteeName") or details.get("name"),
            invitee_email=details.get("inviteeEmail") or details.get("email"),
            timezone=details.get("timeZone") or details.get("timezone"),
        )

    def to_client(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def extract_conversation_id(body: dict[str, Any]) -> Optional[str]:
    """Find the conversation identifier in webhook metadata or form responses."""
    payload = _payload_of(body)
    for container_key in ("metadata", "responses"):
        container = payload.get(container_key) or {}
        if not isinstance(container, dict):
            continue
        for key in CONVERSATION_ID_KEYS:
            value = container.get(key)
            if isinstance(value, dict):
                value = value.get("value")
            if value:
                return str(value)
    return None
