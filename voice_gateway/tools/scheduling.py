"""
Appointment scheduling tool.

Opens the bot's booking widget in the browser and pauses the session until
the booking webhook or the client reports that the user finished. The
conversation id travels in the booking URL metadata so the webhook can be
routed back to this session.
"""

import logging
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from voice_gateway.schemas.session_schema import Session
from voice_gateway.services.llm import ToolDeclaration
from voice_gateway.tools.context import ToolContext
from voice_gateway.tools.registry import ToolCategory, ToolResult, ToolSpec

logger = logging.getLogger(__name__)


def build_booking_url(calendar_url: str, session: Session, notes: str = "") -> str:
    """Append prefill and routing metadata to the bot's calendar URL."""
    parts = urlsplit(calendar_url)
    query = dict(parse_qsl(parts.query))
    if session.conversation_id:
        query["metadata[conversationId]"] = session.conversation_id
    if session.user_name:
        query["name"] = session.user_name
    if session.user_email:
        query["email"] = session.user_email
    if notes:
        query["notes"] = notes
    return urlunsplit(parts._replace(query=urlencode(query)))


async def schedule_appointment(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    bot = ctx.session.bot
    if bot is None or not bot.calendar_url:
        return ToolResult.error("No booking calendar is configured for this assistant.")

    url = build_booking_url(bot.calendar_url, ctx.session, str(args.get("notes") or ""))
    ctx.pause.pause("scheduling widget opened")
    await ctx.client.send("schedule_appointment_action", url=url)
    logger.info("Booking widget opened for conversation %s", ctx.session.conversation_id)
    return ToolResult.success(message="The booking calendar is now open for the user.", url=url)


SCHEDULING_TOOL = ToolSpec(
    declaration=ToolDeclaration(
        name="schedule_appointment",
        description=(
            "Open the booking calendar so the user can pick an appointment slot. "
            "Use when the user wants to book, schedule, or reserve a meeting."
        ),
        parameters={
            "type": "object",
            "properties": {
                "notes": {
                    "type": "string",
                    "description": "Short summary of what the appointment is about.",
                },
            },
        },
    ),
    handler=schedule_appointment,
    category=ToolCategory.SILENT_PARTIAL,
    action_type="schedule_appointment",
)
