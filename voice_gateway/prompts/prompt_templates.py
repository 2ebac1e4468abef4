"""Instructions injected into the chat to make the model narrate events."""

from typing import Any, Optional

from voice_gateway.schemas.booking_schema import BookingEvent
from voice_gateway.utils import format_booking_time

SYSTEM_PREFIX = "[SYSTEM INSTRUCTION - do not read aloud]"


def _system(text: str) -> str:
    return f"{SYSTEM_PREFIX} {text}"


def build_search_results_prompt(query: str, results: list[dict[str, str]]) -> str:
    """Turn knowledge base hits into an instruction to answer conversationally."""
    if not results:
        return _system(
            f'The knowledge base has no information about "{query}". '
            "Tell the user briefly that you don't have that information and offer other help."
        )
    lines = [f'Knowledge base results for "{query}":']
    for hit in results:
        lines.append(f"- {hit['title']}: {hit['content']}")
    lines.append("Answer the user's question naturally using only this information, in 1-3 sentences.")
    return _system("\n".join(lines))


def build_silent_action_prompt(tool_name: str, payload: dict[str, Any]) -> str:
    """Ask the model to mention a UI action it performed without saying anything."""
    detail = payload.get("section") or payload.get("message") or tool_name
    return _system(
        f"You just performed the action '{tool_name}' ({detail}). "
        "Tell the user in one short sentence what you did."
    )


def build_generic_confirmation_prompt(tool_name: str, success: bool) -> str:
    if success:
        return _system(
            f"The action '{tool_name}' completed successfully. "
            "Confirm it to the user in exactly one sentence."
        )
    return _system(
        f"The action '{tool_name}' could not be completed. "
        "Apologize in one sentence and offer another way to help."
    )


EMAIL_CONFIRMATIONS = {
    "en": "Done, the email has been sent.",
    "es": "Listo, el correo ya ha sido enviado.",
}


def deterministic_confirmation(action_type: str, language: str) -> Optional[str]:
    """Fixed confirmation for recognized actions, or None to let the model phrase it."""
    if action_type == "send_email":
        return EMAIL_CONFIRMATIONS.get(language, EMAIL_CONFIRMATIONS["en"])
    return None


def build_tool_error_followup_prompt() -> str:
    return _system(
        "Something went wrong while performing the last action. "
        "Apologize briefly and ask the user how they would like to continue."
    )


def build_booking_confirmed_prompt(event: BookingEvent) -> str:
    when = format_booking_time(event.start_time, event.timezone)
    who = f" for {event.invitee_name}" if event.invitee_name else ""
    title = f" ({event.title})" if event.title else ""
    return _system(
        f"The user just booked an appointment{title}{who} on {when}. "
        "Confirm the booking warmly in one or two sentences, mention the date and time, "
        "and ask if there is anything else you can help with."
    )


def build_booking_abandoned_prompt() -> str:
    return _system(
        "The user closed the booking calendar without booking an appointment. "
        "Acknowledge it in one sentence and ask if they would like help choosing a time "
        "or anything else."
    )


def build_correction_prompt(correction: str, tool_misfire: bool) -> str:
    """Instruction that applies a supervisor's correction to the live conversation."""
    if tool_misfire:
        return _system(
            "A supervisor reviewed your last action and found it was wrong. "
            f'Correction: "{correction}". Without apologizing at length, silently retry '
            "the action correctly, calling the right tool again if needed."
        )
    return _system(
        "A supervisor reviewed your last reply and found an error. "
        f'Correction: "{correction}". Apologize briefly to the user and give the '
        "corrected answer."
    )
