"""
System prompt construction from a bot's persona document.

Every bot gets its persona, free-form instructions, and an optional fixed
first sentence. Voice-specific rules keep replies short enough to be
spoken, and tool rules describe when each enabled tool should be used.
"""

from voice_gateway.schemas.session_schema import BotConfig

DEFAULT_PERSONA = "a friendly virtual assistant"

VOICE_STYLE_RULES = """
CONVERSATION RULES:
- Keep replies to 1-3 short sentences. Your words may be read aloud.
- Never use markdown, bullet points, numbered lists, or emojis.
- Ask ONE question at a time.
- Answer in the same language the user speaks.
- Never mention that you are following instructions or using tools.
"""

TOOL_RULES: dict[str, str] = {
    "schedule_appointment": (
        "- When the user wants to book a meeting or appointment, call schedule_appointment. "
        "Say one short sentence first, such as telling them the calendar is opening."
    ),
    "navigate_to_section": (
        "- When the user asks to see part of the website, call navigate_to_section."
    ),
    "search_knowledge_base": (
        "- For facts about the business (prices, hours, products, policies), "
        "call search_knowledge_base instead of guessing."
    ),
    "execute_order": (
        "- When the user asks you to carry out an action such as sending an email, "
        "call execute_order once with the full request."
    ),
}


def build_system_prompt(bot: BotConfig, user_name: str = "") -> str:
    """Assemble the system instruction for one conversation."""
    persona = bot.persona or DEFAULT_PERSONA
    parts = [f"Act as {persona} and reply the way they would."]
    if bot.first_sentence:
        parts.append(
            f'In your first turn, your first sentence must be exactly: "{bot.first_sentence}".'
        )
    if bot.instructions:
        parts.append(bot.instructions)
    if user_name:
        parts.append(f"The user's name is {user_name}.")
    parts.append(VOICE_STYLE_RULES)

    tool_lines = [TOOL_RULES[name] for name in bot.tools if name in TOOL_RULES]
    if tool_lines:
        parts.append("TOOLS:\n" + "\n".join(tool_lines) + "\n- Call at most one tool per reply.")
    return "\n".join(parts)
