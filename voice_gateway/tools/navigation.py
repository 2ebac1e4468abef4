"""Page navigation tool: scrolls the host page to a named section."""

from typing import Any

from voice_gateway.services.llm import ToolDeclaration
from voice_gateway.tools.context import ToolContext
from voice_gateway.tools.registry import ToolCategory, ToolResult, ToolSpec


async def navigate_to_section(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    target = str(args.get("section") or "").strip()
    if not target:
        return ToolResult.error("No section was given.")

    sections = ctx.session.bot.sections if ctx.session.bot else []
    if sections:
        match = next((s for s in sections if s.lower() == target.lower()), None)
        if match is None:
            return ToolResult.error(
                f"Unknown section '{target}'.", available=sections
            )
        target = match

    await ctx.client.send("navigation_action", target=target)
    return ToolResult.success(section=target)


NAVIGATION_TOOL = ToolSpec(
    declaration=ToolDeclaration(
        name="navigate_to_section",
        description="Scroll the website the user is on to the named section.",
        parameters={
            "type": "object",
            "properties": {
                "section": {"type": "string", "description": "Section name to show."},
            },
            "required": ["section"],
        },
    ),
    handler=navigate_to_section,
    category=ToolCategory.SILENT_COMPLETE,
    action_type="navigate",
)
