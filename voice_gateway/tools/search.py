"""
Knowledge base search over the bot's configured documents.

Entries are ``{"title": ..., "content": ...}`` dicts on the bot config.
Matching is keyword overlap; the executor turns the hits into an
instruction so the model narrates them conversationally.
"""

import re
from typing import Any

from voice_gateway.services.llm import ToolDeclaration
from voice_gateway.tools.context import ToolContext
from voice_gateway.tools.registry import ToolCategory, ToolResult, ToolSpec

MAX_RESULTS = 3
MIN_TOKEN_LENGTH = 3

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) >= MIN_TOKEN_LENGTH}


def search_entries(entries: list[dict[str, Any]], query: str, limit: int = MAX_RESULTS) -> list[dict[str, str]]:
    """Rank entries by how many query tokens they contain. Title hits count double."""
    wanted = _tokens(query)
    if not wanted:
        return []
    scored: list[tuple[int, int, dict[str, str]]] = []
    for index, entry in enumerate(entries):
        title = str(entry.get("title") or "")
        content = str(entry.get("content") or "")
        score = 2 * len(wanted & _tokens(title)) + len(wanted & _tokens(content))
        if score:
            scored.append((score, -index, {"title": title, "content": content}))
    scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [hit for _, _, hit in scored[:limit]]


async def search_knowledge_base(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    query = str(args.get("query") or "").strip()
    if not query:
        return ToolResult.error("Empty search query.")
    entries = ctx.session.bot.knowledge if ctx.session.bot else []
    return ToolResult.success(query=query, results=search_entries(entries, query))


SEARCH_TOOL = ToolSpec(
    declaration=ToolDeclaration(
        name="search_knowledge_base",
        description=(
            "Search the business's knowledge base for facts such as prices, "
            "opening hours, products, or policies."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look up."},
            },
            "required": ["query"],
        },
    ),
    handler=search_knowledge_base,
    category=ToolCategory.DATA_RETURNING,
    action_type="search",
)
