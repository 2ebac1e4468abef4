"""
Tool registry: maps tool names to declarations, handlers, and behavior.

Each tool is registered once with the declaration surfaced to the model,
an async handler, and a category that tells the executor what happens
after the handler returns. Bots enable a subset by name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from voice_gateway.services.llm import ToolDeclaration

if TYPE_CHECKING:
    from voice_gateway.tools.context import ToolContext

logger = logging.getLogger(__name__)


class ToolCategory(str, Enum):
    """What the executor does with a result once the handler finishes."""
    SILENT_COMPLETE = "silent_complete"
    SILENT_PARTIAL = "silent_partial"
    DATA_RETURNING = "data_returning"
    CONFIRMATION_NEEDED = "confirmation_needed"


SILENT_CATEGORIES = frozenset({ToolCategory.SILENT_COMPLETE, ToolCategory.SILENT_PARTIAL})


class ToolStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ToolResult(BaseModel):
    """Outcome of a handler invocation."""

    status: ToolStatus
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ToolStatus.SUCCESS

    @classmethod
    def success(cls, **payload: Any) -> "ToolResult":
        return cls(status=ToolStatus.SUCCESS, payload=payload)

    @classmethod
    def error(cls, message: str, **payload: Any) -> "ToolResult":
        return cls(status=ToolStatus.ERROR, payload={"error": message, **payload})

    def to_function_response(self) -> dict[str, Any]:
        return {"status": self.status.value, **self.payload}


ToolHandler = Callable[["ToolContext", dict[str, Any]], Awaitable[ToolResult]]


class ToolExecutionError(Exception):
    """Raised by handlers for failures that should surface as an error result."""


@dataclass(frozen=True)
class ToolSpec:
    """Everything the executor needs to know about one tool."""
    declaration: ToolDeclaration
    handler: ToolHandler
    category: ToolCategory = ToolCategory.CONFIRMATION_NEEDED
    action_type: str = "generic"
    external: bool = False
    action_classifier: Optional[Callable[[dict[str, Any]], str]] = None

    @property
    def name(self) -> str:
        return self.declaration.name

    def action_type_for(self, args: dict[str, Any]) -> str:
        if self.action_classifier is not None:
            return self.action_classifier(args)
        return self.action_type


class ToolRegistry:
    """Name-indexed collection of tool specs."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec
        logger.debug("Tool registered: %s (%s)", spec.name, spec.category.value)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def subset(self, enabled: list[str]) -> "ToolRegistry":
        """Return a registry holding only the enabled tools, in registry order."""
        selected = ToolRegistry()
        for name, spec in self._tools.items():
            if name in enabled:
                selected.register(spec)
        unknown = [n for n in enabled if n not in self._tools]
        if unknown:
            logger.warning("Bot enables unknown tools: %s", unknown)
        return selected

    def declarations(self) -> list[ToolDeclaration]:
        return [spec.declaration for spec in self._tools.values()]


def build_default_registry() -> ToolRegistry:
    """Register all built-in tools."""
    from voice_gateway.tools.navigation import NAVIGATION_TOOL
    from voice_gateway.tools.orders import ORDER_TOOL
    from voice_gateway.tools.scheduling import SCHEDULING_TOOL
    from voice_gateway.tools.search import SEARCH_TOOL

    registry = ToolRegistry()
    for spec in (SCHEDULING_TOOL, NAVIGATION_TOOL, SEARCH_TOOL, ORDER_TOOL):
        registry.register(spec)
    return registry
