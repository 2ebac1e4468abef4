from voice_gateway.tools.registry import (
    ToolCategory,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    ToolStatus,
    build_default_registry,
)

__all__ = [
    "ToolCategory", "ToolRegistry", "ToolResult", "ToolSpec", "ToolStatus",
    "build_default_registry",
]
