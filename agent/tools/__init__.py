"""
Tool Service catalog.

Exports the catalog of business operations the engine can suggest and
dispatch, with their parameter, risk and concurrency contracts.
"""

from agent.tools.catalog import (
    DEFAULT_TOOLS,
    ToolCatalog,
    ToolDefinition,
    ToolParameter,
    build_parameters,
    default_catalog,
    get_profile_value,
    missing_required_parameters,
)

__all__ = [
    "DEFAULT_TOOLS",
    "ToolCatalog",
    "ToolDefinition",
    "ToolParameter",
    "build_parameters",
    "default_catalog",
    "get_profile_value",
    "missing_required_parameters",
]
