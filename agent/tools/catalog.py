"""
Tool catalog - parameter, risk and concurrency contracts of the Tool Service.

Each tool parameter may name the customer profile path it is sourced from
(e.g. "travel_dates.check_in"). The profile is authoritative: at dispatch
time a value found at that path replaces whatever the action proposed.

Risk levels:
- LOW: Data lookups and read-only operations, may auto-execute at >= 95
- MEDIUM: Emails and scheduling, always needs confirmation from the operator
- HIGH: Inventory and money, always needs confirmation, never auto-executes
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from agent.state.schemas import RiskLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolParameter:
    """One parameter of a tool."""

    name: str
    type: str
    description: str
    required: bool = False
    source: str | None = None


@dataclass(frozen=True)
class ToolDefinition:
    """Contract of one Tool Service operation."""

    name: str
    description: str
    intent: str
    parameters: tuple[ToolParameter, ...]
    risk_level: RiskLevel
    auto_execute_threshold: int
    requires_confirmation: bool
    max_concurrent: int
    idempotent: bool = False
    estimated_duration_s: int = 2
    cost: str = "free"

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"{self.name}: max_concurrent must be >= 1")
        if self.risk_level == RiskLevel.HIGH and (
            self.auto_execute_threshold != 0 or not self.requires_confirmation
        ):
            raise ValueError(f"{self.name}: high risk tools can never auto-execute")

    @property
    def required_parameters(self) -> list[ToolParameter]:
        return [param for param in self.parameters if param.required]

    def parameter(self, name: str) -> ToolParameter | None:
        return next((param for param in self.parameters if param.name == name), None)

    def parameter_sources(self) -> dict[str, str]:
        """Map parameter name -> profile path, for parameters with a profile source."""
        return {param.name: param.source for param in self.parameters if param.source}


def get_profile_value(profile: dict[str, Any], path: str) -> Any:
    """
    Read a dotted path from the profile ("party_size.adults").

    Returns None when any segment is missing.
    """
    current: Any = profile
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def build_parameters(tool: ToolDefinition, profile: dict[str, Any]) -> dict[str, Any]:
    """Build tool parameters from the profile sources that currently have a value."""
    params: dict[str, Any] = {}
    for name, source in tool.parameter_sources().items():
        value = get_profile_value(profile, source)
        if value is not None and value != "":
            params[name] = value
    return params


def missing_required_parameters(
    tool: ToolDefinition,
    profile: dict[str, Any],
    parameters: dict[str, Any] | None = None,
) -> list[str]:
    """
    List required parameters available neither in the profile nor in `parameters`.

    Example:
        >>> tool = default_catalog().get("check_availability")
        >>> missing_required_parameters(tool, {"party_size": {"adults": 2}})
        ['check_in', 'check_out']
    """
    parameters = parameters or {}
    missing = []
    for param in tool.required_parameters:
        value = get_profile_value(profile, param.source) if param.source else None
        if value is None or value == "":
            value = parameters.get(param.name)
        if value is None or value == "":
            missing.append(param.name)
    return missing


_CHECK_IN = ToolParameter("check_in", "string", "Check-in date (YYYY-MM-DD)", True, "travel_dates.check_in")
_CHECK_OUT = ToolParameter("check_out", "string", "Check-out date (YYYY-MM-DD)", True, "travel_dates.check_out")
_ADULTS = ToolParameter("adults", "number", "Number of adults", True, "party_size.adults")
_CHILDREN = ToolParameter("children", "number", "Number of children", False, "party_size.children")
_PROPERTY_ID = ToolParameter("property_id", "string", "Property ID", True, "preferred_property")
_CUSTOMER_EMAIL = ToolParameter("customer_email", "string", "Customer email address", True, "email")
_QUOTE_ID = ToolParameter("quote_id", "string", "Quote ID", True)

DEFAULT_TOOLS: tuple[ToolDefinition, ...] = (
    # ==================== DATA LOOKUPS (Low Risk) ====================
    ToolDefinition(
        name="check_availability",
        description="Search for available rooms matching customer criteria",
        intent="check_availability",
        parameters=(
            _CHECK_IN,
            _CHECK_OUT,
            _ADULTS,
            _CHILDREN,
            ToolParameter("property_id", "string", "Specific property ID", False, "preferred_property"),
        ),
        risk_level=RiskLevel.LOW,
        auto_execute_threshold=95,
        requires_confirmation=False,
        max_concurrent=2,
        idempotent=True,
        estimated_duration_s=3,
    ),
    ToolDefinition(
        name="search_properties",
        description="Find properties matching customer preferences",
        intent="search_properties",
        parameters=(
            ToolParameter("location", "string", "Destination (e.g. 'Cancun')", False, "destination"),
            ToolParameter("amenities", "array", "Required amenities", False, "preferences"),
            ToolParameter("budget", "object", "Price range", False, "budget"),
        ),
        risk_level=RiskLevel.LOW,
        auto_execute_threshold=95,
        requires_confirmation=False,
        max_concurrent=1,
        idempotent=True,
    ),
    ToolDefinition(
        name="get_property_details",
        description="Get detailed information about a specific property",
        intent="get_property_details",
        parameters=(_PROPERTY_ID,),
        risk_level=RiskLevel.LOW,
        auto_execute_threshold=95,
        requires_confirmation=False,
        max_concurrent=3,
        idempotent=True,
        estimated_duration_s=1,
    ),
    ToolDefinition(
        name="calculate_quote",
        description="Generate pricing quote for specific dates and property",
        intent="calculate_pricing",
        parameters=(
            _PROPERTY_ID,
            _CHECK_IN,
            _CHECK_OUT,
            _ADULTS,
            _CHILDREN,
            ToolParameter("room_type", "string", "Preferred room type", False, "room_type"),
        ),
        risk_level=RiskLevel.LOW,
        auto_execute_threshold=95,
        requires_confirmation=False,
        max_concurrent=2,
        idempotent=True,
    ),
    ToolDefinition(
        name="lookup_customer",
        description="Find existing customer record",
        intent="lookup_customer",
        parameters=(
            ToolParameter("email", "string", "Customer email", False, "email"),
            ToolParameter("phone", "string", "Customer phone", False, "phone"),
            ToolParameter("name", "string", "Customer name", False, "name"),
        ),
        risk_level=RiskLevel.LOW,
        auto_execute_threshold=90,
        requires_confirmation=False,
        max_concurrent=1,
        idempotent=True,
        estimated_duration_s=1,
    ),
    # ==================== COMMUNICATIONS (Medium Risk) ====================
    ToolDefinition(
        name="send_property_email",
        description="Email property details to customer",
        intent="send_property_details",
        parameters=(
            _PROPERTY_ID,
            _CUSTOMER_EMAIL,
            ToolParameter("include_quote", "boolean", "Include pricing quote"),
        ),
        risk_level=RiskLevel.MEDIUM,
        auto_execute_threshold=92,
        requires_confirmation=False,
        max_concurrent=2,
    ),
    ToolDefinition(
        name="send_quote_email",
        description="Email detailed quote to customer",
        intent="send_quote",
        parameters=(_QUOTE_ID, _CUSTOMER_EMAIL),
        risk_level=RiskLevel.MEDIUM,
        auto_execute_threshold=90,
        requires_confirmation=False,
        max_concurrent=2,
    ),
    ToolDefinition(
        name="schedule_callback",
        description="Schedule follow-up callback",
        intent="schedule_callback",
        parameters=(
            ToolParameter("customer_phone", "string", "Customer phone number", True, "phone"),
            ToolParameter("preferred_time", "string", "Preferred callback time", True),
            ToolParameter("notes", "string", "Notes for callback"),
        ),
        risk_level=RiskLevel.MEDIUM,
        auto_execute_threshold=85,
        requires_confirmation=True,
        max_concurrent=1,
        estimated_duration_s=1,
    ),
    # ==================== BOOKINGS (High Risk) ====================
    ToolDefinition(
        name="create_hold",
        description="Place temporary hold on rooms",
        intent="create_hold",
        parameters=(
            _PROPERTY_ID,
            _CHECK_IN,
            _CHECK_OUT,
            ToolParameter("room_count", "number", "Number of rooms", True),
            ToolParameter("hold_duration", "number", "Hold duration in minutes"),
        ),
        risk_level=RiskLevel.HIGH,
        auto_execute_threshold=0,
        requires_confirmation=True,
        max_concurrent=1,
        estimated_duration_s=3,
        cost="commits_inventory",
    ),
    ToolDefinition(
        name="create_booking",
        description="Create confirmed booking",
        intent="create_booking",
        parameters=(
            _PROPERTY_ID,
            _CHECK_IN,
            _CHECK_OUT,
            ToolParameter("guest_info", "object", "Guest information", True),
            ToolParameter("payment_info", "object", "Payment information", True),
        ),
        risk_level=RiskLevel.HIGH,
        auto_execute_threshold=0,
        requires_confirmation=True,
        max_concurrent=1,
        estimated_duration_s=5,
        cost="commits_inventory",
    ),
    ToolDefinition(
        name="apply_discount",
        description="Apply discount code to quote",
        intent="apply_discount",
        parameters=(
            _QUOTE_ID,
            ToolParameter("discount_code", "string", "Discount code", True),
        ),
        risk_level=RiskLevel.HIGH,
        auto_execute_threshold=0,
        requires_confirmation=True,
        max_concurrent=1,
        cost="paid",
    ),
)


class ToolCatalog:
    """Lookup over a set of tool definitions."""

    def __init__(self, tools: Iterable[ToolDefinition]):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool in catalog: {tool.name}")
            self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def by_intent(self, intent: str) -> ToolDefinition | None:
        return next((tool for tool in self._tools.values() if tool.intent == intent), None)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def summary_for_prompt(self) -> str:
        """
        One line per tool for the action generation prompt.

        Example line:
            - check_availability [risk=low, auto>=95] Search for available rooms... (needs: check_in, check_out, adults)
        """
        lines = []
        for tool in self._tools.values():
            required = ", ".join(param.name for param in tool.required_parameters) or "nothing"
            auto = f"auto>={tool.auto_execute_threshold}" if tool.auto_execute_threshold else "never auto"
            lines.append(
                f"- {tool.name} [risk={tool.risk_level.value}, {auto}] "
                f"{tool.description} (needs: {required})"
            )
        return "\n".join(lines)


def default_catalog() -> ToolCatalog:
    """Catalog of the hotel booking Tool Service."""
    return ToolCatalog(DEFAULT_TOOLS)
