"""
Unit tests for agent/tools/catalog.py and agent/dispatch/summaries.py.

Tests coverage:
- Default catalog contents, risk levels and concurrency caps
- Tool definition constraints (high risk never auto-executes)
- Profile path lookups and parameter building
- Required parameter detection
- Prompt summary
- Result summaries per tool
"""

import pytest

from agent.dispatch.summaries import summarize_result
from agent.state.schemas import RiskLevel
from agent.tools.catalog import (
    DEFAULT_TOOLS,
    ToolCatalog,
    ToolDefinition,
    ToolParameter,
    build_parameters,
    get_profile_value,
    missing_required_parameters,
)

PROFILE = {
    "destination": "Cancun",
    "email": "ana@example.com",
    "travel_dates": {"check_in": "2099-05-28", "check_out": "2099-06-06"},
    "party_size": {"adults": 2, "children": 0},
}


# ============================================================================
# Catalog
# ============================================================================


class TestDefaultCatalog:
    """Contents of the hotel booking catalog."""

    def test_has_eleven_tools(self, catalog):
        assert len(catalog) == 11
        assert "check_availability" in catalog
        assert "launch_rocket" not in catalog

    @pytest.mark.parametrize(
        "name,risk,threshold,max_concurrent",
        [
            ("check_availability", RiskLevel.LOW, 95, 2),
            ("search_properties", RiskLevel.LOW, 95, 1),
            ("get_property_details", RiskLevel.LOW, 95, 3),
            ("lookup_customer", RiskLevel.LOW, 90, 1),
            ("send_quote_email", RiskLevel.MEDIUM, 90, 2),
            ("schedule_callback", RiskLevel.MEDIUM, 85, 1),
            ("create_booking", RiskLevel.HIGH, 0, 1),
        ],
    )
    def test_tool_contracts(self, catalog, name, risk, threshold, max_concurrent):
        tool = catalog.get(name)

        assert tool.risk_level == risk
        assert tool.auto_execute_threshold == threshold
        assert tool.max_concurrent == max_concurrent

    def test_high_risk_tools_require_confirmation(self, catalog):
        high = [tool for tool in catalog if tool.risk_level == RiskLevel.HIGH]

        assert {tool.name for tool in high} == {"create_hold", "create_booking", "apply_discount"}
        assert all(tool.requires_confirmation for tool in high)

    def test_by_intent(self, catalog):
        assert catalog.by_intent("calculate_pricing").name == "calculate_quote"
        assert catalog.by_intent("send_quote").name == "send_quote_email"
        assert catalog.by_intent("small_talk") is None

    def test_duplicate_tools_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ToolCatalog([DEFAULT_TOOLS[0], DEFAULT_TOOLS[0]])

    def test_summary_for_prompt(self, catalog):
        summary = catalog.summary_for_prompt()
        lines = summary.splitlines()

        assert len(lines) == 11
        assert lines[0].startswith("- check_availability [risk=low, auto>=95]")
        assert "needs: check_in, check_out, adults" in lines[0]
        assert "create_booking [risk=high, never auto]" in summary


class TestToolDefinition:
    """ToolDefinition validation."""

    def test_high_risk_with_threshold_rejected(self):
        with pytest.raises(ValueError, match="never auto-execute"):
            ToolDefinition(
                name="refund",
                description="Refund a payment",
                intent="refund",
                parameters=(),
                risk_level=RiskLevel.HIGH,
                auto_execute_threshold=99,
                requires_confirmation=True,
                max_concurrent=1,
            )

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValueError, match="max_concurrent"):
            ToolDefinition(
                name="ping",
                description="Ping",
                intent="ping",
                parameters=(),
                risk_level=RiskLevel.LOW,
                auto_execute_threshold=95,
                requires_confirmation=False,
                max_concurrent=0,
            )

    def test_parameter_lookup(self, catalog):
        tool = catalog.get("check_availability")

        assert tool.parameter("adults") == ToolParameter(
            "adults", "number", "Number of adults", True, "party_size.adults"
        )
        assert tool.parameter("nope") is None
        assert [param.name for param in tool.required_parameters] == ["check_in", "check_out", "adults"]


# ============================================================================
# Parameters
# ============================================================================


class TestParameters:
    """Profile-sourced parameter helpers."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("destination", "Cancun"),
            ("travel_dates.check_in", "2099-05-28"),
            ("party_size.children", 0),
            ("party_size.infants", None),
            ("destination.city", None),
            ("budget.max", None),
        ],
    )
    def test_get_profile_value(self, path, expected):
        assert get_profile_value(PROFILE, path) == expected

    def test_build_parameters(self, catalog):
        params = build_parameters(catalog.get("check_availability"), PROFILE)

        assert params == {
            "check_in": "2099-05-28",
            "check_out": "2099-06-06",
            "adults": 2,
            "children": 0,
        }

    def test_missing_required_parameters(self, catalog):
        tool = catalog.get("check_availability")

        assert missing_required_parameters(tool, {"party_size": {"adults": 2}}) == [
            "check_in",
            "check_out",
        ]
        assert missing_required_parameters(tool, PROFILE) == []

    def test_proposed_parameters_fill_gaps(self, catalog):
        tool = catalog.get("send_quote_email")

        assert missing_required_parameters(tool, PROFILE) == ["quote_id"]
        assert missing_required_parameters(tool, PROFILE, {"quote_id": "q-1"}) == []


# ============================================================================
# Summaries
# ============================================================================


class TestSummaries:
    """summarize_result()"""

    @pytest.mark.parametrize(
        "tool_name,data,expected",
        [
            ("check_availability", {"available": True, "rooms": [{}]}, "Found 1 available room"),
            ("check_availability", {"available": False}, "No rooms available for selected dates"),
            ("search_properties", {"properties": [{}, {}, {}]}, "Found 3 matching properties"),
            ("calculate_quote", {"total": 2250, "currency": "USD"}, "Quote: USD 2250"),
            ("get_property_details", {"name": "Casa Azul"}, "Retrieved details for Casa Azul"),
            ("lookup_customer", {"found": True, "customer_name": "Ana"}, "Found customer: Ana"),
            ("lookup_customer", {"found": False}, "Customer not found"),
            ("send_quote_email", {"sent": True}, "Email sent successfully"),
            ("send_property_email", {"sent": False}, "Failed to send email"),
            ("schedule_callback", {"scheduled": True, "callback_time": "3pm"}, "Callback scheduled for 3pm"),
            ("create_hold", {"hold_id": "H1", "expires_at": "18:00"}, "Hold H1 placed until 18:00"),
            ("create_booking", {"confirmation_number": "BK-42"}, "Booking confirmed: BK-42"),
            (
                "apply_discount",
                {"new_total": 2000, "currency": "USD"},
                "Discount applied, new total: USD 2000",
            ),
        ],
    )
    def test_summaries(self, tool_name, data, expected):
        assert summarize_result(tool_name, data) == expected

    def test_unknown_tool_or_data_falls_back(self):
        assert summarize_result("launch_rocket", {"ok": True}) == "Completed successfully"
        assert summarize_result("check_availability", ["r1"]) == "Completed successfully"

    def test_unexpected_shape_falls_back(self):
        assert summarize_result("check_availability", {"available": True, "rooms": 3}) == (
            "No rooms available for selected dates"
        )
