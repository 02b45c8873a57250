"""
Unit tests for agent/validation/profile_validator.py.

Tests coverage:
- Cross-month date extraction ("May 28th til the 6th") -> warning with auto-fix
- Reversed / same-day / very long stays
- Check-in in the past -> error with next-year auto-fix
- Off-by-one day between what the customer said and what was extracted
- Party size checks
- blocking_issues() source matching
"""

from datetime import UTC, date, datetime

import pytest

from agent.state.schemas import IssueSeverity, Speaker, TranscriptMessage, ValidationIssue
from agent.validation.profile_validator import (
    blocking_issues,
    issue_affects_source,
    validate_customer_profile,
    validate_party_size,
    validate_travel_dates,
)

TODAY = date(2025, 1, 10)


def customer_says(*texts: str) -> list[TranscriptMessage]:
    return [
        TranscriptMessage(speaker=Speaker.CUSTOMER, text=text, timestamp=datetime.now(UTC))
        for text in texts
    ]


def dates(check_in: str, check_out: str) -> dict:
    return {"travel_dates": {"check_in": check_in, "check_out": check_out}}


# ============================================================================
# Travel dates
# ============================================================================


class TestTravelDates:
    """validate_travel_dates()"""

    def test_valid_dates_have_no_issues(self):
        assert validate_travel_dates(dates("2025-05-28", "2025-06-06"), today=TODAY) == []

    def test_missing_dates_are_skipped(self):
        assert validate_travel_dates({"travel_dates": {"check_in": "2025-05-28"}}, today=TODAY) == []
        assert validate_travel_dates({}, today=TODAY) == []

    def test_cross_month_extraction_gets_auto_fix(self):
        profile = dates("2025-05-28", "2025-05-06")

        issues = validate_travel_dates(profile, customer_says("May 28th til the 6th"), today=TODAY)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.field == "travel_dates.check_out"
        assert issue.severity == IssueSeverity.WARNING
        assert issue.auto_fix == {
            "travel_dates": {"check_in": "2025-05-28", "check_out": "2025-06-06"}
        }
        assert "til the 6th" in issue.agent_hint
        assert "Jun 6" in issue.agent_hint

    def test_cross_month_fix_rolls_into_next_year(self):
        issues = validate_travel_dates(dates("2025-12-27", "2025-12-03"), today=TODAY)

        assert issues[0].auto_fix["travel_dates"]["check_out"] == "2026-01-03"

    def test_reversed_dates_are_an_error(self):
        issues = validate_travel_dates(dates("2025-06-15", "2025-06-10"), today=TODAY)

        assert len(issues) == 1
        assert issues[0].field == "travel_dates"
        assert issues[0].severity == IssueSeverity.ERROR
        assert issues[0].auto_fix is None

    def test_same_day_is_an_error(self):
        issues = validate_travel_dates(dates("2025-06-10", "2025-06-10"), today=TODAY)

        assert issues[0].severity == IssueSeverity.ERROR
        assert "Same-day" in issues[0].message

    def test_very_long_stay_is_a_warning(self):
        issues = validate_travel_dates(dates("2025-06-01", "2025-08-01"), today=TODAY)

        assert issues[0].severity == IssueSeverity.WARNING
        assert "61 nights" in issues[0].message

    def test_past_check_in_suggests_next_year(self):
        issues = validate_travel_dates(dates("2024-05-28", "2024-06-06"), today=TODAY)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.field == "travel_dates.check_in"
        assert issue.severity == IssueSeverity.ERROR
        assert issue.auto_fix["travel_dates"] == {"check_in": "2025-05-28", "check_out": "2025-06-06"}

    def test_yesterday_is_tolerated(self):
        assert validate_travel_dates(dates("2025-01-09", "2025-01-12"), today=TODAY) == []

    def test_off_by_one_day_warning(self):
        profile = dates("2025-05-14", "2025-05-20")

        issues = validate_travel_dates(profile, customer_says("from the 15th please"), today=TODAY)

        assert len(issues) == 1
        assert issues[0].severity == IssueSeverity.WARNING
        assert '"15th"' in issues[0].message
        assert "14th" in issues[0].message

    def test_agent_speech_is_not_used_for_off_by_one(self):
        messages = [
            TranscriptMessage(speaker=Speaker.AGENT, text="the 15th?", timestamp=datetime.now(UTC))
        ]

        assert validate_travel_dates(dates("2025-05-14", "2025-05-20"), messages, today=TODAY) == []

    def test_unparsable_date(self):
        issues = validate_travel_dates(dates("next Friday", "2025-05-20"), today=TODAY)

        assert issues[0].field == "travel_dates.check_in"
        assert issues[0].severity == IssueSeverity.ERROR


# ============================================================================
# Party size
# ============================================================================


class TestPartySize:
    """validate_party_size()"""

    @pytest.mark.parametrize(
        "party,expected_field,expected_severity",
        [
            ({"adults": -1}, "party_size", IssueSeverity.ERROR),
            ({"adults": 0, "children": 2}, "party_size.adults", IssueSeverity.ERROR),
            ({"adults": 8, "children": 4}, "party_size", IssueSeverity.WARNING),
            ({"adults": "0", "children": "1"}, "party_size.adults", IssueSeverity.ERROR),
        ],
    )
    def test_party_issues(self, party, expected_field, expected_severity):
        issues = validate_party_size({"party_size": party})

        assert issues[0].field == expected_field
        assert issues[0].severity == expected_severity

    def test_normal_party_is_fine(self):
        assert validate_party_size({"party_size": {"adults": 2, "children": 1}}) == []

    def test_missing_party_is_skipped(self):
        assert validate_party_size({"destination": "Cancun"}) == []


# ============================================================================
# Combined result and blocking
# ============================================================================


class TestProfileValidation:
    """validate_customer_profile() and blocking_issues()"""

    def test_result_valid_with_warnings_only(self):
        profile = {**dates("2025-05-28", "2025-05-06"), "party_size": {"adults": 12}}

        result = validate_customer_profile(profile, today=TODAY)

        assert len(result.issues) == 2
        assert result.valid is True

    def test_result_invalid_with_error(self):
        result = validate_customer_profile({"party_size": {"adults": 0, "children": 1}}, today=TODAY)

        assert result.valid is False

    @pytest.mark.parametrize(
        "issue_field,source,expected",
        [
            ("travel_dates", "travel_dates.check_in", True),
            ("travel_dates.check_in", "travel_dates", True),
            ("travel_dates.check_in", "travel_dates.check_in", True),
            ("travel_dates.check_in", "travel_dates.check_out", False),
            ("party_size", "email", False),
        ],
    )
    def test_issue_affects_source(self, issue_field, source, expected):
        assert issue_affects_source(issue_field, source) is expected

    def test_blocking_issues_only_errors_on_sources(self):
        issues = [
            ValidationIssue(field="travel_dates", severity=IssueSeverity.ERROR, message="bad"),
            ValidationIssue(field="party_size", severity=IssueSeverity.WARNING, message="big"),
            ValidationIssue(field="email", severity=IssueSeverity.ERROR, message="bad email"),
        ]

        blocking = blocking_issues(issues, ["travel_dates.check_in", "party_size.adults"])

        assert [issue.field for issue in blocking] == ["travel_dates"]
