"""
Fast validation of extracted customer profile data.

Inference-free checks that catch obvious extraction mistakes before an action
is built on them:
- Check-out not after check-in (with a cross-month fix for "May 28 til the 6th")
- Check-in in the past
- Zero-night and very long stays
- Off-by-one day between what the customer said and what was extracted
- Party size without adults, negative counts, very large groups

Issues with ERROR severity block auto-execution of any action whose
parameters are sourced from the affected profile field.
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from agent.state.schemas import IssueSeverity, Speaker, TranscriptMessage, ValidationIssue

logger = logging.getLogger(__name__)

MAX_REASONABLE_NIGHTS = 30
LARGE_GROUP_SIZE = 10

CROSS_MONTH_PATTERN = re.compile(
    r"\b(til|till|until|to|through|thru)\s+(?:the\s+)?(\d{1,2})(?:st|nd|rd|th)?\b",
    re.IGNORECASE,
)
ORDINAL_DAY_PATTERN = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ProfileValidationResult:
    """Outcome of validating a profile."""

    issues: list[ValidationIssue]

    @property
    def valid(self) -> bool:
        return not any(issue.severity == IssueSeverity.ERROR for issue in self.issues)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value.strip())
    return None


def _shift_month(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _shift_year(value: date, years: int) -> date:
    year = value.year + years
    day = min(value.day, calendar.monthrange(year, value.month)[1])
    return date(year, value.month, day)


def _ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _recent_customer_text(messages: list[TranscriptMessage] | None, limit: int) -> str:
    if not messages:
        return ""
    customer = [m.text.lower() for m in messages if m.speaker == Speaker.CUSTOMER]
    return " ".join(customer[-limit:])


def validate_travel_dates(
    profile: dict[str, Any],
    recent_messages: list[TranscriptMessage] | None = None,
    today: date | None = None,
) -> list[ValidationIssue]:
    """
    Validate travel dates for logical consistency.

    Args:
        profile: Customer profile
        recent_messages: Recent transcript, used to detect cross-month and off-by-one patterns
        today: Reference date (defaults to today)

    Returns:
        List of issues (empty when dates are absent or look fine)
    """
    travel_dates = profile.get("travel_dates") or {}
    raw_check_in = travel_dates.get("check_in")
    raw_check_out = travel_dates.get("check_out")
    if not raw_check_in or not raw_check_out:
        return []

    issues: list[ValidationIssue] = []
    check_in = _parse_date(raw_check_in)
    check_out = _parse_date(raw_check_out)
    if check_in is None or check_out is None:
        field_name = "travel_dates.check_in" if check_in is None else "travel_dates.check_out"
        return [
            ValidationIssue(
                field=field_name,
                severity=IssueSeverity.ERROR,
                message=f"Unrecognized date: {raw_check_in if check_in is None else raw_check_out}",
                suggestion="Dates must be in YYYY-MM-DD format",
            )
        ]

    today = today or date.today()
    customer_text = _recent_customer_text(recent_messages, limit=5)

    # 1. Check-out must be after check-in
    if check_out < check_in:
        same_month = (check_in.year, check_in.month) == (check_out.year, check_out.month)
        if same_month and check_in.day >= 25 and check_out.day <= 10:
            fixed = _shift_month(check_out, 1)
            said = CROSS_MONTH_PATTERN.search(customer_text)
            connector = said.group(1) if said else "til"
            issues.append(
                ValidationIssue(
                    field="travel_dates.check_out",
                    severity=IssueSeverity.WARNING,
                    message=(
                        f"Check-out ({_ordinal(check_out.day)}) is before "
                        f"check-in ({_ordinal(check_in.day)}), likely a cross-month stay"
                    ),
                    suggestion=(
                        f"Did the customer mean {fixed:%b} {fixed.day} "
                        f"instead of {check_out:%b} {check_out.day}?"
                    ),
                    agent_hint=(
                        f"Just to confirm - when you said '{check_in:%b} {check_in.day} "
                        f"{connector} the {_ordinal(check_out.day)}', did you mean "
                        f"checking out on {fixed:%b} {fixed.day}?"
                    ),
                    auto_fix={"travel_dates": {**travel_dates, "check_out": fixed.isoformat()}},
                )
            )
        else:
            issues.append(
                ValidationIssue(
                    field="travel_dates",
                    severity=IssueSeverity.ERROR,
                    message="Check-out date must be after check-in date",
                    suggestion=f"Check-in: {check_in:%b %d, %Y}, Check-out: {check_out:%b %d, %Y} seems wrong",
                )
            )
    elif check_out == check_in:
        issues.append(
            ValidationIssue(
                field="travel_dates",
                severity=IssueSeverity.ERROR,
                message="Same-day check-in and check-out",
                suggestion="This might be a mistake - typical stays are at least 1 night",
            )
        )
    elif (check_out - check_in).days > MAX_REASONABLE_NIGHTS:
        nights = (check_out - check_in).days
        issues.append(
            ValidationIssue(
                field="travel_dates",
                severity=IssueSeverity.WARNING,
                message=f"Very long stay ({nights} nights)",
                suggestion="Please verify - this is unusually long for a vacation booking",
            )
        )

    # 2. Check-in shouldn't be in the past (one day of slack)
    if (today - check_in).days > 1:
        issues.append(
            ValidationIssue(
                field="travel_dates.check_in",
                severity=IssueSeverity.ERROR,
                message="Check-in date is in the past",
                suggestion=f"Did you mean {check_in.year + 1} instead of {check_in.year}?",
                auto_fix={
                    "travel_dates": {
                        **travel_dates,
                        "check_in": _shift_year(check_in, 1).isoformat(),
                        "check_out": _shift_year(check_out, 1).isoformat(),
                    }
                },
            )
        )

    # 3. Customer said a day one off from the extracted check-in
    mentioned = {int(day) for day in ORDINAL_DAY_PATTERN.findall(customer_text)}
    if mentioned and check_in.day not in mentioned:
        close = sorted(day for day in mentioned if abs(day - check_in.day) == 1)
        if close:
            said_day = close[0]
            issues.append(
                ValidationIssue(
                    field="travel_dates.check_in",
                    severity=IssueSeverity.WARNING,
                    message=(
                        f"Customer said \"{_ordinal(said_day)}\" but check-in was "
                        f"extracted as the {_ordinal(check_in.day)}"
                    ),
                    suggestion=f"Did they mean the {_ordinal(said_day)}?",
                    agent_hint=(
                        f"I have you checking in on {check_in:%B} {_ordinal(check_in.day)} - "
                        f"is that correct, or did you mean the {_ordinal(said_day)}?"
                    ),
                )
            )

    return issues


def validate_party_size(profile: dict[str, Any]) -> list[ValidationIssue]:
    """Validate adults/children counts."""
    party = profile.get("party_size") or {}
    adults = _as_int(party.get("adults"))
    children = _as_int(party.get("children"))
    if adults is None and children is None:
        return []

    adults = adults or 0
    children = children or 0
    issues: list[ValidationIssue] = []

    if adults < 0 or children < 0:
        issues.append(
            ValidationIssue(
                field="party_size",
                severity=IssueSeverity.ERROR,
                message="Party size cannot be negative",
                suggestion="Please correct the number of guests",
            )
        )
    elif adults == 0 and children > 0:
        issues.append(
            ValidationIssue(
                field="party_size.adults",
                severity=IssueSeverity.ERROR,
                message="At least one adult required",
                suggestion="Booking requires at least 1 adult",
                agent_hint="How many adults will be traveling with the children?",
            )
        )

    if adults + children > LARGE_GROUP_SIZE:
        issues.append(
            ValidationIssue(
                field="party_size",
                severity=IssueSeverity.WARNING,
                message=f"Large group ({adults + children} people)",
                suggestion="Please verify - may need multiple rooms",
            )
        )

    return issues


def validate_customer_profile(
    profile: dict[str, Any],
    recent_messages: list[TranscriptMessage] | None = None,
    today: date | None = None,
) -> ProfileValidationResult:
    """Run all profile validations."""
    issues = validate_travel_dates(profile, recent_messages, today) + validate_party_size(profile)
    if issues:
        logger.info(
            f"Profile validation found issues | count={len(issues)} | "
            f"errors={sum(1 for i in issues if i.severity == IssueSeverity.ERROR)}"
        )
    return ProfileValidationResult(issues=issues)


def issue_affects_source(issue_field: str, source: str) -> bool:
    """True when an issue on `issue_field` concerns the profile path `source`."""
    return (
        issue_field == source
        or source.startswith(f"{issue_field}.")
        or issue_field.startswith(f"{source}.")
    )


def blocking_issues(
    issues: list[ValidationIssue], sources: list[str]
) -> list[ValidationIssue]:
    """ERROR issues that concern any of the given profile source paths."""
    return [
        issue
        for issue in issues
        if issue.severity == IssueSeverity.ERROR
        and any(issue_affects_source(issue.field, source) for source in sources)
    ]
