"""Human-readable summaries of Tool Service results."""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def _availability(data: dict[str, Any]) -> str:
    rooms = data.get("rooms")
    if data.get("available") and isinstance(rooms, list):
        return f"Found {len(rooms)} available {_plural(len(rooms), 'room', 'rooms')}"
    return "No rooms available for selected dates"


def _properties(data: dict[str, Any]) -> str:
    properties = data.get("properties")
    if isinstance(properties, list):
        return (
            f"Found {len(properties)} matching "
            f"{_plural(len(properties), 'property', 'properties')}"
        )
    return "No properties found matching criteria"


def _quote(data: dict[str, Any]) -> str:
    if data.get("total") and data.get("currency"):
        return f"Quote: {data['currency']} {data['total']}"
    return "Quote generated successfully"


def _property_details(data: dict[str, Any]) -> str:
    if data.get("name"):
        return f"Retrieved details for {data['name']}"
    return "Property details retrieved"


def _customer(data: dict[str, Any]) -> str:
    if data.get("found") and data.get("customer_name"):
        return f"Found customer: {data['customer_name']}"
    return "Customer found" if data.get("found") else "Customer not found"


def _email(data: dict[str, Any]) -> str:
    return "Email sent successfully" if data.get("sent") else "Failed to send email"


def _callback(data: dict[str, Any]) -> str:
    if data.get("scheduled") and data.get("callback_time"):
        return f"Callback scheduled for {data['callback_time']}"
    return "Callback scheduled"


def _hold(data: dict[str, Any]) -> str:
    if data.get("hold_id"):
        expires = f" until {data['expires_at']}" if data.get("expires_at") else ""
        return f"Hold {data['hold_id']} placed{expires}"
    return "Hold placed"


def _booking(data: dict[str, Any]) -> str:
    if data.get("confirmation_number"):
        return f"Booking confirmed: {data['confirmation_number']}"
    return "Booking created"


def _discount(data: dict[str, Any]) -> str:
    if data.get("new_total") and data.get("currency"):
        return f"Discount applied, new total: {data['currency']} {data['new_total']}"
    return "Discount applied"


SUMMARIZERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "check_availability": _availability,
    "search_properties": _properties,
    "calculate_quote": _quote,
    "get_property_details": _property_details,
    "lookup_customer": _customer,
    "send_property_email": _email,
    "send_quote_email": _email,
    "schedule_callback": _callback,
    "create_hold": _hold,
    "create_booking": _booking,
    "apply_discount": _discount,
}


def summarize_result(tool_name: str, data: Any) -> str:
    """
    Map raw Tool Service data to a short summary.

    Falls back to a generic message for unknown tools or unexpected data.

    Example:
        >>> summarize_result("calculate_quote", {"total": 2250, "currency": "USD"})
        'Quote: USD 2250'
    """
    summarizer = SUMMARIZERS.get(tool_name)
    if summarizer is None or not isinstance(data, dict):
        return "Completed successfully"
    try:
        return summarizer(data)
    except (TypeError, KeyError, ValueError) as e:
        logger.warning(f"Could not summarize result | tool_name={tool_name} | error={e}")
        return "Completed successfully"
