"""
Profile validation.

Inference-free checks of extracted customer data run during action generation.
"""

from agent.validation.profile_validator import (
    ProfileValidationResult,
    blocking_issues,
    validate_customer_profile,
    validate_party_size,
    validate_travel_dates,
)

__all__ = [
    "ProfileValidationResult",
    "blocking_issues",
    "validate_customer_profile",
    "validate_party_size",
    "validate_travel_dates",
]
