"""
Confidence and risk policy for candidate actions.

Confidence values come from the Inference Service and are never trusted:
every threshold below is enforced here regardless of what the model returned.

Policy bands:
- < 70: discarded
- [70, 85): surfaced as a plain suggestion
- [85, 95) or medium risk: surfaced with confirm/dismiss controls
- >= 95, low risk, no confirmation flag: auto-executes after a countdown
- high risk: always requires an explicit operator confirmation
"""

import logging
import math
from typing import Any
from uuid import uuid4

from agent.pipeline.decoding import ActionProposal
from agent.state.schemas import ExecutableAction, RiskLevel, ValidationIssue
from agent.tools.catalog import (
    ToolCatalog,
    build_parameters,
    missing_required_parameters,
)
from agent.validation.profile_validator import blocking_issues

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 70
CONFIRM_THRESHOLD = 85
AUTO_EXECUTE_THRESHOLD = 95
MAX_ACTIONS = 2
MIN_SCRIPT_CONFIDENCE = 75
MAX_SCRIPTS = 3


def clamp_confidence(value: Any) -> float:
    """
    Clamp a confidence to [0, 100]. Non-numeric and non-finite values become 0.

    Example:
        >>> clamp_confidence(140)
        100.0
        >>> clamp_confidence(float("nan"))
        0.0
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(100.0, max(0.0, number))


def select_candidates(proposals: list[ActionProposal]) -> list[ActionProposal]:
    """Clamp, drop anything under MIN_CONFIDENCE, sort descending, keep MAX_ACTIONS."""
    clamped = [
        proposal.model_copy(update={"confidence": clamp_confidence(proposal.confidence)})
        for proposal in proposals
    ]
    kept = [proposal for proposal in clamped if proposal.confidence >= MIN_CONFIDENCE]
    if len(kept) < len(clamped):
        logger.info(
            f"Discarded low confidence actions | discarded={len(clamped) - len(kept)} | "
            f"min_confidence={MIN_CONFIDENCE}"
        )
    kept.sort(key=lambda proposal: proposal.confidence, reverse=True)
    return kept[:MAX_ACTIONS]


def requires_confirmation(
    proposal_flag: bool, catalog_flag: bool, risk_level: RiskLevel, confidence: float
) -> bool:
    return (
        proposal_flag
        or catalog_flag
        or risk_level != RiskLevel.LOW
        or CONFIRM_THRESHOLD <= confidence < AUTO_EXECUTE_THRESHOLD
    )


def apply_policy(
    proposal: ActionProposal,
    catalog: ToolCatalog,
    profile: dict[str, Any],
    issues: list[ValidationIssue] | None = None,
) -> ExecutableAction | None:
    """
    Turn a candidate proposal into a suggested ExecutableAction.

    The catalog's risk level wins over a lower proposed one, and profile values
    replace the proposed parameters they are sourced from.

    Args:
        proposal: Candidate already filtered by select_candidates
        catalog: Tool catalog
        profile: Current customer profile
        issues: Current profile validation issues

    Returns:
        The suggested action, or None when the tool is not in the catalog
    """
    tool = catalog.get(proposal.tool_name)
    if tool is None:
        logger.warning(f"Discarded action for unknown tool | tool_name={proposal.tool_name}")
        return None

    confidence = clamp_confidence(proposal.confidence)
    risk_level = RiskLevel.highest(proposal.risk_level or tool.risk_level, tool.risk_level)

    profile_parameters = build_parameters(tool, profile)
    overrides = tuple(
        sorted(
            name
            for name, value in profile_parameters.items()
            if name in proposal.parameters and proposal.parameters[name] != value
        )
    )
    parameters = {**proposal.parameters, **profile_parameters}

    needs_confirmation = requires_confirmation(
        proposal.requires_confirmation, tool.requires_confirmation, risk_level, confidence
    )

    blocking = blocking_issues(issues or [], list(tool.parameter_sources().values()))
    missing = missing_required_parameters(tool, profile, parameters)
    auto_execute = (
        confidence >= max(AUTO_EXECUTE_THRESHOLD, tool.auto_execute_threshold)
        and risk_level == RiskLevel.LOW
        and not needs_confirmation
        and tool.auto_execute_threshold > 0
        and not blocking
        and not missing
    )
    if blocking and confidence >= AUTO_EXECUTE_THRESHOLD:
        logger.info(
            f"Auto-execution blocked by profile validation | tool_name={tool.name} | "
            f"fields={[issue.field for issue in blocking]}",
            extra={"tool_name": tool.name},
        )

    return ExecutableAction(
        id=f"action-{uuid4().hex[:12]}",
        intent=proposal.intent or tool.intent,
        label=proposal.label,
        description=proposal.description or tool.description,
        tool_name=tool.name,
        parameters=parameters,
        confidence=confidence,
        priority=proposal.priority,
        risk_level=risk_level,
        requires_confirmation=needs_confirmation,
        auto_execute=auto_execute,
        parameter_overrides=overrides,
    )
