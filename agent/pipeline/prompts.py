"""
Prompt builders for the four analysis stages.

Each builder serializes only the state slice its stage needs and states the
exact JSON shape expected back (decoded by agent.pipeline.decoding).
"""

import json
from typing import Any

from agent.state.schemas import ConversationState, TranscriptMessage, ValidationIssue
from agent.tools.catalog import ToolCatalog

SYSTEM_PROMPT = """You are an AI assistant helping call center agents at a resort booking desk.

Your role:
- Analyze conversations in real-time
- Detect customer intent and needs
- Suggest next actions for the agent
- Extract key information (dates, party size, budget)

Guidelines:
- Be concise - agents need quick insights
- Prioritize critical actions (dates, availability) over optional ones
- Detect buying signals and objections
- Confidence scores are numbers from 0 to 100

You respond ONLY with valid JSON matching the required schema."""


def _format_messages(messages: list[TranscriptMessage]) -> str:
    return "\n".join(f"{m.speaker.value}: {m.text}" for m in messages) or "(no messages)"


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, ensure_ascii=False)


def _current_stage_label(state: ConversationState) -> str:
    pointer = state.get("current_stage")
    for stage in state.get("stages", []):
        if stage.id == pointer:
            return stage.label
    return "None"


def build_intent_analysis_prompt(state: ConversationState) -> str:
    """Stage 1: last 5 messages -> intents + profile deltas."""
    messages = state.get("messages", [])
    context = messages[-5:]
    latest = messages[-1] if messages else None
    latest_line = f"{latest.speaker.value}: {latest.text}" if latest else "(none)"

    return f"""Analyze this conversation turn:

CONTEXT (last 5 messages):
{_format_messages(context)}

LATEST MESSAGE:
{latest_line}

CURRENT STAGE: {_current_stage_label(state)}

TASK: Detect customer intents and extract key information.

Respond with JSON:
{{
  "intents": ["check_availability", "asking_about_price"],
  "extracted_info": {{
    "name": "Ana",
    "email": "ana@example.com",
    "phone": "+15551234567",
    "destination": "Cancun",
    "travel_dates": {{"check_in": "YYYY-MM-DD", "check_out": "YYYY-MM-DD", "flexible": false}},
    "party_size": {{"adults": 2, "children": 1, "child_ages": [8]}},
    "budget": {{"max": 5000, "currency": "USD"}},
    "preferences": ["family-friendly", "beach view"],
    "special_requests": ["anniversary"]
  }},
  "sentiment": "positive" | "neutral" | "negative",
  "buying_signals": ["specific dates mentioned"]
}}

Only include fields where you found concrete information. Empty object if nothing extracted."""


def build_stage_management_prompt(state: ConversationState) -> str:
    """Stage 2: profile + intents + existing stages -> revised stage list."""
    stages = [
        {"id": s.id, "label": s.label, "description": s.description, "status": s.status.value}
        for s in state.get("stages", [])
    ]
    existing = _to_json(stages) if stages else "No stages yet"

    return f"""Manage the conversation stages dynamically based on the conversation flow.

EXISTING STAGES:
{existing}

CURRENT STAGE: {_current_stage_label(state)}

CUSTOMER PROFILE:
{_to_json(state.get("customer_profile", {}))}

RECENT CONVERSATION:
{_format_messages(state.get("messages", [])[-3:])}

DETECTED INTENTS:
{", ".join(state.get("detected_intents", [])) or "none"}

TASK: Update conversation stages dynamically.

Respond with JSON:
{{
  "stages": [
    {{"id": "unique-id", "label": "Stage Name", "description": "What happens in this stage",
      "status": "completed" | "current" | "future"}}
  ],
  "current_stage": "id of the current stage",
  "reasoning": "Why these stages make sense for this conversation"
}}

RULES:
1. Stages reflect the ACTUAL conversation path, not a template
2. Keep existing stage ids; add new stages as the conversation reveals customer needs
3. Completed stages stay completed
4. Exactly one stage is current
5. Keep 3-5 stages visible (completed + current + upcoming)"""


def _format_issues(issues: list[ValidationIssue]) -> str:
    if not issues:
        return ""
    lines = ["", "DATA VALIDATION ALERTS:"]
    for issue in issues:
        lines.append(f"  [{issue.severity.value.upper()}] {issue.field}: {issue.message}")
        if issue.agent_hint:
            lines.append(f"    SUGGESTED CLARIFICATION: {issue.agent_hint}")
    lines.append(
        "If there are validation alerts with clarifications, prioritize asking them "
        "before suggesting tools that depend on that data."
    )
    return "\n".join(lines)


def build_action_generation_prompt(
    state: ConversationState,
    catalog: ToolCatalog,
    issues: list[ValidationIssue],
) -> str:
    """Stage 3: profile + intents + catalog -> actions, insights, scripts."""
    return f"""Analyze the conversation and generate actions with confidence scores.

CURRENT CONVERSATION STATE:
Stage: {_current_stage_label(state)}
Customer Profile: {_to_json(state.get("customer_profile", {}))}
Detected Intents: {", ".join(state.get("detected_intents", [])) or "none"}
Last 3 Messages:
{_format_messages(state.get("messages", [])[-3:])}
{_format_issues(issues)}

AVAILABLE TOOLS:
{catalog.summary_for_prompt()}

CONFIDENCE SCORING RULES:
- 95-100: All required params available, clear intent, safe to auto-execute
- 85-94: All required params available, clear intent, needs confirmation
- 70-84: Some params missing OR intent somewhat ambiguous
- <70: Don't suggest

RESPOND WITH JSON:
{{
  "executable_actions": [
    {{
      "intent": "check_availability",
      "label": "Check Room Availability",
      "description": "Search for available rooms matching customer dates",
      "tool_name": "check_availability",
      "parameters": {{"check_in": "2025-07-15", "check_out": "2025-07-20", "adults": 2}},
      "confidence": 96,
      "priority": "critical" | "high" | "medium" | "low",
      "risk_level": "low" | "medium" | "high",
      "requires_confirmation": false
    }}
  ],
  "insights": {{
    "detected_emotion": "positive" | "neutral" | "frustrated" | "confused",
    "engagement_level": "high" | "medium" | "low",
    "health_score": 85,
    "concerns": [],
    "strengths": [],
    "completed_goals": [],
    "missing_information": []
  }},
  "quick_scripts": [
    {{
      "intent": "handle_price_objection",
      "label": "Address Budget Concern",
      "script": "I understand budget is important. Let me check for special offers...",
      "confidence": 78,
      "priority": "high",
      "when_to_use": "Customer mentioned price concerns"
    }}
  ]
}}

RULES:
1. Only use tool names from AVAILABLE TOOLS, with parameters taken from the profile
2. Max 2 executable actions, max 3 quick scripts
3. If the conversation is flowing naturally, return empty arrays"""


def build_health_score_prompt(state: ConversationState) -> str:
    """Stage 4: last 10 messages -> 0-100 score."""
    return f"""Evaluate the health of this conversation (0-100).

CONVERSATION:
{_format_messages(state.get("messages", [])[-10:])}

FACTORS TO CONSIDER:
- Agent-customer balance (good: 40-60% agent talking)
- Sentiment (positive responses = healthier)
- Progress (moving through stages = healthier)
- Objections (price complaints = lower health)
- Engagement (one-word answers = lower health)

Respond with JSON:
{{
  "score": 75,
  "factors": {{
    "balance": "good" | "agent_dominating" | "customer_quiet",
    "sentiment": "positive" | "neutral" | "negative",
    "progress": "on_track" | "stalled" | "rushing",
    "engagement": "high" | "medium" | "low"
  }},
  "concerns": ["List any red flags"],
  "strengths": ["List what's going well"]
}}"""
