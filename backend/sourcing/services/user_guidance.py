"""
User guidance formatting and parsing.

WHAT: Turns human interventions into agent-facing guidance
WHY: A user can steer a running negotiation between agent turns
HOW: Keyword/regex scanning; formatting only, the agent decides what to do
"""

import re
from dataclasses import dataclass, field

from ..models.negotiation import UserInterventionMessage

URGENCY_KEYWORDS = (
    "urgent",
    "immediately",
    "stop",
    "cancel",
    "must",
    "required",
    "asap",
    "now",
    "critical",
)

WALK_AWAY_PATTERNS = [
    re.compile(r"walk\s*away", re.I),
    re.compile(r"end\s*(the\s*)?negotiation", re.I),
    re.compile(r"stop\s*(negotiating|talking)", re.I),
    re.compile(r"cancel\s*(the\s*)?(deal|negotiation)", re.I),
    re.compile(r"terminate", re.I),
    re.compile(r"abort", re.I),
]

ACCEPT_PATTERNS = [
    re.compile(r"accept\s*(if|when)", re.I),
    re.compile(r"take\s*(the\s*)?(deal|offer)", re.I),
    re.compile(r"go\s*ahead", re.I),
    re.compile(r"agree\s*(to|if)", re.I),
    re.compile(r"approve", re.I),
    re.compile(r"close\s*(the\s*)?deal", re.I),
]

PRICE_PATTERNS = [
    re.compile(r"(?:max(?:imum)?|limit|no more than|under|below|less than)\s*\$?(\d+(?:\.\d{2})?)", re.I),
    re.compile(r"\$(\d+(?:\.\d{2})?)\s*(?:max|limit|or less|or under)", re.I),
    re.compile(r"price\s*(?:limit|cap)\s*(?:of|at)?\s*\$?(\d+(?:\.\d{2})?)", re.I),
]

LEAD_TIME_PATTERNS = [
    re.compile(r"(?:within|under|less than|no more than|max(?:imum)?)\s*(\d+)\s*days?", re.I),
    re.compile(r"(\d+)\s*days?\s*(?:max|or less|or faster)", re.I),
    re.compile(r"delivery\s*(?:by|within)?\s*(\d+)\s*days?", re.I),
]

_FOCUS_PREFIX = r"(?:focus|prioritize|emphasize)\s*(?:on\s*)?(?:the\s*)?"
FOCUS_PATTERNS = [
    ("price", re.compile(_FOCUS_PREFIX + r"price", re.I)),
    ("lead_time", re.compile(_FOCUS_PREFIX + r"(?:lead\s*time|delivery|speed)", re.I)),
    ("quality", re.compile(_FOCUS_PREFIX + r"quality", re.I)),
    ("payment_terms", re.compile(_FOCUS_PREFIX + r"payment", re.I)),
]


@dataclass
class FormattedGuidance:
    """Guidance block handed to the agent with its next turn."""
    summary: str = ""
    interventions: list[UserInterventionMessage] = field(default_factory=list)
    has_urgent_request: bool = False
    # Prompt-ready block the agent places ahead of its next move
    context: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.interventions


@dataclass
class ParsedInstructions:
    """Concrete constraints recognized in a user message."""
    price_limit: float | None = None
    lead_time_limit: int | None = None
    accept_if_met: bool = False
    walk_away: bool = False
    focus_areas: list[str] = field(default_factory=list)


def is_urgent_message(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in URGENCY_KEYWORDS)


def is_walk_away_instruction(message: str) -> bool:
    return any(p.search(message) for p in WALK_AWAY_PATTERNS)


def format_user_guidance(interventions: list[UserInterventionMessage]) -> FormattedGuidance:
    """
    Summarize interventions for the agent.

    Args:
        interventions: Human messages in arrival order

    Returns:
        FormattedGuidance (empty summary when there is nothing to say)
    """
    if not interventions:
        return FormattedGuidance()

    urgent = any(is_urgent_message(i.content) for i in interventions)
    label = "message" if len(interventions) == 1 else "messages"

    lines = [f"## User Guidance ({len(interventions)} {label})"]
    if urgent:
        lines += ["", "URGENT REQUEST - Prioritize user guidance"]
    lines += [""] + [f"- {i.content}" for i in interventions]
    lines += ["", "You MUST incorporate this guidance into your negotiation strategy."]

    guidance = FormattedGuidance(
        summary="\n".join(lines).strip(),
        interventions=list(interventions),
        has_urgent_request=urgent,
    )
    guidance.context = build_guidance_context(guidance)
    return guidance


def build_guidance_context(guidance: FormattedGuidance) -> str:
    """Wrap a guidance summary for inclusion in an agent prompt."""
    if not guidance.summary:
        return ""

    closing = (
        "CRITICAL: The user has provided urgent instructions. Follow them precisely."
        if guidance.has_urgent_request
        else "Consider the above guidance when making your next move."
    )
    return f"---\n{guidance.summary}\n---\n\n{closing}\n"


def _first_match(patterns: list[re.Pattern], message: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def parse_user_instructions(message: str) -> ParsedInstructions:
    """Extract price/lead-time limits, accept/walk-away intent and focus areas."""
    instructions = ParsedInstructions()

    price = _first_match(PRICE_PATTERNS, message)
    if price is not None:
        instructions.price_limit = float(price)

    days = _first_match(LEAD_TIME_PATTERNS, message)
    if days is not None:
        instructions.lead_time_limit = int(days)

    instructions.accept_if_met = any(p.search(message) for p in ACCEPT_PATTERNS)
    instructions.walk_away = is_walk_away_instruction(message)
    instructions.focus_areas = [area for area, p in FOCUS_PATTERNS if p.search(message)]

    return instructions
