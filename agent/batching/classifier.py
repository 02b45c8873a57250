"""
Fragment classification and delay selection for the Batch Scheduler.

Pattern-based and inference-free: it runs on every utterance, so it has to be
cheap. Its output only biases timing, it never skips the analysis pipeline.

Delay selection precedence:
1. Urgency markers ("now", "immediately") -> urgent
2. Short affirmations (<= 4 words) -> affirmation
3. Critical info and not incomplete -> fast_track
4. Incomplete -> extended_wait
5. Otherwise -> normal
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from agent.errors import SchedulingFault
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_DAY = r"\d{1,2}(?:st|nd|rd|th)?"
_NUMBER_WORD = r"(?:one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)"
_PARTY_NOUN = r"(?:adults?|people|persons?|guests?|kids?|children|child|travel(?:l)?ers?|infants?)"

URGENCY_PATTERN = re.compile(
    r"\b(?:right now|now|immediately|asap|urgent(?:ly)?|right away|as soon as possible)\b",
    re.IGNORECASE,
)

AFFIRMATION_PATTERN = re.compile(
    r"^(?:yes|yeah|yep|yup|sure|ok(?:ay)?|correct|right|exactly|absolutely|definitely|"
    r"perfect|great|sounds good|that works|go ahead|do it|please do|"
    r"that'?s (?:right|correct|fine|perfect))\b",
    re.IGNORECASE,
)
MAX_AFFIRMATION_WORDS = 4

DATE_PATTERNS = (
    re.compile(rf"\b{_MONTH}\.?\s+{_DAY}\b", re.IGNORECASE),
    re.compile(rf"\b{_DAY}\s+(?:of\s+)?{_MONTH}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
)
PARTY_PATTERNS = (
    re.compile(rf"\b(?:\d+|{_NUMBER_WORD})\s+{_PARTY_NOUN}\b", re.IGNORECASE),
    re.compile(rf"\bparty of (?:\d+|{_NUMBER_WORD})\b", re.IGNORECASE),
)
CURRENCY_PATTERNS = (
    re.compile(r"[$€£]\s?\d"),
    re.compile(r"\b\d[\d,.]*\s?(?:k\s)?(?:dollars|usd|euros?|eur|pesos|mxn|bucks)\b", re.IGNORECASE),
)

CONNECTOR_ENDING = re.compile(
    r"\b(?:til|till|until|to|through|thru|from|and|or|between|but|the|of|on|for|"
    r"with|about|around|in|at|a|an|like|maybe|um|uh)$",
    re.IGNORECASE,
)
TRAILING_PUNCTUATION_ENDING = re.compile(r"(?:,|-|–|\.\.\.|…)\s*$")
MONTH_ENDING = re.compile(rf"\b{_MONTH}$", re.IGNORECASE)
DAY_MONTH_ENDING = re.compile(rf"\b{_DAY}\s+(?:of\s+)?{_MONTH}$", re.IGNORECASE)
ORDINAL_ENDING = re.compile(r"\b\d{1,2}(?:st|nd|rd|th)$", re.IGNORECASE)
PARTY_NOUN_ENDING = re.compile(rf"(?:^|\s)(\S+)\s+{_PARTY_NOUN}$", re.IGNORECASE)
BARE_PARTY_NOUN = re.compile(rf"^{_PARTY_NOUN}$", re.IGNORECASE)
NUMBER_TOKEN = re.compile(rf"^(?:\d+|{_NUMBER_WORD})$", re.IGNORECASE)


class DelayReason(str, Enum):
    """Why a delay was chosen."""

    URGENT = "urgent"
    AFFIRMATION = "affirmation"
    FAST_TRACK = "fast_track"
    EXTENDED_WAIT = "extended_wait"
    NORMAL = "normal"


@dataclass(frozen=True)
class FragmentClassification:
    """Classification of the not-yet-analyzed text."""

    is_incomplete: bool
    has_critical_info: bool
    is_urgent: bool
    is_affirmation: bool


@dataclass(frozen=True)
class BatchDecision:
    """Delay chosen for the next pipeline run."""

    delay_ms: int
    reason: DelayReason
    classification: FragmentClassification


@dataclass(frozen=True)
class BatchTimings:
    """Debounce delays and max-wait ceiling in milliseconds."""

    urgent_ms: int = 500
    affirmation_ms: int = 1000
    fast_track_ms: int = 1500
    normal_ms: int = 2500
    extended_ms: int = 4000
    max_wait_ms: int = 8000

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BatchTimings":
        settings = settings or get_settings()
        return cls(
            urgent_ms=settings.BATCH_URGENT_DELAY_MS,
            affirmation_ms=settings.BATCH_AFFIRMATION_DELAY_MS,
            fast_track_ms=settings.BATCH_FAST_TRACK_DELAY_MS,
            normal_ms=settings.BATCH_NORMAL_DELAY_MS,
            extended_ms=settings.BATCH_EXTENDED_DELAY_MS,
            max_wait_ms=settings.BATCH_MAX_WAIT_MS,
        )

    def delay_for(self, reason: DelayReason) -> int:
        """
        Return the configured delay for a reason.

        Raises:
            SchedulingFault: If the configured value is not a positive integer
        """
        value = {
            DelayReason.URGENT: self.urgent_ms,
            DelayReason.AFFIRMATION: self.affirmation_ms,
            DelayReason.FAST_TRACK: self.fast_track_ms,
            DelayReason.EXTENDED_WAIT: self.extended_ms,
            DelayReason.NORMAL: self.normal_ms,
        }[reason]
        if not isinstance(value, int) or value <= 0:
            raise SchedulingFault(f"Invalid delay for {reason.value}: {value!r}")
        return value


def _strip_ending(text: str) -> str:
    return text.strip().rstrip(".!?;:\"' ").strip()


def is_incomplete(text: str) -> bool:
    """
    True when the text ends in a way that suggests more is coming.

    Examples:
        >>> is_incomplete("May 28 til")
        True
        >>> is_incomplete("May 28 through June 6")
        False
    """
    if not text.strip():
        return False
    if TRAILING_PUNCTUATION_ENDING.search(text.strip()):
        return True

    stripped = _strip_ending(text)
    if not stripped:
        return False
    if CONNECTOR_ENDING.search(stripped):
        return True
    if MONTH_ENDING.search(stripped) and not DAY_MONTH_ENDING.search(stripped):
        return True
    if ORDINAL_ENDING.search(stripped) and not any(
        pattern.search(stripped) for pattern in DATE_PATTERNS[:2]
    ):
        return True

    words = stripped.split()
    if BARE_PARTY_NOUN.match(words[-1]):
        if len(words) == 1:
            return True
        match = PARTY_NOUN_ENDING.search(stripped)
        return not (match and NUMBER_TOKEN.match(match.group(1)))
    return False


def has_critical_info(text: str) -> bool:
    """True when the text contains a complete date, a head count, or an amount."""
    patterns = DATE_PATTERNS + PARTY_PATTERNS + CURRENCY_PATTERNS
    return any(pattern.search(text) for pattern in patterns)


def is_urgent(text: str) -> bool:
    return bool(URGENCY_PATTERN.search(text))


def is_affirmation(text: str) -> bool:
    stripped = _strip_ending(text)
    words = stripped.split()
    if not words or len(words) > MAX_AFFIRMATION_WORDS:
        return False
    return bool(AFFIRMATION_PATTERN.match(stripped))


def classify_fragments(fragments: list[str]) -> FragmentClassification:
    """
    Classify the pending fragments.

    Urgency and affirmation look at the newest fragment only; completeness and
    critical info look at all pending fragments joined, so "May 28 til" followed
    by "June 6" reads as one complete range.
    """
    if not fragments:
        return FragmentClassification(False, False, False, False)

    newest = fragments[-1]
    combined = " ".join(fragment.strip() for fragment in fragments if fragment.strip())
    return FragmentClassification(
        is_incomplete=is_incomplete(combined),
        has_critical_info=has_critical_info(combined),
        is_urgent=is_urgent(newest),
        is_affirmation=is_affirmation(newest),
    )


def select_reason(classification: FragmentClassification) -> DelayReason:
    if classification.is_urgent:
        return DelayReason.URGENT
    if classification.is_affirmation:
        return DelayReason.AFFIRMATION
    if classification.has_critical_info and not classification.is_incomplete:
        return DelayReason.FAST_TRACK
    if classification.is_incomplete:
        return DelayReason.EXTENDED_WAIT
    return DelayReason.NORMAL


def decide_delay(fragments: list[str], timings: BatchTimings) -> BatchDecision:
    """
    Classify pending fragments and pick the debounce delay.

    A SchedulingFault from misconfigured timings is logged and the normal
    delay (or its default) is used instead.
    """
    classification = classify_fragments(fragments)
    reason = select_reason(classification)
    try:
        delay_ms = timings.delay_for(reason)
    except SchedulingFault as e:
        logger.warning(f"Scheduling fault, falling back to normal delay | {e}")
        reason = DelayReason.NORMAL
        try:
            delay_ms = timings.delay_for(DelayReason.NORMAL)
        except SchedulingFault:
            delay_ms = BatchTimings.normal_ms
    return BatchDecision(delay_ms=delay_ms, reason=reason, classification=classification)
