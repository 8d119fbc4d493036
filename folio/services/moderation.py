"""
Rule-based comment moderation.

Scores a piece of text against a fixed rule table plus a few heuristics
(shouting, repetition, personal-attack phrasing) and returns an immutable
verdict. The same evaluation backs both the authoritative check performed
when a comment is stored and the advisory pre-check shown while typing.

Pure and deterministic: no I/O, no shared mutable state.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Pattern, Tuple, Union


class Category(str, Enum):
    PROFANITY = "profanity"
    HATE_SPEECH = "hate_speech"
    RACISM = "racism"
    HARASSMENT = "harassment"
    SPAM = "spam"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> float:
        return SEVERITY_WEIGHTS[self]


SEVERITY_WEIGHTS = {
    Severity.LOW: 0.2,
    Severity.MEDIUM: 0.4,
    Severity.HIGH: 0.7,
    Severity.CRITICAL: 0.9,
}

# Scores above these are rejected outright / held for manual review.
# Both comparisons are strict.
AUTO_REJECT_THRESHOLD = 0.7
REVIEW_THRESHOLD = 0.4

SHOUTING_RATIO = 0.7
SHOUTING_MIN_LENGTH = 10
SHOUTING_SCORE = 0.3

REPETITION_MIN_TOKENS = 5
REPETITION_UNIQUE_RATIO = 0.3
REPETITION_SCORE = 0.6

PERSONAL_ATTACK_SCORE = 0.5

_UPPERCASE = re.compile(r"[A-Z]")

ATTACK_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"you (are|re) (a )?(stupid|idiot|dumb|moron)", re.IGNORECASE),
    re.compile(r"(shut up|go away|get lost)", re.IGNORECASE),
    re.compile(r"i hate you", re.IGNORECASE),
)


@dataclass(frozen=True)
class Rule:
    """A phrase (or compiled regex) mapped to a category and severity."""
    pattern: Union[str, Pattern[str]]
    category: Category
    severity: Severity

    @property
    def label(self) -> str:
        if isinstance(self.pattern, str):
            return self.pattern
        return self.pattern.pattern

    def matches(self, content: str, lowered: str) -> bool:
        if isinstance(self.pattern, str):
            return self.pattern.lower() in lowered
        # Regex rules see the original text and always ignore case
        return re.search(self.pattern.pattern, content, self.pattern.flags | re.IGNORECASE) is not None


BASE_RULES: Tuple[Rule, ...] = (
    # Profanity
    Rule("fuck", Category.PROFANITY, Severity.MEDIUM),
    Rule("shit", Category.PROFANITY, Severity.LOW),
    Rule("asshole", Category.PROFANITY, Severity.MEDIUM),
    Rule("bitch", Category.PROFANITY, Severity.MEDIUM),
    # Hate speech
    Rule("hate speech", Category.HATE_SPEECH, Severity.HIGH),
    Rule("kill all", Category.HATE_SPEECH, Severity.CRITICAL),
    Rule("deserve to die", Category.HATE_SPEECH, Severity.CRITICAL),
    # Racism
    Rule("n-word", Category.RACISM, Severity.CRITICAL),
    Rule("racial slur", Category.RACISM, Severity.CRITICAL),
    Rule("white power", Category.RACISM, Severity.CRITICAL),
    Rule("black power", Category.RACISM, Severity.CRITICAL),
    # Harassment
    Rule("you suck", Category.HARASSMENT, Severity.MEDIUM),
    Rule("you're stupid", Category.HARASSMENT, Severity.MEDIUM),
    Rule("idiot", Category.HARASSMENT, Severity.LOW),
    # Spam
    Rule("http://", Category.SPAM, Severity.MEDIUM),
    Rule("https://", Category.SPAM, Severity.MEDIUM),
    Rule("check out my", Category.SPAM, Severity.LOW),
    Rule("buy now", Category.SPAM, Severity.MEDIUM),
)


@dataclass(frozen=True)
class ModerationVerdict:
    toxicity_score: float = 0.0
    has_profanity: bool = False
    has_hate_speech: bool = False
    has_racism: bool = False
    has_harassment: bool = False
    has_spam: bool = False
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def auto_rejected(self) -> bool:
        return self.has_hate_speech or self.has_racism or self.toxicity_score > AUTO_REJECT_THRESHOLD

    @property
    def needs_review(self) -> bool:
        return not self.auto_rejected and (self.has_profanity or self.toxicity_score > REVIEW_THRESHOLD)

    @property
    def approved(self) -> bool:
        return not (self.auto_rejected or self.needs_review)

    @property
    def decision(self) -> str:
        if self.auto_rejected:
            return "rejected"
        if self.needs_review:
            return "review"
        return "approved"

    @property
    def flags(self) -> dict:
        return {
            Category.PROFANITY.value: self.has_profanity,
            Category.HATE_SPEECH.value: self.has_hate_speech,
            Category.RACISM.value: self.has_racism,
            Category.HARASSMENT.value: self.has_harassment,
            Category.SPAM.value: self.has_spam,
        }

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "decision": self.decision,
            "toxicity_score": self.toxicity_score,
            "flags": self.flags,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class PreCheck:
    is_clean: bool
    warning: Optional[str] = None
    severity: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"is_clean": self.is_clean}
        if self.warning:
            data["warning"] = self.warning
            data["severity"] = self.severity
        return data


PRECHECK_BLOCKED_WARNING = "Your comment contains inappropriate content that violates our community guidelines."
PRECHECK_REVIEW_WARNING = "Your comment may be flagged for review. Please consider revising."

_FLAG_FIELDS = {
    Category.PROFANITY: "has_profanity",
    Category.HATE_SPEECH: "has_hate_speech",
    Category.RACISM: "has_racism",
    Category.HARASSMENT: "has_harassment",
    Category.SPAM: "has_spam",
}


class ContentModerator:
    """
    Scores text against the base rules plus any custom rules.

    Custom rules are appended after the base table (no de-duplication) and
    the resulting table never changes for the lifetime of the instance.
    """

    def __init__(self, custom_rules: Iterable[Rule] = ()):
        self._rules: Tuple[Rule, ...] = BASE_RULES + tuple(custom_rules)

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def moderate(self, content: str) -> ModerationVerdict:
        """
        Evaluate content and return a verdict.

        Rule severities are not additive: the toxicity score is the single
        worst offence found. Reasons are appended in evaluation order.
        """
        if not isinstance(content, str):
            raise TypeError(f"content must be str, not {type(content).__name__}")

        lowered = content.lower()
        flags = {name: False for name in _FLAG_FIELDS.values()}
        reasons = []
        score = 0.0

        for rule in self._rules:
            if rule.matches(content, lowered):
                flags[_FLAG_FIELDS[rule.category]] = True
                score = max(score, rule.severity.weight)
                reasons.append(f'Found {rule.category.value}: "{rule.label}"')

        # Shouting
        if content and len(content) > SHOUTING_MIN_LENGTH:
            caps_ratio = len(_UPPERCASE.findall(content)) / len(content)
            if caps_ratio > SHOUTING_RATIO:
                score = max(score, SHOUTING_SCORE)
                reasons.append("Excessive capitalization (shouting)")

        # Repetitive text
        words = lowered.split()
        if len(words) > REPETITION_MIN_TOKENS and len(set(words)) / len(words) < REPETITION_UNIQUE_RATIO:
            score = max(score, REPETITION_SCORE)
            reasons.append("Repetitive text detected")

        for pattern in ATTACK_PATTERNS:
            if pattern.search(content):
                score = max(score, PERSONAL_ATTACK_SCORE)
                reasons.append("Personal attack detected")

        return ModerationVerdict(
            toxicity_score=min(max(score, 0.0), 1.0),
            reasons=tuple(reasons),
            **flags,
        )

    def pre_check(self, content: str) -> PreCheck:
        """
        Advisory check shown before submission. Not authoritative: the
        comment is moderated again when it is stored.
        """
        verdict = self.moderate(content)

        if verdict.has_racism or verdict.has_hate_speech:
            return PreCheck(False, PRECHECK_BLOCKED_WARNING, "high")

        if verdict.has_profanity or verdict.toxicity_score > REVIEW_THRESHOLD:
            return PreCheck(False, PRECHECK_REVIEW_WARNING, "medium")

        return PreCheck(True)


# Default instance shared by routes and the CLI
content_moderator = ContentModerator()


def moderate(content: str) -> ModerationVerdict:
    return content_moderator.moderate(content)


def pre_check(content: str) -> PreCheck:
    return content_moderator.pre_check(content)


def run_moderation(text: str) -> Tuple[bool, Optional[str]]:
    """
    Returns (allowed, reason). `reason` is the first triggered rule, suitable
    for UI display, or None when the text is approved.
    """
    verdict = moderate(text or "")
    if verdict.approved:
        return True, None
    if verdict.reasons:
        return False, verdict.reasons[0]
    return False, "Content flagged by moderation"
