"""Sales-intent categorisation services for incoming messages."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from ..core.interfaces import CategoryService
from ..core.models import UNCATEGORIZED, NormalizedMessage
from .llm import LLMClient, LLMError
from .prompts import build_category_prompt

LOGGER = logging.getLogger(__name__)

INTERESTED = "Interested"
MEETING_BOOKED = "Meeting Booked"
NOT_INTERESTED = "Not Interested"
SPAM = "Spam"
OUT_OF_OFFICE = "Out of Office"

CATEGORY_LABELS: tuple[str, ...] = (
    INTERESTED,
    MEETING_BOOKED,
    NOT_INTERESTED,
    SPAM,
    OUT_OF_OFFICE,
)

CategoryPredicate = Callable[[NormalizedMessage], bool]

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class _CategoryRule:
    label: str
    keywords: tuple[str, ...] = ()
    predicate: CategoryPredicate | None = None


def _from_automated_sender(message: NormalizedMessage) -> bool:
    sender = message.sender.lower()
    return "noreply" in sender or "no-reply" in sender


# Declines are checked before interest because "not interested" contains "interested".
DEFAULT_RULES: tuple[_CategoryRule, ...] = (
    _CategoryRule(
        label=MEETING_BOOKED,
        keywords=("meeting", "call", "schedule"),
    ),
    _CategoryRule(
        label=OUT_OF_OFFICE,
        keywords=(
            "out of office",
            "vacation",
            "away",
            "auto-reply",
            "automatic reply",
        ),
    ),
    _CategoryRule(
        label=SPAM,
        keywords=("promotion", "offer", "discount"),
        predicate=_from_automated_sender,
    ),
    _CategoryRule(
        label=NOT_INTERESTED,
        keywords=(
            "not interested",
            "unsubscribe",
            "remove",
            "no thanks",
            "decline",
        ),
    ),
    _CategoryRule(
        label=INTERESTED,
        keywords=(
            "interested",
            "learn more",
            "information",
            "tell me more",
            "details",
        ),
    ),
)


class KeywordCategoryService(CategoryService):
    """Assign a label from ordered keyword heuristics; the first match wins."""

    def __init__(
        self,
        rules: Sequence[_CategoryRule] | None = None,
        *,
        default_category: str = UNCATEGORIZED,
    ) -> None:
        self._rules: tuple[_CategoryRule, ...] = (
            tuple(rules) if rules is not None else DEFAULT_RULES
        )
        self._default_category = default_category

    def categorize(self, message: NormalizedMessage) -> str:
        """Return the label of the first rule matching subject or body."""
        haystack = _build_haystack(message)
        for rule in self._rules:
            if _matches_rule(rule, message, haystack):
                return rule.label
        return self._default_category


def _build_haystack(message: NormalizedMessage) -> str:
    return " ".join(part for part in (message.subject, message.body) if part).lower()


def _matches_rule(rule: _CategoryRule, message: NormalizedMessage, haystack: str) -> bool:
    if rule.keywords and _contains_keyword(rule.keywords, haystack):
        return True
    if rule.predicate is not None:
        return rule.predicate(message)
    return False


def _contains_keyword(keywords: Iterable[str], haystack: str) -> bool:
    for keyword in keywords:
        if keyword in haystack:
            return True
    return False


class LLMCategoryService(CategoryService):
    """Categorize messages with an LLM, falling back to keyword rules."""

    def __init__(
        self,
        llm_client: LLMClient,
        fallback: CategoryService | None = None,
    ) -> None:
        self._llm_client = llm_client
        self._fallback = fallback or KeywordCategoryService()

    def categorize(self, message: NormalizedMessage) -> str:
        """Ask the model for a label; invalid or failed answers use the fallback."""
        prompt = build_category_prompt(message, CATEGORY_LABELS)
        try:
            response = self._llm_client.generate(prompt)
            label = parse_category_response(response)
        except (LLMError, ValueError) as exc:
            LOGGER.warning(
                "LLM categorization via %s failed for %s: %s; using keyword rules",
                self._llm_client.provider_id,
                message.id,
                exc,
            )
            return self._fallback.categorize(message)
        LOGGER.info("Message %s categorized as %s", message.id, label)
        return label


def parse_category_response(response: str) -> str:
    """Extract a known label from a ``{"category": ...}`` reply.

    Raises ``ValueError`` when the reply is not JSON or names an unknown label.
    """
    cleaned = _CODE_FENCE.sub("", response).strip()
    payload = json.loads(cleaned)
    if not isinstance(payload, dict):
        raise ValueError("LLM reply is not a JSON object")
    label = payload.get("category")
    if label not in CATEGORY_LABELS:
        raise ValueError(f"LLM returned unknown category {label!r}")
    return str(label)


__all__ = [
    "CATEGORY_LABELS",
    "INTERESTED",
    "KeywordCategoryService",
    "LLMCategoryService",
    "MEETING_BOOKED",
    "NOT_INTERESTED",
    "OUT_OF_OFFICE",
    "SPAM",
    "parse_category_response",
]
