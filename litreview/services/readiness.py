"""
Locator readiness: decides whether a ledger entry's evidence is complete
enough to cite.

A locator record is a mapping that may carry a pointer (positive integer
``page``/``paragraph``/``sentence``) and reviewer context (non-empty
``note``/``quote``/``source``). Readiness is evaluated over the whole
ordered locator sequence of an entry plus its ``verified_by_human`` flag.

Usage:
    from litreview.services.readiness import evaluate_locator_readiness, meets_policy, ReadinessPolicy
    readiness = evaluate_locator_readiness(entry.locators, entry.verified_by_human)
    meets_policy(readiness, ReadinessPolicy.EXPORT)
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping, Optional

POINTER_KEYS = ("page", "paragraph", "sentence")
CONTEXT_KEYS = ("note", "quote", "source")

LocatorStatus = Literal["pending_locator", "locator_pending_review", "locator_verified"]


class ReadinessPolicy(str, enum.Enum):
    COMPOSE = "compose"   # verified + at least one locator
    EXPORT = "export"     # verified + locator + pointer + context


@dataclass(frozen=True, slots=True)
class LocatorReadiness:
    has_locator: bool
    has_pointer: bool
    has_context: bool
    verified_by_human: bool

    @property
    def meets_requirements(self) -> bool:
        return self.has_locator and self.has_pointer and self.has_context and self.verified_by_human


@dataclass(frozen=True, slots=True)
class LocatorGuidanceItem:
    id: str
    label: str
    description: str
    satisfied: bool


def as_locator_list(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass; True is not a page number. JSON may store 3 as 3.0
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return value.is_integer() and value > 0
    return isinstance(value, int) and value > 0


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def locator_has_pointer(locator: Mapping[str, Any]) -> bool:
    return any(_is_positive_int(locator.get(k)) for k in POINTER_KEYS)


def locator_has_context(locator: Mapping[str, Any]) -> bool:
    return any(_non_empty(locator.get(k)) for k in CONTEXT_KEYS)


def locator_has_required_details(locator: Any) -> bool:
    if not isinstance(locator, Mapping):
        return False
    return locator_has_pointer(locator) and locator_has_context(locator)


def evaluate_locator_readiness(locators: Any, verified_by_human: Optional[bool] = False) -> LocatorReadiness:
    items = as_locator_list(locators)
    return LocatorReadiness(
        has_locator=len(items) > 0,
        has_pointer=any(locator_has_pointer(i) for i in items),
        has_context=any(locator_has_context(i) for i in items),
        verified_by_human=bool(verified_by_human),
    )


def entry_meets_locator_requirements(locators: Any, verified_by_human: Optional[bool] = False) -> bool:
    return evaluate_locator_readiness(locators, verified_by_human).meets_requirements


def meets_policy(readiness: LocatorReadiness, policy: ReadinessPolicy | str = ReadinessPolicy.COMPOSE) -> bool:
    policy = ReadinessPolicy(policy)
    if policy is ReadinessPolicy.COMPOSE:
        return readiness.verified_by_human and readiness.has_locator
    return readiness.meets_requirements


def locator_guidance_items(readiness: LocatorReadiness) -> list[LocatorGuidanceItem]:
    return [
        LocatorGuidanceItem(
            id="locator",
            label="At least one locator captured",
            description="Provide locator details when keeping the candidate in triage.",
            satisfied=readiness.has_locator,
        ),
        LocatorGuidanceItem(
            id="pointer",
            label="Includes a page, paragraph, or sentence number",
            description="Add a precise pointer so reviewers can quickly find the evidence.",
            satisfied=readiness.has_pointer,
        ),
        LocatorGuidanceItem(
            id="context",
            label="Includes reviewer context (note, quote, or source)",
            description="Summarize the snippet, paste the quote, or list the source details.",
            satisfied=readiness.has_context,
        ),
        LocatorGuidanceItem(
            id="verified",
            label="Marked as human verified",
            description="Confirm the locator is accurate before compose/export workflows.",
            satisfied=readiness.verified_by_human,
        ),
    ]


def _unmet_labels(readiness: LocatorReadiness, *, skip: Iterable[str] = ()) -> list[str]:
    skip = set(skip)
    return [
        item.label.lower()
        for item in locator_guidance_items(readiness)
        if item.id not in skip and not item.satisfied
    ]


def missing_locator_requirements_message(readiness: LocatorReadiness) -> str:
    unmet = _unmet_labels(readiness)
    if not unmet:
        return ""
    return f"Complete locator requirements before verifying: {', '.join(unmet)}."


def missing_prerequisites_for_verification(readiness: LocatorReadiness) -> Optional[str]:
    unmet = _unmet_labels(readiness, skip=("verified",))
    if not unmet:
        return None
    return f"Add locator details before verifying: {', '.join(unmet)}."


def determine_locator_status(locators: Any, verified_by_human: Optional[bool] = False) -> LocatorStatus:
    # any non-empty list counts here, matching what triage stores
    if not isinstance(locators, (list, tuple)) or len(locators) == 0:
        return "pending_locator"
    if verified_by_human:
        return "locator_verified"
    return "locator_pending_review"


__all__ = [
    "LocatorGuidanceItem",
    "LocatorReadiness",
    "LocatorStatus",
    "ReadinessPolicy",
    "as_locator_list",
    "determine_locator_status",
    "entry_meets_locator_requirements",
    "evaluate_locator_readiness",
    "locator_guidance_items",
    "locator_has_required_details",
    "meets_policy",
    "missing_locator_requirements_message",
    "missing_prerequisites_for_verification",
]
