"""Local safety guardrails applied to parsed model output.

The prompt already instructs the model to follow these rules; this module
enforces them on the result before it reaches the caller.
"""

from __future__ import annotations

import re

from symptra.schemas import DISCLAIMER, DiagnosisResponse, PharmacyLink, PossibleCondition

PRESCRIPTION_ONLY_TERMS = (
    "antibiotic",
    "amoxicillin",
    "augmentin",
    "azithromycin",
    "penicillin",
    "doxycycline",
    "ciprofloxacin",
    "cephalexin",
    "clindamycin",
    "metronidazole",
    "steroid",
    "corticosteroid",
    "prednisone",
    "prednisolone",
    "dexamethasone",
    "methylprednisolone",
    "opioid",
    "opiate",
    "codeine",
    "tramadol",
    "oxycodone",
    "hydrocodone",
    "morphine",
    "fentanyl",
    "benzodiazepine",
    "diazepam",
    "alprazolam",
)

_PRESCRIPTION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(term) for term in PRESCRIPTION_ONLY_TERMS) + r")s?\b",
    re.IGNORECASE,
)
_DOSAGE_RE = re.compile(
    r"\b\d+(?:\.\d+)?\s*(?:mg|mcg|µg|g|ml|iu|units?|tablets?|tabs?|capsules?|caps?|puffs?|drops?)\b"
    r"|\bevery\s+\d+(?:\s*(?:-|to)\s*\d+)?\s*(?:hours?|hrs?|h)\b"
    r"|\b(?:once|twice|three times|four times)\s+(?:a|per)\s+day\b"
    r"|\b(?:once|twice)\s+daily\b",
    re.IGNORECASE,
)


def mentions_prescription_drug(text: str) -> bool:
    return bool(_PRESCRIPTION_RE.search(text))


def contains_dosage(text: str) -> bool:
    return bool(_DOSAGE_RE.search(text))


def _safe_link(link: PharmacyLink) -> bool:
    return link.url.lower().startswith(("https://", "http://")) and not mentions_prescription_drug(link.name)


def _guard_condition(item: PossibleCondition, removed: list[str]) -> PossibleCondition:
    otc = list(item.otc_suggestions)
    links = list(item.pharmacy_links)

    if item.urgency != "Routine":
        if otc or links:
            removed.append(f"otc_blocked_for_{item.urgency.lower()}: {item.condition}")
        otc, links = [], []
    else:
        kept: list[str] = []
        for suggestion in otc:
            if mentions_prescription_drug(suggestion):
                removed.append(f"prescription_term: {suggestion}")
            elif contains_dosage(suggestion):
                removed.append(f"dosage_text: {suggestion}")
            else:
                kept.append(suggestion)
        otc = kept
        links = [link for link in links if _safe_link(link)] if otc else []

    next_steps = []
    for step in item.next_steps:
        if contains_dosage(step):
            removed.append(f"dosage_text: {step}")
            continue
        next_steps.append(step)

    return item.model_copy(
        update={
            "otc_suggestions": otc,
            "pharmacy_links": links,
            "next_steps": next_steps,
        }
    )


def apply_safety_guardrails(response: DiagnosisResponse) -> tuple[DiagnosisResponse, list[str]]:
    """Return a cleaned copy of ``response`` and a note for each removed item."""
    removed: list[str] = []
    conditions = [_guard_condition(item, removed) for item in response.possible_conditions]
    cleaned = response.model_copy(update={"possible_conditions": conditions, "disclaimer": DISCLAIMER})
    return cleaned, removed
