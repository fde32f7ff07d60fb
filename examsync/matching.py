"""
Link suggestions for exams without a course.

Each exam code is normalized, then tried against the course catalog with an
ordered list of matchers. The first matcher that finds something decides the
confidence tier:

    high    exact code
    medium  same first 4 characters (only for keys of 4+ characters)
    low     first 3 characters appear anywhere in the code (any case)

Within one tier the first entry in catalog order wins. Callers who need
stable suggestions must sort the catalog (by code) before resolving.

Nothing here writes anything: a suggestion only becomes a LinkDecision
through accept_suggestion() / manual_link(), and storing that decision is
the caller's job.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from examsync.errors import LinkError
from examsync.model import (
    CatalogEntry,
    ConfidenceTier,
    LinkDecision,
    MatchCandidate,
    UnlinkedEntity,
)
from examsync.normalize import normalize_code

logger = logging.getLogger(__name__)

Matcher = Callable[[str, Sequence[CatalogEntry]], Optional[CatalogEntry]]


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


def match_exact(key: str, catalog: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
    for entry in catalog:
        if entry.code == key:
            return entry
    return None


def match_prefix(key: str, catalog: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
    if len(key) < 4:
        return None
    prefix = key[:4]
    for entry in catalog:
        if entry.code.startswith(prefix):
            return entry
    return None


def match_fragment(key: str, catalog: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
    fragment = key[:3].lower()
    if not fragment:
        return None
    for entry in catalog:
        if fragment in entry.code.lower():
            return entry
    return None


MATCHERS: Tuple[Tuple[ConfidenceTier, Matcher], ...] = (
    (ConfidenceTier.HIGH, match_exact),
    (ConfidenceTier.MEDIUM, match_prefix),
    (ConfidenceTier.LOW, match_fragment),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def suggest_match(
    raw_code: str,
    catalog: Sequence[CatalogEntry],
    matchers: Sequence[Tuple[ConfidenceTier, Matcher]] = MATCHERS,
) -> Optional[MatchCandidate]:
    """
    Best candidate for one raw code, or None.
    """
    key = normalize_code(raw_code)
    for tier, matcher in matchers:
        entry = matcher(key, catalog)
        if entry is not None:
            return MatchCandidate(target_id=entry.id, target_code=entry.code, tier=tier)
    return None


def resolve(
    unlinked: Iterable[UnlinkedEntity],
    catalog: Iterable[CatalogEntry],
) -> Dict[str, Optional[MatchCandidate]]:
    """
    Suggest a course for every unlinked entity.

    The catalog is read once into a snapshot so every entity is scored
    against the same entries.
    """
    snapshot = tuple(catalog)
    suggestions: Dict[str, Optional[MatchCandidate]] = {}
    for entity in unlinked:
        suggestions[entity.entity_id] = suggest_match(entity.raw_code, snapshot)

    found = sum(1 for c in suggestions.values() if c is not None)
    logger.debug("resolved %d entities, %d with a suggestion", len(suggestions), found)
    return suggestions


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


def accept_suggestion(
    entity_id: str,
    candidate: Optional[MatchCandidate],
    confirm: bool = False,
) -> LinkDecision:
    """
    Turn a suggestion into a link decision.

    High-confidence suggestions are accepted automatically; medium and low
    ones need confirm=True (someone looked at them).
    """
    if candidate is None or candidate.tier is ConfidenceTier.NONE:
        raise LinkError(f"no suggestion to accept for {entity_id}")

    if candidate.tier is ConfidenceTier.HIGH:
        return LinkDecision(entity_id, candidate.target_id, method="auto", tier=candidate.tier)

    if not confirm:
        raise LinkError(
            f"{candidate.tier.value} confidence suggestion for {entity_id} needs confirmation"
        )
    return LinkDecision(entity_id, candidate.target_id, method="manual", tier=candidate.tier)


def manual_link(entity_id: str, target_id: str) -> LinkDecision:
    """
    Link chosen by hand, independent of any suggestion.
    """
    if not entity_id or not target_id:
        raise LinkError("entity and target are both required for a manual link")
    return LinkDecision(entity_id, target_id, method="manual", tier=ConfidenceTier.NONE)


def auto_accept(suggestions: Dict[str, Optional[MatchCandidate]]) -> List[LinkDecision]:
    """
    Decisions for every high-confidence suggestion, in suggestion order.
    """
    return [
        accept_suggestion(entity_id, candidate)
        for entity_id, candidate in suggestions.items()
        if candidate is not None and candidate.tier is ConfidenceTier.HIGH
    ]
