"""Nomination lifecycle: resolution state and the mutations allowed on it.

States: ``UNMATCHED`` → (``MATCHED`` | ``NEW_HCP`` | ``REVIEW_NEEDED`` |
``EXCLUDED``).  ``REVIEW_NEEDED`` stays open for a final match;
:func:`reset_nomination` returns any nomination to ``UNMATCHED``.
"""
from __future__ import annotations

import logging
import math

from kolscore.errors import InvalidState, NotFound
from kolscore.models import Hcp, MatchStatus, MatchType, Nomination
from kolscore.repository import ScoreRepository
from kolscore.schemas import NominationPage, NominationStats
from kolscore.services import nomination_out
from kolscore.utils import utcnow

log = logging.getLogger(__name__)

OPEN_STATUSES = (MatchStatus.UNMATCHED, MatchStatus.REVIEW_NEEDED)


def require_open(nomination: Nomination) -> None:
    if nomination.match_status not in OPEN_STATUSES:
        raise InvalidState(
            f"Nomination {nomination.id} is {nomination.match_status}; "
            "only unmatched or review-needed nominations can be resolved"
        )


def apply_resolution(
    nomination: Nomination,
    hcp: Hcp,
    status: MatchStatus,
    actor: str,
    *,
    match_type: MatchType | None = None,
    match_confidence: float | None = None,
) -> None:
    """Point a nomination at an HCP and record who resolved it and when."""
    nomination.matched_hcp = hcp
    nomination.matched_hcp_id = hcp.id
    nomination.match_status = status
    nomination.match_type = match_type
    nomination.match_confidence = match_confidence
    nomination.matched_by = actor
    nomination.matched_at = utcnow()
    nomination.exclude_reason = None


def _clear_resolution(nomination: Nomination) -> None:
    nomination.matched_hcp = None
    nomination.matched_hcp_id = None
    nomination.match_type = None
    nomination.match_confidence = None
    nomination.matched_by = None
    nomination.matched_at = None


def _get_or_404(repo: ScoreRepository, nomination_id: int) -> Nomination:
    nomination = repo.get_nomination(nomination_id)
    if nomination is None:
        raise NotFound(f"Nomination {nomination_id} not found")
    return nomination


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def exclude_nomination(
    repo: ScoreRepository, nomination_id: int, actor: str, reason: str | None = None,
) -> Nomination:
    """Take a nomination out of scoring (e.g. a non-HCP or a joke entry)."""
    nomination = _get_or_404(repo, nomination_id)
    _clear_resolution(nomination)
    nomination.match_status = MatchStatus.EXCLUDED
    nomination.matched_by = actor
    nomination.matched_at = utcnow()
    nomination.exclude_reason = (reason or "").strip() or "Excluded"
    repo.session.flush()
    log.info("Nomination %s excluded by %s", nomination.id, actor)
    return nomination


async def update_raw_name(repo: ScoreRepository, nomination_id: int, new_raw_name: str) -> Nomination:
    """Correct a typo in the entered name; the nomination goes back to UNMATCHED."""
    nomination = _get_or_404(repo, nomination_id)
    if nomination.match_status not in OPEN_STATUSES:
        raise InvalidState("Can only edit unmatched or review-needed nominations")
    name = new_raw_name.strip()
    if not name:
        raise InvalidState("Nominated name must not be empty")
    nomination.raw_name_entered = name
    nomination.match_status = MatchStatus.UNMATCHED
    _clear_resolution(nomination)
    repo.session.flush()
    return nomination


async def reset_nomination(repo: ScoreRepository, nomination_id: int) -> Nomination:
    """Undo any resolution or exclusion so the nomination can be matched again."""
    nomination = _get_or_404(repo, nomination_id)
    nomination.match_status = MatchStatus.UNMATCHED
    nomination.exclude_reason = None
    _clear_resolution(nomination)
    repo.session.flush()
    return nomination


async def nomination_stats(repo: ScoreRepository, campaign_id: int) -> NominationStats:
    by_status = {status.value: 0 for status in MatchStatus}
    by_status.update(repo.nomination_status_counts(campaign_id))
    return NominationStats(total=sum(by_status.values()), by_status=by_status)


async def list_nominations(
    repo: ScoreRepository,
    campaign_id: int,
    status: MatchStatus | str | None = None,
    page: int = 1,
    limit: int = 50,
) -> NominationPage:
    page = max(page, 1)
    statuses = [MatchStatus(status)] if status else None
    total = repo.count_nominations(campaign_id, statuses)
    items = repo.list_nominations(campaign_id, statuses, offset=(page - 1) * limit, limit=limit)
    return NominationPage(
        items=[nomination_out(n) for n in items],
        total=total,
        page=page,
        pages=math.ceil(total / limit) if limit else 0,
    )
