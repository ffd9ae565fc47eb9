"""Identity matcher: reconcile free-text nominee names against the HCP registry.

Scoring rules
-------------
Each candidate is scored by the first rule that applies (no stacking):

- 100: full name (``first last`` or ``last first``) equals the raw name
- 95: an alias equals the raw name
- 85: full name contains the raw name, or the raw name contains it
- 75: last name equals the final word of the raw name
- 70: an alias contains the raw name, or the raw name contains an alias
- otherwise ``min(60, 25 × tokens found in first or last name)``

All comparisons are case-insensitive.  Suggestions at or above
``AUTO_MATCH_THRESHOLD`` are confirmed by :func:`bulk_auto_match`; the rest
stay unmatched for manual triage.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from kolscore import config
from kolscore.errors import Conflict, NotFound, ScoringError
from kolscore.models import Hcp, MatchStatus, MatchType, Nomination
from kolscore.nominations import apply_resolution, require_open
from kolscore.repository import ScoreRepository
from kolscore.schemas import BulkMatchResult, HcpCreate, HcpSuggestion
from kolscore.services import hcp_brief

log = logging.getLogger(__name__)

_NON_LETTER_RE = re.compile(r"[^a-z\s]")


# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------


def normalize_name(name: str) -> str:
    """Lowercase and collapse whitespace, keeping punctuation."""
    return " ".join(name.lower().split())


def name_tokens(name: str) -> list[str]:
    """Letter-only lowercase tokens used for candidate retrieval and partial scoring."""
    return _NON_LETTER_RE.sub("", name.lower()).split()


# ---------------------------------------------------------------------------
# Deterministic scoring
# ---------------------------------------------------------------------------


@dataclass
class CandidateScore:
    score: int
    match_type: MatchType
    is_name_match: bool


def score_candidate(hcp: Hcp, raw_name: str) -> CandidateScore:
    """Score one candidate HCP against a raw nominated name."""
    raw = normalize_name(raw_name)
    first = hcp.first_name.lower()
    last = hcp.last_name.lower()
    full = normalize_name(f"{first} {last}")
    reverse = normalize_name(f"{last} {first}")
    aliases = [normalize_name(a.alias_name) for a in hcp.aliases]

    if raw in (full, reverse):
        return CandidateScore(100, MatchType.EXACT, True)
    if raw in aliases:
        return CandidateScore(95, MatchType.ALIAS, False)
    if raw in full or full in raw:
        return CandidateScore(85, MatchType.PRIMARY, True)
    words = raw.split(" ")
    if words and last == words[-1]:
        return CandidateScore(75, MatchType.PRIMARY, True)
    if any(raw in alias or alias in raw for alias in aliases if alias):
        return CandidateScore(70, MatchType.ALIAS, False)

    hits = sum(1 for token in name_tokens(raw_name) if token in first or token in last)
    score = min(60, 25 * hits)
    return CandidateScore(score, MatchType.PARTIAL, score >= 50)


def get_suggestions(
    raw_name: str, candidates: Iterable[Hcp], limit: int | None = None,
) -> list[HcpSuggestion]:
    """Rank a candidate pool against ``raw_name``, best first.

    Ties keep the pool's order (the sort is stable).  An empty or letter-free
    name yields no suggestions.
    """
    if not name_tokens(raw_name):
        return []
    limit = config.SUGGESTION_LIMIT if limit is None else limit
    scored = []
    for hcp in candidates:
        result = score_candidate(hcp, raw_name)
        scored.append(HcpSuggestion(
            hcp=hcp_brief(hcp),
            score=result.score,
            match_type=result.match_type.value,
            is_name_match=result.is_name_match,
        ))
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


async def find_suggestions(repo: ScoreRepository, raw_name: str) -> list[HcpSuggestion]:
    """Retrieve candidates from the registry and rank them."""
    tokens = name_tokens(raw_name)
    if not tokens:
        return []
    pool = repo.find_hcp_candidates(tokens, raw_name, config.CANDIDATE_POOL_LIMIT)
    return get_suggestions(raw_name, pool)


async def suggest_for_nomination(repo: ScoreRepository, nomination_id: int) -> list[HcpSuggestion]:
    nomination = repo.get_nomination(nomination_id)
    if nomination is None:
        return []
    return await find_suggestions(repo, nomination.raw_name_entered)


# ---------------------------------------------------------------------------
# Resolution operations
# ---------------------------------------------------------------------------


def _get_nomination_or_404(repo: ScoreRepository, nomination_id: int) -> Nomination:
    nomination = repo.get_nomination(nomination_id)
    if nomination is None:
        raise NotFound(f"Nomination {nomination_id} not found")
    return nomination


async def match_to_hcp(
    repo: ScoreRepository,
    nomination_id: int,
    hcp_id: int,
    add_alias: bool,
    actor: str,
    match_type: MatchType | str | None = None,
    match_confidence: float | None = None,
) -> Nomination:
    """Resolve a nomination to an existing HCP.

    A supplied confidence below ``REVIEW_THRESHOLD`` parks the nomination in
    the review lane instead of marking it matched.  With ``add_alias`` the raw
    name is recorded as an alias unless one already matches it.
    """
    nomination = _get_nomination_or_404(repo, nomination_id)
    require_open(nomination)
    hcp = repo.get_hcp(hcp_id)
    if hcp is None:
        raise NotFound(f"HCP {hcp_id} not found")

    with repo.atomic():
        raw = nomination.raw_name_entered.strip()
        if add_alias and raw and repo.find_alias(hcp.id, raw) is None:
            repo.add_alias(hcp, raw, created_by=actor)

        low_confidence = match_confidence is not None and match_confidence < config.REVIEW_THRESHOLD
        status = MatchStatus.REVIEW_NEEDED if low_confidence else MatchStatus.MATCHED
        apply_resolution(
            nomination, hcp, status, actor,
            match_type=MatchType(match_type) if match_type else MatchType.EXACT,
            match_confidence=100.0 if match_confidence is None else float(match_confidence),
        )
        repo.session.flush()
    log.info("Nomination %s -> HCP %s (%s) by %s", nomination.id, hcp.id, status, actor)
    return nomination


async def create_hcp_and_match(
    repo: ScoreRepository, nomination_id: int, new_hcp: HcpCreate, actor: str,
) -> Nomination:
    """Register a new HCP for a nomination no existing provider fits."""
    nomination = _get_nomination_or_404(repo, nomination_id)
    require_open(nomination)
    if repo.get_hcp_by_npi(new_hcp.npi) is not None:
        raise Conflict(f"An HCP with NPI {new_hcp.npi} already exists")

    with repo.atomic():
        hcp = repo.add_hcp(Hcp(**new_hcp.model_dump(), created_by=actor))
        raw = nomination.raw_name_entered.strip()
        if raw and normalize_name(raw) != normalize_name(hcp.full_name):
            repo.add_alias(hcp, raw, created_by=actor)
        apply_resolution(nomination, hcp, MatchStatus.NEW_HCP, actor)
        repo.session.flush()
    log.info("Nomination %s -> new HCP %s (NPI %s) by %s", nomination.id, hcp.id, hcp.npi, actor)
    return nomination


async def bulk_auto_match(repo: ScoreRepository, campaign_id: int, actor: str) -> BulkMatchResult:
    """Confirm every unmatched nomination whose best suggestion clears the auto-match bar.

    Per-nomination failures are collected in ``errors``; they never abort the batch.
    """
    if repo.get_campaign(campaign_id) is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    unmatched = repo.list_nominations(campaign_id, [MatchStatus.UNMATCHED])
    matched = 0
    errors: list[str] = []

    for nomination in unmatched:
        raw = nomination.raw_name_entered
        try:
            with repo.atomic():
                suggestions = await find_suggestions(repo, raw)
                best = suggestions[0] if suggestions else None
                if best is None or best.score < config.AUTO_MATCH_THRESHOLD:
                    continue
                await match_to_hcp(
                    repo, nomination.id, best.hcp.id, True, actor,
                    match_type=best.match_type, match_confidence=best.score,
                )
                matched += 1
        except (ScoringError, SQLAlchemyError) as exc:
            log.warning("Auto-match failed for nomination %s (%r): %s", nomination.id, raw, exc)
            errors.append(f'Failed to auto-match "{raw}": {exc}')

    log.info("Auto-matched %d/%d nominations in campaign %s", matched, len(unmatched), campaign_id)
    return BulkMatchResult(matched=matched, total=len(unmatched), errors=errors)
