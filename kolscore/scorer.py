"""Scoring engine: survey scores from resolved nominations, composite from weights.

Survey score
------------
For every nomination type used by a campaign's questions, each HCP's count
is normalized against the best-nominated HCP of that type::

    type_score = count / max_count_for_type × 100

Types an HCP was not nominated in have no score (``None``, not zero), and the
consolidated survey score is the plain mean of the type scores that exist.
Campaigns whose questions carry no nomination type use the legacy single
dimension, normalized against the best-nominated HCP in the whole campaign.

Composite score
---------------
Eight objective dimensions (externally supplied, read from the current
disease-area aggregate) plus the survey score, each weighted by a 0-100
percentage::

    composite = Σ dimension_i × weight_i / 100 + survey × weight_survey / 100

Missing dimensions and a missing survey score count as 0.

Both calculators fully recompute and overwrite, so re-running them on
unchanged data stores the same scores.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping

from kolscore.errors import InvalidState, NotFound
from kolscore.models import (
    NOMINATION_TYPE_FIELDS, OBJECTIVE_DIMENSIONS, Campaign, CampaignStatus, CompositeScoreConfig,
    HcpDiseaseAreaScore, NominationType, RESOLVED_STATUSES,
)
from kolscore.repository import ScoreRepository
from kolscore.schemas import CalculationResult, CalculationStatus, ScoreConfigIn, ScoreConfigOut
from kolscore.services import WEIGHT_FIELDS, apply_updates, score_config_out
from kolscore.utils import utcnow

log = logging.getLogger(__name__)

DEFAULT_SCORE_WEIGHTS: dict[str, float] = {
    "weight_publications": 10.0,
    "weight_clinical_trials": 15.0,
    "weight_trade_pubs": 10.0,
    "weight_org_leadership": 10.0,
    "weight_org_awareness": 10.0,
    "weight_conference": 10.0,
    "weight_social_media": 5.0,
    "weight_media_podcasts": 5.0,
    "weight_survey": 25.0,
}


# ---------------------------------------------------------------------------
# Deterministic aggregation
# ---------------------------------------------------------------------------


def normalize_count(count: int, max_count: int) -> float | None:
    """Share of the leader's count as a 0-100 score; ``None`` when not nominated."""
    if count <= 0 or max_count <= 0:
        return None
    return count / max_count * 100


def type_scores(
    counts: Mapping[NominationType, int], max_counts: Mapping[NominationType, int],
) -> dict[NominationType, float | None]:
    return {ntype: normalize_count(counts.get(ntype, 0), max_counts.get(ntype, 0)) for ntype in max_counts}


def consolidated_score(scores: Mapping[NominationType, float | None]) -> float | None:
    """Unweighted mean of the type scores that exist."""
    present = [s for s in scores.values() if s is not None]
    if not present:
        return None
    return sum(present) / len(present)


def weights_of(config: CompositeScoreConfig) -> dict[str, float]:
    return {f: float(getattr(config, f) or 0.0) for f in WEIGHT_FIELDS}


def objective_scores_of(row: HcpDiseaseAreaScore | None) -> dict[str, float | None]:
    """Objective dimension values of an aggregate row, keyed by score column."""
    return {score: (getattr(row, score) if row is not None else None) for _, score, _ in OBJECTIVE_DIMENSIONS}


def compute_composite(
    objective: Mapping[str, float | None], survey: float | None, weights: Mapping[str, float],
) -> float:
    total = 0.0
    for _, score_field, weight_field in OBJECTIVE_DIMENSIONS:
        total += float(objective.get(score_field) or 0.0) * weights.get(weight_field, 0.0) / 100
    total += float(survey or 0.0) * weights.get("weight_survey", 0.0) / 100
    return total


# ---------------------------------------------------------------------------
# Survey scores
# ---------------------------------------------------------------------------


def _require_unpublished(repo: ScoreRepository, campaign_id: int) -> Campaign:
    campaign = repo.get_campaign(campaign_id)
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    if campaign.status == CampaignStatus.PUBLISHED:
        raise InvalidState(f"Campaign {campaign_id} is published; its scores are frozen")
    return campaign


def _empty_type_fields() -> dict[str, int | float | None]:
    values: dict[str, int | float | None] = {}
    for count_field, score_field in NOMINATION_TYPE_FIELDS.values():
        values[count_field] = 0
        values[score_field] = None
    return values


def _typed_score_rows(
    repo: ScoreRepository, campaign_id: int, used_types: list[NominationType],
) -> dict[int, dict]:
    counts: dict[int, dict[NominationType, int]] = defaultdict(dict)
    for hcp_id, tag, count in repo.resolved_nomination_counts(campaign_id, by_type=True):
        if tag not in used_types:
            log.debug("Skipping %d nominations of HCP %s with untracked type %r", count, hcp_id, tag)
            continue
        counts[hcp_id][NominationType(tag)] = count

    max_counts: dict[NominationType, int] = {}
    for per_type in counts.values():
        for ntype, count in per_type.items():
            max_counts[ntype] = max(max_counts.get(ntype, 0), count)

    rows: dict[int, dict] = {}
    for hcp_id, per_type in counts.items():
        scores = type_scores(per_type, max_counts)
        values = _empty_type_fields()
        for ntype, score in scores.items():
            count_field, score_field = NOMINATION_TYPE_FIELDS[ntype]
            values[count_field] = per_type.get(ntype, 0)
            values[score_field] = score
        values["score_survey"] = consolidated_score(scores)
        values["nomination_count"] = sum(per_type.values())
        rows[hcp_id] = values
    return rows


def _legacy_score_rows(repo: ScoreRepository, campaign_id: int) -> dict[int, dict]:
    counts = {hcp_id: count for hcp_id, _, count in repo.resolved_nomination_counts(campaign_id, by_type=False)}
    if not counts:
        return {}
    max_count = max(counts.values())
    rows: dict[int, dict] = {}
    for hcp_id, count in counts.items():
        values = _empty_type_fields()
        values["score_survey"] = normalize_count(count, max_count)
        values["nomination_count"] = count
        rows[hcp_id] = values
    return rows


async def calculate_survey_scores(repo: ScoreRepository, campaign_id: int) -> CalculationResult:
    """Recompute every HCP's survey score for a campaign from its resolved nominations."""
    _require_unpublished(repo, campaign_id)

    used_types = repo.campaign_nomination_types(campaign_id)
    if used_types:
        rows = _typed_score_rows(repo, campaign_id, used_types)
    else:
        log.info("Campaign %s has no typed nomination questions; using legacy survey score", campaign_id)
        rows = _legacy_score_rows(repo, campaign_id)

    now = utcnow()
    with repo.atomic():
        removed = repo.delete_campaign_scores_except(campaign_id, set(rows))
        for hcp_id in sorted(rows):
            repo.upsert_campaign_score(hcp_id, campaign_id, {**rows[hcp_id], "calculated_at": now})

    if removed:
        log.info("Removed %d stale campaign scores for campaign %s", removed, campaign_id)
    log.info("Survey scores calculated for %d HCPs in campaign %s", len(rows), campaign_id)
    return CalculationResult(processed=len(rows), updated=len(rows))


# ---------------------------------------------------------------------------
# Composite scores
# ---------------------------------------------------------------------------


async def calculate_composite_scores(repo: ScoreRepository, campaign_id: int) -> CalculationResult:
    """Blend each HCP's survey score with the disease area's objective dimensions.

    Must run after :func:`calculate_survey_scores`; with no campaign scores yet
    it does nothing.
    """
    campaign = _require_unpublished(repo, campaign_id)
    config = repo.get_score_config(campaign_id)
    if config is None:
        raise NotFound(f"Score configuration for campaign {campaign_id} not found")

    scores = repo.list_campaign_scores(campaign_id)
    if not scores:
        log.warning("No survey scores for campaign %s; run survey calculation first", campaign_id)
        return CalculationResult(processed=0, updated=0)

    weights = weights_of(config)
    aggregates = repo.current_aggregates((s.hcp_id for s in scores), campaign.disease_area_id)
    now = utcnow()
    updated = 0
    with repo.atomic():
        for score in scores:
            objective = objective_scores_of(aggregates.get(score.hcp_id))
            score.composite_score = compute_composite(objective, score.score_survey, weights)
            score.calculated_at = now
            updated += 1
        repo.session.flush()

    log.info("Composite scores calculated for %d HCPs in campaign %s", updated, campaign_id)
    return CalculationResult(processed=len(scores), updated=updated)


async def get_calculation_status(repo: ScoreRepository, campaign_id: int) -> CalculationStatus:
    total = repo.count_nominations(campaign_id)
    resolved = repo.count_nominations(campaign_id, RESOLVED_STATUSES)
    scores = repo.list_campaign_scores(campaign_id)
    with_composite = sum(1 for s in scores if s.composite_score is not None)
    return CalculationStatus(
        total_nominations=total,
        resolved_nominations=resolved,
        unresolved_nominations=total - resolved,
        hcp_scores_calculated=len(scores),
        composite_scores_calculated=with_composite,
        ready_to_publish=resolved > 0 and len(scores) > 0 and with_composite == len(scores),
    )


# ---------------------------------------------------------------------------
# Weight configuration
# ---------------------------------------------------------------------------


def _require_campaign(repo: ScoreRepository, campaign_id: int) -> None:
    if repo.get_campaign(campaign_id) is None:
        raise NotFound(f"Campaign {campaign_id} not found")


async def get_score_config(repo: ScoreRepository, campaign_id: int) -> ScoreConfigOut:
    """Return the campaign's weights, creating the defaults on first access."""
    _require_campaign(repo, campaign_id)
    config = repo.get_score_config(campaign_id)
    if config is None:
        config = repo.add(CompositeScoreConfig(campaign_id=campaign_id, **DEFAULT_SCORE_WEIGHTS))
    return score_config_out(config)


async def update_score_config(repo: ScoreRepository, campaign_id: int, data: ScoreConfigIn) -> ScoreConfigOut:
    _require_campaign(repo, campaign_id)
    config = repo.get_score_config(campaign_id)
    if config is None:
        config = repo.add(CompositeScoreConfig(campaign_id=campaign_id, **DEFAULT_SCORE_WEIGHTS))
    apply_updates(config, data.model_dump(), WEIGHT_FIELDS)
    repo.session.flush()
    total = sum(weights_of(config).values())
    if abs(total - 100.0) > 1e-6:
        log.info("Campaign %s weights sum to %.2f, not 100", campaign_id, total)
    return score_config_out(config)


async def reset_score_config(repo: ScoreRepository, campaign_id: int) -> ScoreConfigOut:
    return await update_score_config(repo, campaign_id, ScoreConfigIn(**DEFAULT_SCORE_WEIGHTS))
