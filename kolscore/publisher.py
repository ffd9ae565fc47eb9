"""Publication engine: fold campaign scores into the disease-area aggregate.

The aggregate per (HCP, disease area) is kept as an SCD Type 2 history.
Publishing never edits the current row's scores in place; it closes the
current row (``is_current=False``, ``effective_to=now``) and inserts its
successor with ``effective_from=now`` inside one SAVEPOINT, so a failure can
never leave a pair with zero or two current rows.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from kolscore.errors import InvalidState, NotFound, ScoringError
from kolscore.models import OBJECTIVE_DIMENSIONS, Campaign, HcpCampaignScore, HcpDiseaseAreaScore
from kolscore.repository import ScoreRepository
from kolscore.schemas import ImportResult, ObjectiveScoresIn, PublishResult, is_valid_npi
from kolscore.scorer import compute_composite, objective_scores_of, weights_of
from kolscore.services import OBJECTIVE_FIELDS, apply_updates
from kolscore.utils import utcnow

log = logging.getLogger(__name__)


def _publish_one(
    repo: ScoreRepository,
    campaign: Campaign,
    score: HcpCampaignScore,
    weights: dict[str, float],
    now: datetime,
) -> HcpDiseaseAreaScore:
    disease_area_id = campaign.disease_area_id
    current = repo.current_aggregate(score.hcp_id, disease_area_id)

    if current is None:
        survey = score.score_survey
        row = repo.insert_aggregate(
            hcp_id=score.hcp_id,
            disease_area_id=disease_area_id,
            score_survey=survey,
            composite_score=compute_composite({}, survey, weights),
            total_nomination_count=score.nomination_count,
            campaign_count=1,
            effective_from=now,
            last_calculated_at=now,
        )
    else:
        repo.close_aggregate(current, now)
        history = repo.survey_scores_in_disease_area(
            score.hcp_id, disease_area_id, including_campaign_id=campaign.id,
        )
        survey = sum(history) / len(history) if history else score.score_survey
        objective = objective_scores_of(current)
        row = repo.insert_aggregate(
            hcp_id=score.hcp_id,
            disease_area_id=disease_area_id,
            **objective,
            score_survey=survey,
            composite_score=compute_composite(objective, survey, weights),
            total_nomination_count=current.total_nomination_count + score.nomination_count,
            campaign_count=current.campaign_count + 1,
            effective_from=now,
            last_calculated_at=now,
        )

    score.published_at = now
    return row


async def publish_scores(repo: ScoreRepository, campaign_id: int, published_by: str) -> PublishResult:
    """Publish a campaign's scores into the cross-campaign disease-area aggregate.

    Survey and composite calculation must have run first.  Each HCP is folded
    in its own atomic unit; rows already stamped ``published_at`` are skipped,
    so re-running after an interrupted publish resumes instead of counting a
    campaign twice.
    """
    campaign = repo.get_campaign(campaign_id)
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    config = repo.get_score_config(campaign_id)
    if config is None:
        raise NotFound(f"Score configuration for campaign {campaign_id} not found")

    weights = weights_of(config)
    processed = 0
    for score in repo.list_campaign_scores(campaign_id):
        if score.published_at is not None:
            log.info("Campaign score for HCP %s already published; skipping", score.hcp_id)
            continue
        with repo.atomic():
            _publish_one(repo, campaign, score, weights, utcnow())
        processed += 1

    log.info("Published %d HCP scores for campaign %s by %s", processed, campaign_id, published_by)
    return PublishResult(processed=processed)


# ---------------------------------------------------------------------------
# Objective dimension intake
# ---------------------------------------------------------------------------


def _require_disease_area(repo: ScoreRepository, disease_area_id: int) -> None:
    if repo.get_disease_area(disease_area_id) is None:
        raise NotFound(f"Disease area {disease_area_id} not found")


def _write_objective(
    repo: ScoreRepository, hcp_id: int, disease_area_id: int, values: dict[str, float], now: datetime,
) -> tuple[HcpDiseaseAreaScore, bool]:
    """Apply objective values to the current aggregate row; returns ``(row, created)``."""
    row = repo.current_aggregate(hcp_id, disease_area_id)
    created = row is None
    if created:
        row = repo.insert_aggregate(
            hcp_id=hcp_id, disease_area_id=disease_area_id,
            total_nomination_count=0, campaign_count=0, effective_from=now,
        )
    apply_updates(row, values, OBJECTIVE_FIELDS)
    row.last_calculated_at = now
    repo.session.flush()
    return row, created


def objective_values_from_row(row: Mapping[str, Any]) -> dict[str, float]:
    """Pick usable objective dimensions out of one import row.

    Each dimension may be keyed by its score column (``score_publications``) or
    its short key (``publications``).  Blank, non-numeric and out-of-range
    values are skipped.
    """
    values: dict[str, float] = {}
    for key, score_field, _ in OBJECTIVE_DIMENSIONS:
        raw = row.get(score_field, row.get(key))
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            log.debug("Skipping non-numeric %s value %r", key, raw)
            continue
        if 0 <= value <= 100:
            values[score_field] = value
        else:
            log.debug("Skipping out-of-range %s value %r", key, raw)
    return values


async def set_objective_scores(
    repo: ScoreRepository, hcp_id: int, disease_area_id: int, scores: ObjectiveScoresIn,
) -> HcpDiseaseAreaScore:
    """Record externally supplied objective dimensions on the current aggregate row.

    Only the non-null dimensions in ``scores`` are written.  Creates the first
    current row when the HCP has no history in the disease area.
    """
    if repo.get_hcp(hcp_id) is None:
        raise NotFound(f"HCP {hcp_id} not found")
    _require_disease_area(repo, disease_area_id)
    with repo.atomic():
        row, _ = _write_objective(
            repo, hcp_id, disease_area_id, scores.model_dump(exclude_unset=True), utcnow(),
        )
    return row


async def import_objective_scores(
    repo: ScoreRepository, disease_area_id: int, rows: Iterable[Mapping[str, Any]],
) -> ImportResult:
    """Take in objective dimensions for many HCPs at once, keyed by NPI.

    Each row applies in its own atomic unit.  A row with a malformed or unknown
    NPI is reported in ``errors`` (numbered from 1) and the batch carries on.
    """
    _require_disease_area(repo, disease_area_id)
    rows = list(rows)
    created = updated = 0
    errors: list[str] = []

    for index, row in enumerate(rows, start=1):
        npi = str(row.get("npi") or "").strip()
        try:
            if not is_valid_npi(npi):
                raise InvalidState(f"Invalid NPI format: {npi!r}")
            with repo.atomic():
                hcp = repo.get_hcp_by_npi(npi)
                if hcp is None:
                    raise NotFound(f"HCP not found: {npi}")
                _, was_created = _write_objective(
                    repo, hcp.id, disease_area_id, objective_values_from_row(row), utcnow(),
                )
        except (ScoringError, SQLAlchemyError) as exc:
            log.warning("Objective score import row %d failed: %s", index, exc)
            errors.append(f"Row {index}: {exc}")
            continue
        if was_created:
            created += 1
        else:
            updated += 1

    log.info(
        "Imported objective scores for disease area %s: %d created, %d updated, %d errors",
        disease_area_id, created, updated, len(errors),
    )
    return ImportResult(total=len(rows), created=created, updated=updated, errors=errors)


async def aggregate_history(
    repo: ScoreRepository, hcp_id: int, disease_area_id: int,
) -> list[HcpDiseaseAreaScore]:
    """Every version of the aggregate, oldest first."""
    return repo.aggregate_history(hcp_id, disease_area_id)
