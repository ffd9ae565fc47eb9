"""Shared serialization and mutation helpers for the engine's result records."""
from __future__ import annotations

from typing import Any

from kolscore.models import (
    NOMINATION_TYPE_FIELDS, OBJECTIVE_DIMENSIONS, CompositeScoreConfig, Hcp, HcpCampaignScore,
    Nomination,
)
from kolscore.repository import ScoreRepository
from kolscore.schemas import CampaignScoreOut, HcpBrief, NominationOut, ScoreConfigOut

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

HCP_FIELDS = ("id", "npi", "first_name", "last_name", "specialty", "city", "state")

WEIGHT_FIELDS = tuple(weight for _, _, weight in OBJECTIVE_DIMENSIONS) + ("weight_survey",)

OBJECTIVE_FIELDS = tuple(score for _, score, _ in OBJECTIVE_DIMENSIONS)

NOMINATION_FIELDS = (
    "id", "campaign_id", "raw_name_entered", "nomination_type", "match_status",
    "match_type", "match_confidence", "matched_by", "matched_at", "exclude_reason",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def hcp_brief(hcp: Hcp) -> HcpBrief:
    return HcpBrief(
        **{f: getattr(hcp, f) for f in HCP_FIELDS},
        aliases=[a.alias_name for a in hcp.aliases],
    )


def nomination_out(nomination: Nomination) -> NominationOut:
    matched = nomination.matched_hcp
    return NominationOut(
        **{f: getattr(nomination, f) for f in NOMINATION_FIELDS},
        matched_hcp=hcp_brief(matched) if matched is not None else None,
    )


def score_config_out(config: CompositeScoreConfig) -> ScoreConfigOut:
    weights = {f: float(getattr(config, f) or 0.0) for f in WEIGHT_FIELDS}
    return ScoreConfigOut(
        id=config.id, campaign_id=config.campaign_id,
        total_weight=sum(weights.values()), **weights,
    )


def campaign_score_out(score: HcpCampaignScore) -> CampaignScoreOut:
    type_scores = {}
    for ntype, (_, score_field) in NOMINATION_TYPE_FIELDS.items():
        value = getattr(score, score_field)
        if value is not None:
            type_scores[ntype.value] = value
    return CampaignScoreOut(
        hcp=hcp_brief(score.hcp),
        score_survey=score.score_survey,
        composite_score=score.composite_score,
        nomination_count=score.nomination_count,
        type_scores=type_scores,
        published_at=score.published_at,
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def ranked_campaign_scores(repo: ScoreRepository, campaign_id: int) -> list[CampaignScoreOut]:
    """Campaign scores ordered best first: composite, then survey score, then HCP id."""
    rows = repo.list_campaign_scores(campaign_id)

    def sort_key(row: HcpCampaignScore):
        composite = row.composite_score if row.composite_score is not None else -1.0
        survey = row.score_survey if row.score_survey is not None else -1.0
        return (-composite, -survey, row.hcp_id)

    return [campaign_score_out(row) for row in sorted(rows, key=sort_key)]


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)
