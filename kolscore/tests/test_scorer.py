"""Tests for survey and composite score calculation and weight configuration."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from kolscore.errors import InvalidState, NotFound
from kolscore.models import CampaignStatus, HcpCampaignScore, MatchStatus, NominationType
from kolscore.nominations import reset_nomination
from kolscore.publisher import set_objective_scores
from kolscore.schemas import ObjectiveScoresIn, ScoreConfigIn
from kolscore.scorer import (
    DEFAULT_SCORE_WEIGHTS, calculate_composite_scores, calculate_survey_scores, compute_composite,
    consolidated_score, get_calculation_status, get_score_config, normalize_count, reset_score_config,
    update_score_config,
)
from kolscore.services import ranked_campaign_scores

DL = NominationType.DISCUSSION_LEADERS
RL = NominationType.REFERRAL_LEADERS

OBJECTIVE_EXAMPLE = {
    "score_publications": 90,
    "score_clinical_trials": 85,
    "score_trade_pubs": 70,
    "score_org_leadership": 60,
    "score_org_awareness": 50,
    "score_conference": 75,
    "score_social_media": 40,
    "score_media_podcasts": 30,
}


def _nominate(make_nomination, hcp, count, ntype=DL, campaign_id=None):
    for i in range(count):
        make_nomination(f"{hcp.full_name} {i}", hcp=hcp, nomination_type=ntype, campaign_id=campaign_id)


def _survey_only() -> ScoreConfigIn:
    weights = {key: 0.0 for key in DEFAULT_SCORE_WEIGHTS}
    weights["weight_survey"] = 100.0
    return ScoreConfigIn(**weights)


# ---------------------------------------------------------------------------
# Tests: deterministic helpers
# ---------------------------------------------------------------------------


class TestScorerDeterministic:
    def test_normalize_count(self):
        assert normalize_count(4, 4) == 100
        assert normalize_count(1, 4) == 25
        assert normalize_count(0, 4) is None

    def test_consolidated_mean_ignores_missing(self):
        assert consolidated_score({DL: 100.0, RL: None}) == 100.0
        assert consolidated_score({DL: 100.0, RL: 50.0}) == 75.0
        assert consolidated_score({DL: None}) is None

    def test_composite_example(self):
        assert compute_composite(OBJECTIVE_EXAMPLE, 80, DEFAULT_SCORE_WEIGHTS) == pytest.approx(70.75)

    def test_composite_missing_values_count_as_zero(self):
        assert compute_composite({}, None, DEFAULT_SCORE_WEIGHTS) == 0.0
        assert compute_composite({}, 80, DEFAULT_SCORE_WEIGHTS) == pytest.approx(20.0)


# ---------------------------------------------------------------------------
# Tests: calculate_survey_scores
# ---------------------------------------------------------------------------


class TestSurveyScores:
    @pytest.mark.asyncio
    async def test_typed_scores(self, repo, make_campaign, make_hcp, make_nomination):
        campaign = make_campaign(types=(DL, RL))
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        c = make_hcp("Cara", "Cole")
        _nominate(make_nomination, a, 4, DL, campaign.id)
        _nominate(make_nomination, a, 1, RL, campaign.id)
        _nominate(make_nomination, b, 2, DL, campaign.id)
        _nominate(make_nomination, c, 2, RL, campaign.id)

        result = await calculate_survey_scores(repo, campaign.id)
        assert result.processed == 3

        score_a = repo.get_campaign_score(a.id, campaign.id)
        assert score_a.score_discussion_leaders == 100
        assert score_a.score_referral_leaders == 50
        assert score_a.score_survey == pytest.approx(75.0)
        assert score_a.count_discussion_leaders == 4
        assert score_a.nomination_count == 5

        score_b = repo.get_campaign_score(b.id, campaign.id)
        assert score_b.score_discussion_leaders == 50
        assert score_b.score_referral_leaders is None
        assert score_b.score_survey == pytest.approx(50.0)

        score_c = repo.get_campaign_score(c.id, campaign.id)
        assert score_c.score_referral_leaders == 100
        assert score_c.score_survey == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_type_leaders_share_max(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 3)
        _nominate(make_nomination, b, 3)
        await calculate_survey_scores(repo, campaign.id)
        assert [s.score_survey for s in repo.list_campaign_scores(campaign.id)] == [100, 100]

    @pytest.mark.asyncio
    async def test_only_resolved_nominations_count(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 2)
        make_nomination("Ann A", hcp=a, status=MatchStatus.NEW_HCP)
        make_nomination("Ben B", hcp=b, status=MatchStatus.REVIEW_NEEDED)
        make_nomination("Nobody")
        make_nomination("Ben Excluded", status=MatchStatus.EXCLUDED)

        await calculate_survey_scores(repo, campaign.id)
        scores = repo.list_campaign_scores(campaign.id)
        assert [s.hcp_id for s in scores] == [a.id]
        assert scores[0].nomination_count == 3

    @pytest.mark.asyncio
    async def test_untracked_type_ignored(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 1, DL)
        _nominate(make_nomination, b, 5, NominationType.RISING_STAR)
        await calculate_survey_scores(repo, campaign.id)
        assert [s.hcp_id for s in repo.list_campaign_scores(campaign.id)] == [a.id]

    @pytest.mark.asyncio
    async def test_legacy_single_dimension(self, repo, make_campaign, make_hcp, make_nomination):
        campaign = make_campaign(types=(None,))
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 3, None, campaign.id)
        _nominate(make_nomination, b, 1, None, campaign.id)

        await calculate_survey_scores(repo, campaign.id)
        score_a = repo.get_campaign_score(a.id, campaign.id)
        score_b = repo.get_campaign_score(b.id, campaign.id)
        assert score_a.score_survey == pytest.approx(100.0)
        assert score_b.score_survey == pytest.approx(100 / 3)
        assert score_b.nomination_count == 1
        assert score_a.score_discussion_leaders is None

    @pytest.mark.asyncio
    async def test_idempotent(self, repo, session, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 3)
        _nominate(make_nomination, b, 2)

        def snapshot():
            return [
                (s.hcp_id, s.score_survey, s.composite_score, s.nomination_count)
                for s in repo.list_campaign_scores(campaign.id)
            ]

        await calculate_survey_scores(repo, campaign.id)
        await calculate_composite_scores(repo, campaign.id)
        first = snapshot()
        await calculate_survey_scores(repo, campaign.id)
        await calculate_composite_scores(repo, campaign.id)
        assert snapshot() == first
        assert session.query(HcpCampaignScore).count() == 2

    @pytest.mark.asyncio
    async def test_stale_rows_removed(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 2)
        only_b = make_nomination("Ben Brown", hcp=b)
        await calculate_survey_scores(repo, campaign.id)
        assert len(repo.list_campaign_scores(campaign.id)) == 2

        await reset_nomination(repo, only_b.id)
        await calculate_survey_scores(repo, campaign.id)
        assert [s.hcp_id for s in repo.list_campaign_scores(campaign.id)] == [a.id]

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, repo):
        with pytest.raises(NotFound):
            await calculate_survey_scores(repo, 999)


# ---------------------------------------------------------------------------
# Tests: calculate_composite_scores
# ---------------------------------------------------------------------------


class TestCompositeScores:
    @pytest.mark.asyncio
    async def test_uses_current_objective_dimensions(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 5)
        _nominate(make_nomination, b, 4)
        await set_objective_scores(repo, b.id, campaign.disease_area_id, ObjectiveScoresIn(**OBJECTIVE_EXAMPLE))

        await calculate_survey_scores(repo, campaign.id)
        result = await calculate_composite_scores(repo, campaign.id)
        assert result.updated == 2

        # B's survey score is 80 (4 of 5), matching the documented example.
        assert repo.get_campaign_score(b.id, campaign.id).composite_score == pytest.approx(70.75)
        assert repo.get_campaign_score(a.id, campaign.id).composite_score == pytest.approx(25.0)

        ranked = ranked_campaign_scores(repo, campaign.id)
        assert [r.hcp.id for r in ranked] == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_survey_only_weights(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        b = make_hcp("Ben", "Brown")
        _nominate(make_nomination, a, 3)
        _nominate(make_nomination, b, 1)
        await update_score_config(repo, campaign.id, _survey_only())

        await calculate_survey_scores(repo, campaign.id)
        await calculate_composite_scores(repo, campaign.id)
        for score in repo.list_campaign_scores(campaign.id):
            assert score.composite_score == pytest.approx(score.score_survey)

    @pytest.mark.asyncio
    async def test_no_survey_scores_is_noop(self, repo, campaign):
        result = await calculate_composite_scores(repo, campaign.id)
        assert result.processed == 0
        assert result.updated == 0

    @pytest.mark.asyncio
    async def test_missing_config(self, repo, make_campaign):
        campaign = make_campaign(with_config=False)
        with pytest.raises(NotFound):
            await calculate_composite_scores(repo, campaign.id)

    @pytest.mark.asyncio
    async def test_calculation_status(self, repo, campaign, make_hcp, make_nomination):
        a = make_hcp("Ann", "Adams")
        _nominate(make_nomination, a, 2)
        make_nomination("Someone")

        status = await get_calculation_status(repo, campaign.id)
        assert status.total_nominations == 3
        assert status.resolved_nominations == 2
        assert status.unresolved_nominations == 1
        assert status.ready_to_publish is False

        await calculate_survey_scores(repo, campaign.id)
        status = await get_calculation_status(repo, campaign.id)
        assert status.hcp_scores_calculated == 1
        assert status.composite_scores_calculated == 0
        assert status.ready_to_publish is False

        await calculate_composite_scores(repo, campaign.id)
        status = await get_calculation_status(repo, campaign.id)
        assert status.composite_scores_calculated == 1
        assert status.ready_to_publish is True


# ---------------------------------------------------------------------------
# Tests: weight configuration
# ---------------------------------------------------------------------------


class TestScoreConfig:
    @pytest.mark.asyncio
    async def test_defaults_created_on_first_access(self, repo, make_campaign):
        campaign = make_campaign(with_config=False)
        config = await get_score_config(repo, campaign.id)
        assert config.weight_clinical_trials == 15.0
        assert config.weight_survey == 25.0
        assert config.total_weight == pytest.approx(100.0)
        assert repo.get_score_config(campaign.id) is not None

    @pytest.mark.asyncio
    async def test_update_and_reset(self, repo, campaign):
        config = await update_score_config(repo, campaign.id, _survey_only())
        assert config.weight_survey == 100.0
        assert config.weight_publications == 0.0
        assert config.total_weight == pytest.approx(100.0)

        config = await reset_score_config(repo, campaign.id)
        assert config.weight_survey == 25.0
        assert config.weight_publications == 10.0

    @pytest.mark.asyncio
    async def test_weights_need_not_sum_to_100(self, repo, campaign):
        weights = {key: 50.0 for key in DEFAULT_SCORE_WEIGHTS}
        config = await update_score_config(repo, campaign.id, ScoreConfigIn(**weights))
        assert config.total_weight == pytest.approx(450.0)

    def test_weight_out_of_range(self):
        weights = dict(DEFAULT_SCORE_WEIGHTS, weight_survey=120.0)
        with pytest.raises(ValidationError):
            ScoreConfigIn(**weights)

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, repo):
        with pytest.raises(NotFound):
            await get_score_config(repo, 999)


class TestPublishedCampaignsAreFrozen:
    @pytest.mark.asyncio
    async def test_survey_recalculation_rejected(self, repo, make_campaign, make_hcp, make_nomination):
        campaign = make_campaign(status=CampaignStatus.PUBLISHED)
        make_nomination("Ann", hcp=make_hcp("Ann", "Adams"), campaign_id=campaign.id)
        with pytest.raises(InvalidState):
            await calculate_survey_scores(repo, campaign.id)
        assert repo.list_campaign_scores(campaign.id) == []

    @pytest.mark.asyncio
    async def test_composite_recalculation_rejected(self, repo, make_campaign):
        campaign = make_campaign(status=CampaignStatus.PUBLISHED)
        with pytest.raises(InvalidState):
            await calculate_composite_scores(repo, campaign.id)
