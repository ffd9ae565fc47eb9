"""Campaign lifecycle guard.

DRAFT → ACTIVE → CLOSED → PUBLISHED, with CLOSED → ACTIVE as "reopen".
Publishing is terminal and runs composite calculation followed by
publication, in that order.
"""
from __future__ import annotations

import logging

from kolscore.errors import InvalidState, NotFound
from kolscore.models import Campaign, CampaignStatus
from kolscore.publisher import publish_scores
from kolscore.repository import ScoreRepository
from kolscore.schemas import PublishResult
from kolscore.scorer import calculate_composite_scores
from kolscore.utils import utcnow

log = logging.getLogger(__name__)


def _get_or_404(repo: ScoreRepository, campaign_id: int) -> Campaign:
    campaign = repo.get_campaign(campaign_id)
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    return campaign


def _require_status(campaign: Campaign, expected: CampaignStatus, action: str) -> None:
    if campaign.status != expected:
        raise InvalidState(f"Can only {action} {expected.lower()} campaigns")


async def activate(repo: ScoreRepository, campaign_id: int) -> Campaign:
    campaign = _get_or_404(repo, campaign_id)
    _require_status(campaign, CampaignStatus.DRAFT, "activate")
    if repo.count_assigned_hcps(campaign_id) == 0:
        raise InvalidState("Campaign must have at least one HCP")
    if repo.count_questions(campaign_id) == 0:
        raise InvalidState("Campaign must have survey questions")
    campaign.status = CampaignStatus.ACTIVE
    repo.session.flush()
    return campaign


async def close(repo: ScoreRepository, campaign_id: int) -> Campaign:
    campaign = _get_or_404(repo, campaign_id)
    _require_status(campaign, CampaignStatus.ACTIVE, "close")
    campaign.status = CampaignStatus.CLOSED
    campaign.closed_at = utcnow()
    repo.session.flush()
    return campaign


async def reopen(repo: ScoreRepository, campaign_id: int) -> Campaign:
    campaign = _get_or_404(repo, campaign_id)
    _require_status(campaign, CampaignStatus.CLOSED, "reopen")
    campaign.status = CampaignStatus.ACTIVE
    campaign.closed_at = None
    repo.session.flush()
    return campaign


async def publish(repo: ScoreRepository, campaign_id: int, published_by: str) -> PublishResult:
    """Move a closed campaign to PUBLISHED and fold its scores into the disease-area history."""
    campaign = _get_or_404(repo, campaign_id)
    _require_status(campaign, CampaignStatus.CLOSED, "publish")
    with repo.atomic():
        await calculate_composite_scores(repo, campaign_id)
        result = await publish_scores(repo, campaign_id, published_by)
        campaign.status = CampaignStatus.PUBLISHED
        campaign.published_at = utcnow()
        campaign.published_by = published_by
        repo.session.flush()
    log.info("Campaign %s published by %s (%d HCPs)", campaign_id, published_by, result.processed)
    return result
