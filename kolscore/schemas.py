"""Pydantic input and result records for the nomination and scoring engine."""
from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

_NPI_RE = re.compile(r"^\d{10}$")


def is_valid_npi(value: str) -> bool:
    return bool(_NPI_RE.match(value))


class HcpBrief(BaseModel):
    id: int
    npi: str
    first_name: str
    last_name: str
    specialty: str | None = None
    city: str | None = None
    state: str | None = None
    aliases: list[str] = []


class HcpSuggestion(BaseModel):
    hcp: HcpBrief
    score: int
    match_type: str
    # True when the rule hit the canonical name rather than an alias
    is_name_match: bool


class HcpCreate(BaseModel):
    npi: str
    first_name: str
    last_name: str
    email: str | None = None
    specialty: str | None = None
    city: str | None = None
    state: str | None = None

    @field_validator("npi")
    @classmethod
    def validate_npi(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_npi(v):
            raise ValueError("NPI must be exactly 10 digits")
        return v

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        return v


class NominationOut(BaseModel):
    id: int
    campaign_id: int
    raw_name_entered: str
    nomination_type: str | None = None
    match_status: str
    matched_hcp: HcpBrief | None = None
    match_type: str | None = None
    match_confidence: float | None = None
    matched_by: str | None = None
    matched_at: datetime | None = None
    exclude_reason: str | None = None


class NominationPage(BaseModel):
    items: list[NominationOut]
    total: int
    page: int
    pages: int


class NominationStats(BaseModel):
    total: int
    by_status: dict[str, int]


class BulkMatchResult(BaseModel):
    matched: int
    total: int
    errors: list[str] = []


class CalculationResult(BaseModel):
    processed: int
    updated: int


class PublishResult(BaseModel):
    processed: int


class ImportResult(BaseModel):
    total: int
    created: int
    updated: int
    errors: list[str] = []


class CalculationStatus(BaseModel):
    total_nominations: int
    resolved_nominations: int
    unresolved_nominations: int
    hcp_scores_calculated: int
    composite_scores_calculated: int
    ready_to_publish: bool


class ScoreConfigIn(BaseModel):
    """Weight vector as 0-100 percentages; weights need not sum to 100."""
    weight_publications: float = Field(ge=0, le=100)
    weight_clinical_trials: float = Field(ge=0, le=100)
    weight_trade_pubs: float = Field(ge=0, le=100)
    weight_org_leadership: float = Field(ge=0, le=100)
    weight_org_awareness: float = Field(ge=0, le=100)
    weight_conference: float = Field(ge=0, le=100)
    weight_social_media: float = Field(ge=0, le=100)
    weight_media_podcasts: float = Field(ge=0, le=100)
    weight_survey: float = Field(ge=0, le=100)


class ScoreConfigOut(ScoreConfigIn):
    id: int
    campaign_id: int
    total_weight: float


class ObjectiveScoresIn(BaseModel):
    """Externally supplied objective dimensions; omitted fields are left untouched."""
    score_publications: float | None = Field(default=None, ge=0, le=100)
    score_clinical_trials: float | None = Field(default=None, ge=0, le=100)
    score_trade_pubs: float | None = Field(default=None, ge=0, le=100)
    score_org_leadership: float | None = Field(default=None, ge=0, le=100)
    score_org_awareness: float | None = Field(default=None, ge=0, le=100)
    score_conference: float | None = Field(default=None, ge=0, le=100)
    score_social_media: float | None = Field(default=None, ge=0, le=100)
    score_media_podcasts: float | None = Field(default=None, ge=0, le=100)


class CampaignScoreOut(BaseModel):
    hcp: HcpBrief
    score_survey: float | None = None
    composite_score: float | None = None
    nomination_count: int
    type_scores: dict[str, float] = {}
    published_at: datetime | None = None
