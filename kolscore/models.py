from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class NominationType(StrEnum):
    DISCUSSION_LEADERS = "DISCUSSION_LEADERS"
    REFERRAL_LEADERS = "REFERRAL_LEADERS"
    ADVICE_LEADERS = "ADVICE_LEADERS"
    NATIONAL_LEADER = "NATIONAL_LEADER"
    RISING_STAR = "RISING_STAR"
    SOCIAL_LEADER = "SOCIAL_LEADER"


class MatchStatus(StrEnum):
    UNMATCHED = "UNMATCHED"
    MATCHED = "MATCHED"
    NEW_HCP = "NEW_HCP"
    REVIEW_NEEDED = "REVIEW_NEEDED"
    EXCLUDED = "EXCLUDED"


class MatchType(StrEnum):
    EXACT = "exact"
    ALIAS = "alias"
    PRIMARY = "primary"
    PARTIAL = "partial"


class CampaignStatus(StrEnum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    PUBLISHED = "PUBLISHED"


RESOLVED_STATUSES = (MatchStatus.MATCHED, MatchStatus.NEW_HCP)

# nomination type -> (count column, score column) on HcpCampaignScore
NOMINATION_TYPE_FIELDS: dict[NominationType, tuple[str, str]] = {
    NominationType.DISCUSSION_LEADERS: ("count_discussion_leaders", "score_discussion_leaders"),
    NominationType.REFERRAL_LEADERS: ("count_referral_leaders", "score_referral_leaders"),
    NominationType.ADVICE_LEADERS: ("count_advice_leaders", "score_advice_leaders"),
    NominationType.NATIONAL_LEADER: ("count_national_leader", "score_national_leader"),
    NominationType.RISING_STAR: ("count_rising_star", "score_rising_star"),
    NominationType.SOCIAL_LEADER: ("count_social_leader", "score_social_leader"),
}

# (dimension key, score column on HcpDiseaseAreaScore, weight column on CompositeScoreConfig)
OBJECTIVE_DIMENSIONS: tuple[tuple[str, str, str], ...] = (
    ("publications", "score_publications", "weight_publications"),
    ("clinical_trials", "score_clinical_trials", "weight_clinical_trials"),
    ("trade_pubs", "score_trade_pubs", "weight_trade_pubs"),
    ("org_leadership", "score_org_leadership", "weight_org_leadership"),
    ("org_awareness", "score_org_awareness", "weight_org_awareness"),
    ("conference", "score_conference", "weight_conference"),
    ("social_media", "score_social_media", "weight_social_media"),
    ("media_podcasts", "score_media_podcasts", "weight_media_podcasts"),
)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


class DiseaseArea(Base):
    __tablename__ = "disease_areas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    disease_area_id: Mapped[int] = mapped_column(Integer, ForeignKey("disease_areas.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=CampaignStatus.DRAFT)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    published_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    disease_area: Mapped[DiseaseArea] = relationship("DiseaseArea")
    questions: Mapped[list[SurveyQuestion]] = relationship(
        "SurveyQuestion", back_populates="campaign", cascade="all, delete-orphan",
    )
    assigned_hcps: Mapped[list[CampaignHcp]] = relationship(
        "CampaignHcp", back_populates="campaign", cascade="all, delete-orphan",
    )
    score_config: Mapped[CompositeScoreConfig | None] = relationship(
        "CompositeScoreConfig", back_populates="campaign", uselist=False, cascade="all, delete-orphan",
    )


class CampaignHcp(Base):
    """An HCP invited to respond to a campaign's survey."""
    __tablename__ = "campaign_hcps"
    __table_args__ = (UniqueConstraint("campaign_id", "hcp_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)
    hcp_id: Mapped[int] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=False)

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="assigned_hcps")


class SurveyQuestion(Base):
    __tablename__ = "survey_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, default="")
    nomination_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="questions")


# ---------------------------------------------------------------------------
# HCP registry
# ---------------------------------------------------------------------------


class Hcp(Base):
    __tablename__ = "hcps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    npi: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    specialty: Mapped[str | None] = mapped_column(String(200), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    aliases: Mapped[list[HcpAlias]] = relationship(
        "HcpAlias", back_populates="hcp", cascade="all, delete-orphan", order_by="HcpAlias.id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class HcpAlias(Base):
    __tablename__ = "hcp_aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hcp_id: Mapped[int] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=False)
    alias_name: Mapped[str] = mapped_column(String(300), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    hcp: Mapped[Hcp] = relationship("Hcp", back_populates="aliases")


# ---------------------------------------------------------------------------
# Nominations
# ---------------------------------------------------------------------------


class Nomination(Base):
    __tablename__ = "nominations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)
    question_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("survey_questions.id"), nullable=True)
    nominator_hcp_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=True)
    raw_name_entered: Mapped[str] = mapped_column(String(300), nullable=False)
    nomination_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    match_status: Mapped[str] = mapped_column(String(20), default=MatchStatus.UNMATCHED)
    matched_hcp_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=True)
    match_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    matched_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exclude_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    matched_hcp: Mapped[Hcp | None] = relationship("Hcp", foreign_keys=[matched_hcp_id])


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class CompositeScoreConfig(Base):
    """Per-campaign weights, expressed as 0-100 percentages."""
    __tablename__ = "composite_score_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False, unique=True)
    weight_publications: Mapped[float] = mapped_column(Float, default=10.0)
    weight_clinical_trials: Mapped[float] = mapped_column(Float, default=15.0)
    weight_trade_pubs: Mapped[float] = mapped_column(Float, default=10.0)
    weight_org_leadership: Mapped[float] = mapped_column(Float, default=10.0)
    weight_org_awareness: Mapped[float] = mapped_column(Float, default=10.0)
    weight_conference: Mapped[float] = mapped_column(Float, default=10.0)
    weight_social_media: Mapped[float] = mapped_column(Float, default=5.0)
    weight_media_podcasts: Mapped[float] = mapped_column(Float, default=5.0)
    weight_survey: Mapped[float] = mapped_column(Float, default=25.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="score_config")


class HcpCampaignScore(Base):
    __tablename__ = "hcp_campaign_scores"
    __table_args__ = (UniqueConstraint("hcp_id", "campaign_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hcp_id: Mapped[int] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=False)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)

    count_discussion_leaders: Mapped[int] = mapped_column(Integer, default=0)
    score_discussion_leaders: Mapped[float | None] = mapped_column(Float, nullable=True)
    count_referral_leaders: Mapped[int] = mapped_column(Integer, default=0)
    score_referral_leaders: Mapped[float | None] = mapped_column(Float, nullable=True)
    count_advice_leaders: Mapped[int] = mapped_column(Integer, default=0)
    score_advice_leaders: Mapped[float | None] = mapped_column(Float, nullable=True)
    count_national_leader: Mapped[int] = mapped_column(Integer, default=0)
    score_national_leader: Mapped[float | None] = mapped_column(Float, nullable=True)
    count_rising_star: Mapped[int] = mapped_column(Integer, default=0)
    score_rising_star: Mapped[float | None] = mapped_column(Float, nullable=True)
    count_social_leader: Mapped[int] = mapped_column(Integer, default=0)
    score_social_leader: Mapped[float | None] = mapped_column(Float, nullable=True)

    score_survey: Mapped[float | None] = mapped_column(Float, nullable=True)
    nomination_count: Mapped[int] = mapped_column(Integer, default=0)
    composite_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    hcp: Mapped[Hcp] = relationship("Hcp")
    campaign: Mapped[Campaign] = relationship("Campaign")


class HcpDiseaseAreaScore(Base):
    """Cross-campaign aggregate per (HCP, disease area), SCD Type 2 versioned."""
    __tablename__ = "hcp_disease_area_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hcp_id: Mapped[int] = mapped_column(Integer, ForeignKey("hcps.id"), nullable=False)
    disease_area_id: Mapped[int] = mapped_column(Integer, ForeignKey("disease_areas.id"), nullable=False)

    score_publications: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_clinical_trials: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_trade_pubs: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_org_leadership: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_org_awareness: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_conference: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_social_media: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_media_podcasts: Mapped[float | None] = mapped_column(Float, nullable=True)

    score_survey: Mapped[float | None] = mapped_column(Float, nullable=True)
    composite_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_nomination_count: Mapped[int] = mapped_column(Integer, default=0)
    campaign_count: Mapped[int] = mapped_column(Integer, default=0)

    is_current: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_calculated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    hcp: Mapped[Hcp] = relationship("Hcp")
