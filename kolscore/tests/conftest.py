"""Shared fixtures: in-memory SQLite store and small factories for engine tests."""
from __future__ import annotations

import itertools

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from kolscore.models import (
    Base, Campaign, CampaignStatus, CompositeScoreConfig, DiseaseArea, Hcp, HcpAlias,
    MatchStatus, Nomination, NominationType, SurveyQuestion,
)
from kolscore.repository import ScoreRepository
from kolscore.scorer import DEFAULT_SCORE_WEIGHTS

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})

    # pysqlite defers BEGIN on its own; SAVEPOINTs need SQLAlchemy to emit it.
    @event.listens_for(eng, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def repo(session: Session) -> ScoreRepository:
    return ScoreRepository(session)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def disease_area(session: Session) -> DiseaseArea:
    area = DiseaseArea(name="Oncology")
    session.add(area)
    session.flush()
    return area


@pytest.fixture()
def make_campaign(session: Session, disease_area: DiseaseArea):
    """Build a campaign with one question per nomination type (``None`` for an untyped question)."""
    counter = itertools.count(1)

    def _make(
        types=(NominationType.DISCUSSION_LEADERS,),
        status=CampaignStatus.CLOSED,
        with_config=True,
        disease_area_id=None,
    ) -> Campaign:
        campaign = Campaign(
            name=f"Campaign {next(counter)}",
            disease_area_id=disease_area_id or disease_area.id,
            status=status,
        )
        session.add(campaign)
        session.flush()
        for i, ntype in enumerate(types):
            session.add(SurveyQuestion(
                campaign_id=campaign.id, text=f"Question {i + 1}", nomination_type=ntype, sort_order=i,
            ))
        if with_config:
            session.add(CompositeScoreConfig(campaign_id=campaign.id, **DEFAULT_SCORE_WEIGHTS))
        session.flush()
        return campaign

    return _make


@pytest.fixture()
def campaign(make_campaign) -> Campaign:
    return make_campaign()


@pytest.fixture()
def make_hcp(session: Session):
    counter = itertools.count(1)

    def _make(first_name: str, last_name: str, aliases=(), npi: str | None = None) -> Hcp:
        hcp = Hcp(
            npi=npi or str(1000000000 + next(counter)),
            first_name=first_name,
            last_name=last_name,
        )
        for alias in aliases:
            hcp.aliases.append(HcpAlias(alias_name=alias))
        session.add(hcp)
        session.flush()
        return hcp

    return _make


@pytest.fixture()
def make_nomination(session: Session, campaign: Campaign):
    """Build a nomination; passing ``hcp`` resolves it (MATCHED unless ``status`` says otherwise)."""

    def _make(
        raw_name: str,
        *,
        hcp: Hcp | None = None,
        status: MatchStatus | None = None,
        nomination_type=NominationType.DISCUSSION_LEADERS,
        campaign_id: int | None = None,
    ) -> Nomination:
        nomination = Nomination(
            campaign_id=campaign_id or campaign.id,
            raw_name_entered=raw_name,
            nomination_type=nomination_type,
        )
        if hcp is not None:
            nomination.matched_hcp = hcp
            nomination.matched_hcp_id = hcp.id
            nomination.match_status = status or MatchStatus.MATCHED
        elif status is not None:
            nomination.match_status = status
        session.add(nomination)
        session.flush()
        return nomination

    return _make
