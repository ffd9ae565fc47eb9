"""Persistence interface for the nomination and scoring engine.

Every engine function takes a :class:`ScoreRepository` instead of a raw
session, so the queries the engine relies on live in one place.  The
repository never commits; transaction boundaries belong to the caller
(``session_scope``) and to :meth:`ScoreRepository.atomic` for units that
must apply all-or-nothing.
"""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import func, literal, or_, select
from sqlalchemy.orm import Session, selectinload

from kolscore.models import (
    Campaign, CampaignHcp, CompositeScoreConfig, DiseaseArea, Hcp, HcpAlias, HcpCampaignScore,
    HcpDiseaseAreaScore, Nomination, NominationType, RESOLVED_STATUSES, SurveyQuestion,
)


class ScoreRepository:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the block inside a SAVEPOINT; any exception rolls back only the block."""
        with self.session.begin_nested():
            yield

    def add(self, obj: Any) -> Any:
        self.session.add(obj)
        self.session.flush()
        return obj

    # -- nominations --------------------------------------------------------

    def get_nomination(self, nomination_id: int) -> Nomination | None:
        return self.session.get(Nomination, nomination_id)

    def _nomination_query(self, campaign_id: int, statuses: Iterable[str] | None):
        query = select(Nomination).where(Nomination.campaign_id == campaign_id)
        if statuses is not None:
            query = query.where(Nomination.match_status.in_([str(s) for s in statuses]))
        return query

    def list_nominations(
        self, campaign_id: int, statuses: Iterable[str] | None = None,
        *, offset: int = 0, limit: int | None = None,
    ) -> list[Nomination]:
        query = self._nomination_query(campaign_id, statuses).order_by(
            Nomination.match_status, Nomination.raw_name_entered, Nomination.id,
        ).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def count_nominations(self, campaign_id: int, statuses: Iterable[str] | None = None) -> int:
        query = self._nomination_query(campaign_id, statuses)
        return self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()

    def nomination_status_counts(self, campaign_id: int) -> dict[str, int]:
        rows = self.session.execute(
            select(Nomination.match_status, func.count(Nomination.id))
            .where(Nomination.campaign_id == campaign_id)
            .group_by(Nomination.match_status)
        ).all()
        return {status: count for status, count in rows}

    def resolved_nomination_counts(
        self, campaign_id: int, *, by_type: bool = True,
    ) -> list[tuple[int, str | None, int]]:
        """Count resolved nominations per HCP (and per type when ``by_type``).

        Returns ``(hcp_id, nomination_type, count)`` triples ordered by HCP id;
        the type is ``None`` when not grouping by type.
        """
        type_col = Nomination.nomination_type if by_type else None
        columns = [Nomination.matched_hcp_id]
        if type_col is not None:
            columns.append(type_col)
        query = (
            select(*columns, func.count(Nomination.id))
            .where(
                Nomination.campaign_id == campaign_id,
                Nomination.match_status.in_([s.value for s in RESOLVED_STATUSES]),
                Nomination.matched_hcp_id.is_not(None),
            )
            .group_by(*columns)
            .order_by(*columns)
        )
        rows = self.session.execute(query).all()
        if by_type:
            return [(hcp_id, ntype, count) for hcp_id, ntype, count in rows]
        return [(hcp_id, None, count) for hcp_id, count in rows]

    def campaign_nomination_types(self, campaign_id: int) -> list[NominationType]:
        """Nomination types tagged on the campaign's questions, in declaration order."""
        tags = set(self.session.execute(
            select(SurveyQuestion.nomination_type).where(
                SurveyQuestion.campaign_id == campaign_id,
                SurveyQuestion.nomination_type.is_not(None),
            ).distinct()
        ).scalars().all())
        return [t for t in NominationType if t.value in tags]

    # -- HCP registry -------------------------------------------------------

    def get_hcp(self, hcp_id: int) -> Hcp | None:
        return self.session.get(Hcp, hcp_id)

    def get_hcp_by_npi(self, npi: str) -> Hcp | None:
        return self.session.execute(select(Hcp).where(Hcp.npi == npi)).scalars().first()

    def find_hcp_candidates(self, tokens: list[str], raw_name: str, limit: int) -> list[Hcp]:
        """Candidate pool for ranking ``raw_name``, in ascending id order.

        HCPs whose full name (either order) or an alias equals, contains or is
        contained in the raw name are always included.  HCPs sharing only a
        token with it fill the rest of the pool, up to ``limit`` of them.
        """
        needle = " ".join(raw_name.lower().split())
        if not needle and not tokens:
            return []

        strong: list[Hcp] = []
        if needle:
            full = func.lower(Hcp.first_name + " " + Hcp.last_name)
            reverse = func.lower(Hcp.last_name + " " + Hcp.first_name)
            alias = func.lower(HcpAlias.alias_name)
            strong = self._hcps_where(or_(
                full == needle,
                reverse == needle,
                full.contains(needle, autoescape=True),
                literal(needle).contains(full),
                Hcp.aliases.any(or_(
                    alias.contains(needle, autoescape=True),
                    literal(needle).contains(alias),
                )),
            ))

        weak: list[Hcp] = []
        if tokens:
            conditions = []
            for token in tokens:
                conditions.append(func.lower(Hcp.first_name).contains(token, autoescape=True))
                conditions.append(func.lower(Hcp.last_name).contains(token, autoescape=True))
            weak = self._hcps_where(or_(*conditions), limit=limit)

        pool = {hcp.id: hcp for hcp in strong + weak}
        return [pool[hcp_id] for hcp_id in sorted(pool)]

    def _hcps_where(self, condition, limit: int | None = None) -> list[Hcp]:
        query = select(Hcp).where(condition).options(selectinload(Hcp.aliases)).order_by(Hcp.id)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def add_hcp(self, hcp: Hcp) -> Hcp:
        return self.add(hcp)

    def find_alias(self, hcp_id: int, alias_name: str) -> HcpAlias | None:
        return self.session.execute(
            select(HcpAlias).where(
                HcpAlias.hcp_id == hcp_id,
                func.lower(HcpAlias.alias_name) == alias_name.strip().lower(),
            )
        ).scalars().first()

    def add_alias(self, hcp: Hcp, alias_name: str, created_by: str | None = None) -> HcpAlias:
        alias = HcpAlias(alias_name=alias_name.strip(), created_by=created_by)
        hcp.aliases.append(alias)
        self.session.flush()
        return alias

    # -- campaigns ----------------------------------------------------------

    def get_campaign(self, campaign_id: int) -> Campaign | None:
        return self.session.get(Campaign, campaign_id)

    def get_disease_area(self, disease_area_id: int) -> DiseaseArea | None:
        return self.session.get(DiseaseArea, disease_area_id)

    def get_score_config(self, campaign_id: int) -> CompositeScoreConfig | None:
        return self.session.execute(
            select(CompositeScoreConfig).where(CompositeScoreConfig.campaign_id == campaign_id)
        ).scalars().first()

    def count_assigned_hcps(self, campaign_id: int) -> int:
        return self.session.execute(
            select(func.count(CampaignHcp.id)).where(CampaignHcp.campaign_id == campaign_id)
        ).scalar_one()

    def count_questions(self, campaign_id: int) -> int:
        return self.session.execute(
            select(func.count(SurveyQuestion.id)).where(SurveyQuestion.campaign_id == campaign_id)
        ).scalar_one()

    # -- campaign scores ----------------------------------------------------

    def list_campaign_scores(self, campaign_id: int) -> list[HcpCampaignScore]:
        return list(self.session.execute(
            select(HcpCampaignScore)
            .where(HcpCampaignScore.campaign_id == campaign_id)
            .order_by(HcpCampaignScore.hcp_id)
        ).scalars().all())

    def get_campaign_score(self, hcp_id: int, campaign_id: int) -> HcpCampaignScore | None:
        return self.session.execute(
            select(HcpCampaignScore).where(
                HcpCampaignScore.hcp_id == hcp_id,
                HcpCampaignScore.campaign_id == campaign_id,
            )
        ).scalars().first()

    def upsert_campaign_score(self, hcp_id: int, campaign_id: int, values: dict[str, Any]) -> HcpCampaignScore:
        row = self.get_campaign_score(hcp_id, campaign_id)
        if row is None:
            row = HcpCampaignScore(hcp_id=hcp_id, campaign_id=campaign_id)
            self.session.add(row)
        for field, value in values.items():
            setattr(row, field, value)
        self.session.flush()
        return row

    def delete_campaign_scores_except(self, campaign_id: int, keep_hcp_ids: set[int]) -> int:
        """Remove unpublished campaign score rows for HCPs no longer nominated."""
        stale = [
            row for row in self.list_campaign_scores(campaign_id)
            if row.hcp_id not in keep_hcp_ids and row.published_at is None
        ]
        for row in stale:
            self.session.delete(row)
        self.session.flush()
        return len(stale)

    # -- disease-area aggregates (SCD Type 2) -------------------------------

    def current_aggregate(self, hcp_id: int, disease_area_id: int) -> HcpDiseaseAreaScore | None:
        return self.session.execute(
            select(HcpDiseaseAreaScore).where(
                HcpDiseaseAreaScore.hcp_id == hcp_id,
                HcpDiseaseAreaScore.disease_area_id == disease_area_id,
                HcpDiseaseAreaScore.is_current.is_(True),
            )
        ).scalars().first()

    def current_aggregates(self, hcp_ids: Iterable[int], disease_area_id: int) -> dict[int, HcpDiseaseAreaScore]:
        ids = list(hcp_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(HcpDiseaseAreaScore).where(
                HcpDiseaseAreaScore.hcp_id.in_(ids),
                HcpDiseaseAreaScore.disease_area_id == disease_area_id,
                HcpDiseaseAreaScore.is_current.is_(True),
            )
        ).scalars().all()
        return {row.hcp_id: row for row in rows}

    def aggregate_history(self, hcp_id: int, disease_area_id: int) -> list[HcpDiseaseAreaScore]:
        return list(self.session.execute(
            select(HcpDiseaseAreaScore)
            .where(
                HcpDiseaseAreaScore.hcp_id == hcp_id,
                HcpDiseaseAreaScore.disease_area_id == disease_area_id,
            )
            .order_by(HcpDiseaseAreaScore.effective_from, HcpDiseaseAreaScore.id)
        ).scalars().all())

    def survey_scores_in_disease_area(
        self, hcp_id: int, disease_area_id: int, *, including_campaign_id: int,
    ) -> list[float]:
        """Survey scores of published campaigns in the disease area, plus the one being published."""
        rows = self.session.execute(
            select(HcpCampaignScore.score_survey)
            .join(Campaign, Campaign.id == HcpCampaignScore.campaign_id)
            .where(
                HcpCampaignScore.hcp_id == hcp_id,
                Campaign.disease_area_id == disease_area_id,
                HcpCampaignScore.score_survey.is_not(None),
                or_(
                    HcpCampaignScore.published_at.is_not(None),
                    HcpCampaignScore.campaign_id == including_campaign_id,
                ),
            )
            .order_by(HcpCampaignScore.campaign_id)
        ).scalars().all()
        return [float(v) for v in rows]

    def close_aggregate(self, row: HcpDiseaseAreaScore, at: datetime) -> None:
        row.is_current = False
        row.effective_to = at
        self.session.flush()

    def insert_aggregate(self, **values: Any) -> HcpDiseaseAreaScore:
        return self.add(HcpDiseaseAreaScore(is_current=True, **values))
