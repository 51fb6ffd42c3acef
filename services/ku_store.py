"""
KU Store - durable storage for KnowledgeUnits, ReviewFacets and Scenarios.

The store is constructed with an explicit SQLAlchemy session. Individual
methods only flush; services group them with ``unit_of_work`` which commits
or rolls back the whole group.
"""

import hashlib
import logging
import re
import unicodedata
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from models.knowledge_unit import KnowledgeUnit, KU_STATUS_LEARNING
from models.ku_data import parse_ku_data
from models.review_facet import ReviewFacet, FACET_STATUS_ACTIVE
from models.scenario import Scenario
from services.errors import ConcurrentModificationError, StoreFailure
from services.srs_scheduler import due_filter, utcnow

logger = logging.getLogger(__name__)


def normalize_content(content: str) -> str:
    return unicodedata.normalize('NFC', content or '').strip()


def make_ku_id(content: str, ku_type: str) -> str:
    """
    Deterministic KU id for a content/type pair.

    Example:
        >>> make_ku_id('食べる', 'Vocab')
        'vocab-食べる-<8 hex chars>'
    """
    normalized = normalize_content(content)
    slug = re.sub(r'[^\w]+', '-', normalized.lower()).strip('-_')[:80]
    digest = hashlib.sha1(f"{ku_type}|{normalized}".encode('utf-8')).hexdigest()[:8]
    if slug:
        return f"{ku_type.lower()}-{slug}-{digest}"
    return f"{ku_type.lower()}-{digest}"


class KUStore:
    """Data access for the tracker core, bound to one session"""

    def __init__(self, session):
        self.session = session

    @contextmanager
    def unit_of_work(self, context: str) -> Iterator[None]:
        """
        Commit everything done in the block, or roll all of it back.

        Database errors raised inside the block or by the commit are
        translated to StoreFailure / ConcurrentModificationError; any other
        exception propagates unchanged after the rollback.
        """
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise self.translate_error(e, context) from e
        except Exception:
            self.session.rollback()
            raise

    @staticmethod
    def translate_error(error: SQLAlchemyError, context: str) -> StoreFailure:
        """Map a database error raised during ``context`` to the tracker taxonomy"""
        if isinstance(error, StaleDataError):
            logger.warning(f"Concurrent modification during {context}: {error}")
            return ConcurrentModificationError(f"Concurrent modification during {context}", operation=context)
        logger.error(f"Store failure during {context}: {error}", exc_info=True)
        return StoreFailure(f"Store failure during {context}: {error}", operation=context)

    # Knowledge units

    def get_ku(self, ku_id: str) -> Optional[KnowledgeUnit]:
        return self.session.get(KnowledgeUnit, ku_id)

    def find_ku_by_content(self, content: str, ku_type: str) -> Optional[KnowledgeUnit]:
        return self.get_ku(make_ku_id(content, ku_type))

    def upsert_ku(
        self,
        content: str,
        ku_type: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Tuple[KnowledgeUnit, bool]:
        """
        Return the KU for content/type, creating it if absent.

        Existing KUs are returned unchanged; ``data`` only seeds new ones.

        Returns:
            (knowledge_unit, created)

        Raises:
            ValueError: empty content, unknown type, or malformed data
        """
        normalized = normalize_content(content)
        if not normalized:
            raise ValueError('KU content cannot be empty or whitespace')

        ku_id = make_ku_id(normalized, ku_type)
        existing = self.get_ku(ku_id)
        if existing is not None:
            logger.debug(f"upsert_ku: found existing KU {ku_id}")
            return existing, False

        typed_data = parse_ku_data(ku_type, data)
        ku = KnowledgeUnit(
            id=ku_id,
            type=ku_type,
            content=normalized,
            data=typed_data.to_json(),
            status=KU_STATUS_LEARNING,
            facet_count=0,
            personal_notes='',
            related_units=[],
        )
        try:
            with self.session.begin_nested():
                self.session.add(ku)
        except IntegrityError:
            # Another writer committed the same KU after our lookup
            existing = self.get_ku(ku_id)
            if existing is None:
                raise
            logger.info(f"upsert_ku: KU {ku_id} was created concurrently, using it")
            return existing, False

        logger.info(f"Created KU {ku_id} ({ku_type}) for '{normalized}'")
        return ku, True

    def list_knowledge_units(self, status: Optional[str] = None, ku_type: Optional[str] = None) -> List[KnowledgeUnit]:
        query = self.session.query(KnowledgeUnit)
        if status:
            query = query.filter(KnowledgeUnit.status == status)
        if ku_type:
            query = query.filter(KnowledgeUnit.type == ku_type)
        return query.order_by(KnowledgeUnit.created_at.desc()).all()

    def count_knowledge_units(self, status: str) -> int:
        return self.session.query(func.count(KnowledgeUnit.id)).filter(KnowledgeUnit.status == status).scalar()

    # Review facets

    def create_facet(self, ku_id: str, facet_type: str, seed_data: Optional[Dict[str, Any]] = None) -> ReviewFacet:
        """Facet of ``facet_type`` for the KU; see ensure_facet"""
        facet, _ = self.ensure_facet(ku_id, facet_type, seed_data)
        return facet

    def ensure_facet(
        self,
        ku_id: str,
        facet_type: str,
        seed_data: Optional[Dict[str, Any]] = None
    ) -> Tuple[ReviewFacet, bool]:
        """
        Return the KU's facet of ``facet_type``, creating it if absent.

        A new facet starts at stage 0, due immediately, and increments the
        KU's facet_count. A facet of the same type inserted by another writer
        in the meantime is returned instead.

        Returns:
            (facet, created)

        Raises:
            ValueError: KU does not exist or facet type is invalid
        """
        existing = self.find_facet(ku_id, facet_type)
        if existing is not None:
            return existing, False

        ku = self.get_ku(ku_id)
        if ku is None:
            raise ValueError(f"Knowledge Unit {ku_id} does not exist")

        now = utcnow()
        facet = ReviewFacet(
            ku_id=ku_id,
            facet_type=facet_type,
            srs_stage=0,
            next_review_at=now,
            history=[],
            status=FACET_STATUS_ACTIVE,
            seed_data=seed_data,
            created_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(facet)
        except IntegrityError:
            # uq_facet_ku_type: another writer created this facet after our lookup
            existing = self.find_facet(ku_id, facet_type)
            if existing is None:
                raise
            logger.info(f"Facet {facet_type} for KU {ku_id} was created concurrently, using it")
            return existing, False

        ku.facet_count = (ku.facet_count or 0) + 1
        self.session.flush()
        logger.info(f"Created facet {facet.id} ({facet_type}) for KU {ku_id}, facet_count={ku.facet_count}")
        return facet, True

    def get_facet(self, facet_id: str, for_update: bool = False) -> Optional[ReviewFacet]:
        if for_update:
            return (
                self.session.query(ReviewFacet)
                .filter(ReviewFacet.id == facet_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        return self.session.get(ReviewFacet, facet_id)

    def find_facet(self, ku_id: str, facet_type: str) -> Optional[ReviewFacet]:
        return self.session.query(ReviewFacet).filter_by(ku_id=ku_id, facet_type=facet_type).first()

    def list_facets_for_ku(self, ku_id: str) -> List[ReviewFacet]:
        return (
            self.session.query(ReviewFacet)
            .filter(ReviewFacet.ku_id == ku_id)
            .order_by(ReviewFacet.created_at)
            .all()
        )

    def save_facet(self, facet: ReviewFacet) -> None:
        self.session.add(facet)
        self.session.flush()

    def query_due_facets(self, now: datetime) -> List[ReviewFacet]:
        """Active facets due at ``now``, oldest due first"""
        return (
            self.session.query(ReviewFacet)
            .filter(ReviewFacet.status == FACET_STATUS_ACTIVE)
            .filter(due_filter(now))
            .order_by(ReviewFacet.next_review_at.asc())
            .all()
        )

    def list_active_facets(self) -> List[ReviewFacet]:
        return self.session.query(ReviewFacet).filter(ReviewFacet.status == FACET_STATUS_ACTIVE).all()

    def list_all_facets(self) -> List[ReviewFacet]:
        return self.session.query(ReviewFacet).all()

    # Scenarios

    def get_scenario(self, scenario_id: str) -> Optional[Scenario]:
        return self.session.get(Scenario, scenario_id, populate_existing=True)

    def save_scenario(self, scenario: Scenario) -> None:
        self.session.add(scenario)
        self.session.flush()

    def list_scenarios(self, limit_days: Optional[int] = None) -> List[Scenario]:
        query = self.session.query(Scenario)
        if limit_days:
            query = query.filter(Scenario.created_at > utcnow() - timedelta(days=limit_days))
        return query.order_by(Scenario.created_at.desc()).all()
