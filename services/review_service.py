"""
Review Service - applies review results to facets and manages facet creation.

A review is a read-modify-write on one facet: load, schedule, recompute the
owning KU's status, commit. Reviews of the same facet are serialized by a
per-facet lock in this process and by the facet's version column across
processes. Reviews of different facets never block each other.
"""

import logging
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from models.knowledge_unit import KU_STATUS_LEARNING, KU_STATUS_REVIEWING
from models.review_facet import FACET_AI_GENERATED_QUESTION, VALID_FACET_TYPES
from services.content_generator import ContentGenerator
from services.errors import ConcurrentModificationError, NotFoundError, ValidationError
from services.ku_store import KUStore
from services.locks import KeyedLockRegistry, LockUnavailable
from services.srs_scheduler import (
    REVIEWING_BAND,
    RESULT_PASS,
    band_name,
    record_result,
    stage_band,
    utcnow,
    validate_result
)

logger = logging.getLogger(__name__)


class FacetRequest(BaseModel):
    """One facet to create for a KU, with seed data shaped by its type"""
    facet_type: str
    seed_data: Optional[Dict[str, Any]] = None

    @field_validator('facet_type')
    @classmethod
    def _known_facet_type(cls, value: str) -> str:
        if value not in VALID_FACET_TYPES:
            raise ValueError(f"Invalid facet type: '{value}'. Must be one of: {VALID_FACET_TYPES}")
        return value

    @model_validator(mode='after')
    def _question_seed(self) -> 'FacetRequest':
        if self.facet_type == FACET_AI_GENERATED_QUESTION:
            seed = self.seed_data or {}
            if not seed.get('question') or not seed.get('answer'):
                raise ValueError(f"{FACET_AI_GENERATED_QUESTION} facets need seed_data with 'question' and 'answer'")
        return self


def _katakana_to_hiragana(text: str) -> str:
    # Katakana ァ (U+30A1) .. ヶ (U+30F6) sit 0x60 above their hiragana
    return ''.join(chr(ord(ch) - 0x60) if 'ァ' <= ch <= 'ヶ' else ch for ch in text)


def normalize_answer(text: str) -> str:
    """
    Normalize an answer for local comparison.

    Example:
        >>> normalize_answer('  タベル ')
        'たべる'
    """
    text = unicodedata.normalize('NFKC', text or '').strip().lower()
    return _katakana_to_hiragana(' '.join(text.split()))


class ReviewService:
    """Review submission, facet creation, due listing and answer evaluation"""

    def __init__(
        self,
        store: KUStore,
        generator: ContentGenerator,
        locks: KeyedLockRegistry,
        lock_timeout: float = 5.0
    ):
        self.store = store
        self.generator = generator
        self.locks = locks
        self.lock_timeout = lock_timeout

    def submit_result(self, facet_id: str, result: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Record a pass/fail for one facet and reschedule it.

        Args:
            facet_id: ReviewFacet id
            result: 'pass' or 'fail'
            now: review time (naive UTC), defaults to utcnow()

        Returns:
            dict: {facet_id, old_stage, new_stage, band, next_review_at}

        Raises:
            ValidationError: result is not 'pass' or 'fail'
            NotFoundError: facet does not exist
            ConcurrentModificationError: facet lock timed out or the row changed underneath
            StoreFailure: commit failed
        """
        validate_result(result)
        now = now or utcnow()

        try:
            with self.locks.hold(facet_id, blocking=True, timeout=self.lock_timeout):
                with self.store.unit_of_work(f"review of facet {facet_id}"):
                    facet = self.store.get_facet(facet_id, for_update=True)
                    if facet is None:
                        raise NotFoundError('ReviewFacet', facet_id)

                    old_stage = facet.srs_stage
                    record_result(facet, result, now)
                    self.store.save_facet(facet)
                    self._refresh_ku_status(facet.ku_id)
        except LockUnavailable:
            raise ConcurrentModificationError(
                f"Facet {facet_id} is being reviewed elsewhere",
                facet_id=facet_id
            )

        logger.info(
            f"Review {result.upper()} for facet {facet_id}: stage {old_stage} -> {facet.srs_stage} "
            f"({band_name(facet.srs_stage)}), next review {facet.next_review_at.isoformat()}"
        )
        return {
            'facet_id': facet.id,
            'old_stage': old_stage,
            'new_stage': facet.srs_stage,
            'band': band_name(facet.srs_stage),
            'next_review_at': facet.next_review_at.isoformat(),
        }

    def _refresh_ku_status(self, ku_id: str) -> None:
        """A KU is 'reviewing' while any of its facets has left the first band"""
        ku = self.store.get_ku(ku_id)
        if ku is None:
            logger.warning(f"Facet references missing KU {ku_id}; status not updated")
            return
        reviewing = any(
            stage_band(facet.srs_stage) >= REVIEWING_BAND
            for facet in self.store.list_facets_for_ku(ku_id)
        )
        status = KU_STATUS_REVIEWING if reviewing else KU_STATUS_LEARNING
        if ku.status != status:
            logger.info(f"KU {ku_id} status {ku.status} -> {status}")
            ku.status = status

    def create_facets(self, ku_id: str, requests: List[Any]) -> List[Dict[str, Any]]:
        """
        Create facets for a KU, skipping facet types it already has.

        Args:
            ku_id: KnowledgeUnit id
            requests: FacetRequest instances or dicts of the same shape

        Returns:
            list: the created facets as dicts

        Raises:
            ValidationError: empty or malformed request list
            NotFoundError: KU does not exist
        """
        if not requests:
            raise ValidationError('At least one facet request is required', field='facets')
        try:
            parsed = [r if isinstance(r, FacetRequest) else FacetRequest.model_validate(r) for r in requests]
        except ValueError as e:
            raise ValidationError(f"Invalid facet request: {e}", field='facets')

        if self.store.get_ku(ku_id) is None:
            raise NotFoundError('KnowledgeUnit', ku_id)

        created = []
        with self.store.unit_of_work(f"create facets for {ku_id}"):
            for request in parsed:
                facet, facet_created = self.store.ensure_facet(ku_id, request.facet_type, request.seed_data)
                if not facet_created:
                    logger.info(f"KU {ku_id} already has a {request.facet_type} facet, skipping")
                    continue
                created.append(facet)

        logger.info(f"Created {len(created)} facets for KU {ku_id}")
        return [facet.to_dict() for facet in created]

    def get_due_reviews(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Active facets due at ``now`` with their KU, oldest due first"""
        now = now or utcnow()
        items = []
        for facet in self.store.query_due_facets(now):
            ku = self.store.get_ku(facet.ku_id)
            if ku is None:
                logger.warning(f"Skipping orphan facet {facet.id}: KU {facet.ku_id} not found")
                continue
            items.append({'facet': facet.to_dict(), 'knowledge_unit': ku.to_dict()})
        logger.info(f"{len(items)} reviews due at {now.isoformat()}")
        return items

    def evaluate_answer(
        self,
        user_answer: str,
        expected_answers: List[str],
        question: Optional[str] = None,
        topic: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Judge a drill answer.

        Exact matches (ignoring case, surrounding whitespace and hiragana vs
        katakana) pass locally. Anything else goes to the content generator.

        Returns:
            dict: {result: 'pass'|'fail', explanation}

        Raises:
            ValidationError: empty answer or no expected answers
            GenerationFailure: the generator could not judge the answer
        """
        if not user_answer or not user_answer.strip():
            raise ValidationError('user_answer cannot be empty', field='user_answer')
        expected = [a for a in (expected_answers or []) if isinstance(a, str) and a.strip()]
        if not expected:
            raise ValidationError('expected_answers must contain at least one answer', field='expected_answers')

        normalized = normalize_answer(user_answer)
        for answer in expected:
            if normalize_answer(answer) == normalized:
                logger.info('Answer matched locally')
                return {'result': RESULT_PASS, 'explanation': f"Correct! '{answer.strip()}' is an expected answer."}

        evaluation = self.generator.evaluate_answer(user_answer.strip(), expected, question, topic)
        logger.info(f"Answer judged by generator: {evaluation.result}")
        return {'result': evaluation.result, 'explanation': evaluation.explanation}
