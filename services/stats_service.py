"""Stats Service - dashboard counts, review forecast and review streak"""
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from models.knowledge_unit import KU_STATUS_LEARNING, KU_STATUS_REVIEWING
from models.review_facet import FACET_STATUS_ACTIVE, ReviewFacet
from services.errors import ValidationError
from services.ku_store import KUStore
from services.srs_scheduler import BAND_NAMES, RESULT_PASS, band_name, is_due, utcnow

logger = logging.getLogger(__name__)

MAX_FORECAST_DAYS = 30


def get_dashboard_stats(store: KUStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Headline numbers for the dashboard.

    Returns:
        dict: {
            'learn_count': KUs still learning,
            'review_count': KUs in review,
            'due_count': active facets due now,
            'band_counts': {band name: active facets in that band},
            'total_reviews', 'passed_reviews', 'accuracy', 'current_streak'
        }
    """
    now = now or utcnow()
    facets = store.list_all_facets()
    active = [facet for facet in facets if facet.status == FACET_STATUS_ACTIVE]

    band_counts = {name: 0 for name in BAND_NAMES}
    for facet in active:
        band_counts[band_name(facet.srs_stage)] += 1

    total = passed = 0
    for facet in facets:
        for entry in facet.history or []:
            total += 1
            if entry.get('result') == RESULT_PASS:
                passed += 1

    return {
        'learn_count': store.count_knowledge_units(KU_STATUS_LEARNING),
        'review_count': store.count_knowledge_units(KU_STATUS_REVIEWING),
        'due_count': sum(1 for facet in active if is_due(facet, now)),
        'band_counts': band_counts,
        'total_reviews': total,
        'passed_reviews': passed,
        'accuracy': round(passed / total, 3) if total else None,
        'current_streak': _streak_from(facets, now),
    }


def get_review_forecast(store: KUStore, now: Optional[datetime] = None, days: int = 7) -> List[Dict[str, Any]]:
    """
    Number of active facets coming due on each of the next ``days`` days.

    Day 0 is today and also counts everything already overdue.

    Example:
        >>> get_review_forecast(store, now, days=2)
        [{'date': '2025-01-01', 'count': 5}, {'date': '2025-01-02', 'count': 1}]
    """
    if not isinstance(days, int) or not 1 <= days <= MAX_FORECAST_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_FORECAST_DAYS}", field='days')

    now = now or utcnow()
    today = now.date()
    counts: Counter = Counter()
    for facet in store.list_active_facets():
        if facet.next_review_at is None:
            continue
        offset = max((facet.next_review_at.date() - today).days, 0)
        if offset < days:
            counts[offset] += 1

    return [
        {'date': (today + timedelta(days=offset)).isoformat(), 'count': counts[offset]}
        for offset in range(days)
    ]


def _review_days(facets: List[ReviewFacet]) -> Set[date]:
    review_days = set()
    for facet in facets:
        for entry in facet.history or []:
            try:
                review_days.add(datetime.fromisoformat(entry['timestamp']).date())
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping malformed history entry on facet {facet.id}: {entry!r}")
    return review_days


def get_review_streak(store: KUStore, now: Optional[datetime] = None) -> int:
    """
    Consecutive days with at least one review, ending today.

    A streak whose last review was yesterday is still alive; it breaks once a
    whole day passes with no review.
    """
    return _streak_from(store.list_all_facets(), now or utcnow())


def _streak_from(facets: List[ReviewFacet], now: datetime) -> int:
    review_days = _review_days(facets)

    day = now.date()
    if day not in review_days:
        day -= timedelta(days=1)

    streak = 0
    while day in review_days:
        streak += 1
        day -= timedelta(days=1)
    return streak
