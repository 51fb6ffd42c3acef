"""
Spaced repetition scheduler for ReviewFacets.

Stages run 0 (new) to 8 (mastered). Stages are grouped into five mastery
bands for display and KU status only; intervals are keyed by stage.

    stage   band  name
    0-3     0     Sumi-suri
    4-5     1     Kaisho
    6       2     Gyosho
    7       3     Sosho
    8       4     Mushin

Pass moves up one stage (capped at 8). Fail drops the facet to the first
stage of the band below its current band, or to 0 from band 0:

    8 -> 7, 7 -> 6, 6 -> 4, 4/5 -> 0, 0-3 -> 0

In both cases the next review is ``now + interval(new_stage)``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from services.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_STAGE = 0
MAX_STAGE = 8

RESULT_PASS = 'pass'
RESULT_FAIL = 'fail'
VALID_RESULTS = (RESULT_PASS, RESULT_FAIL)

# Review intervals in hours, roughly doubling-to-tripling per stage
INTERVALS_HOURS = {
    0: 10 / 60,  # 10 minutes
    1: 8,
    2: 24,  # 1 day
    3: 72,  # 3 days
    4: 168,  # 1 week
    5: 336,  # 2 weeks
    6: 730,  # ~1 month
    7: 2920,  # ~4 months
    8: 5840,  # ~8 months
}

BAND_NAMES = ['Sumi-suri', 'Kaisho', 'Gyosho', 'Sosho', 'Mushin']

# First stage of each band
BAND_STARTS = [0, 4, 6, 7, 8]

# Facets at or above this band mark their KU as "reviewing"
REVIEWING_BAND = 1


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _validate_stage(stage: int) -> int:
    if not isinstance(stage, int) or isinstance(stage, bool) or not MIN_STAGE <= stage <= MAX_STAGE:
        raise ValidationError(f"SRS stage must be an integer between {MIN_STAGE} and {MAX_STAGE}, got: {stage!r}")
    return stage


def stage_band(stage: int) -> int:
    """Band index (0-4) for a stage"""
    _validate_stage(stage)
    if stage >= 8:
        return 4
    if stage == 7:
        return 3
    if stage == 6:
        return 2
    if stage >= 4:
        return 1
    return 0


def band_name(stage: int) -> str:
    return BAND_NAMES[stage_band(stage)]


def band_start(band: int) -> int:
    return BAND_STARTS[band]


def interval_for_stage(stage: int) -> timedelta:
    return timedelta(hours=INTERVALS_HOURS[_validate_stage(stage)])


def next_stage(current_stage: int, result: str) -> int:
    """
    Stage after a review result.

    Raises:
        ValidationError: result is not exactly 'pass' or 'fail', or stage out of range
    """
    validate_result(result)
    _validate_stage(current_stage)

    if result == RESULT_PASS:
        return min(current_stage + 1, MAX_STAGE)

    band = stage_band(current_stage)
    if band == 0:
        return MIN_STAGE
    return band_start(band - 1)


def validate_result(result) -> str:
    if not isinstance(result, str) or result not in VALID_RESULTS:
        raise ValidationError(f"result must be one of {list(VALID_RESULTS)}, got: {result!r}", field='result')
    return result


def record_result(facet, result: str, now: Optional[datetime] = None):
    """
    Apply a review result to a facet.

    Sets srs_stage, next_review_at and last_review_at and appends one history
    entry. The returned facet is authoritative.

    Args:
        facet: object with srs_stage, next_review_at, last_review_at, history
        result: 'pass' or 'fail'
        now: review time (naive UTC); defaults to utcnow()

    Returns:
        The updated facet

    Raises:
        ValidationError: invalid result literal or corrupt stage

    Example:
        >>> facet.srs_stage = 3
        >>> record_result(facet, 'pass', now).srs_stage
        4
    """
    now = now or utcnow()
    old_stage = facet.srs_stage or 0
    new_stage = next_stage(old_stage, result)

    facet.srs_stage = new_stage
    facet.next_review_at = now + interval_for_stage(new_stage)
    facet.last_review_at = now
    # Reassign so JSON column changes are detected
    facet.history = list(facet.history or []) + [{
        'timestamp': now.isoformat(),
        'result': result,
        'stage': new_stage,
    }]

    logger.debug(f"SRS {result.upper()}: stage {old_stage} -> {new_stage}, next review {facet.next_review_at}")
    return facet


def review_time_reached(next_review_at, now):
    """
    The due predicate. Works on plain datetimes and on the
    ReviewFacet.next_review_at column alike.
    """
    return next_review_at <= now


def is_due(facet, now: Optional[datetime] = None) -> bool:
    """A facet is due once its next review time has been reached"""
    now = now or utcnow()
    return facet.next_review_at is not None and review_time_reached(facet.next_review_at, now)


def due_filter(now: datetime):
    """SQL form of is_due for ReviewFacet queries"""
    from models.review_facet import ReviewFacet

    return review_time_reached(ReviewFacet.next_review_at, now)
