"""Knowledge Unit Service - administrative operations on KUs and their facets"""
import logging
from typing import Any, Dict, List, Optional

from models.knowledge_unit import KnowledgeUnit, KU_STATUS_LEARNING, KU_STATUS_REVIEWING
from models.ku_data import VALID_KU_TYPES, parse_ku_data
from models.review_facet import VALID_FACET_STATUSES
from services.errors import NotFoundError, ValidationError
from services.ku_store import KUStore

logger = logging.getLogger(__name__)

VALID_KU_STATUSES = [KU_STATUS_LEARNING, KU_STATUS_REVIEWING]
IMMUTABLE_KU_FIELDS = ('content', 'type')
MUTABLE_KU_FIELDS = ('data', 'personal_notes', 'related_units')


def _validate_related_units(related_units: Any) -> List[str]:
    if not isinstance(related_units, list) or not all(isinstance(r, str) for r in related_units):
        raise ValidationError('related_units must be a list of KU ids', field='related_units')
    return related_units


def create_knowledge_unit(
    store: KUStore,
    content: str,
    ku_type: str,
    data: Optional[Dict[str, Any]] = None,
    personal_notes: Optional[str] = None,
    related_units: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Create a KU, or return the existing one for the same content and type.

    Notes and related units are only applied to a newly created KU.

    Returns:
        dict: {'knowledge_unit': ..., 'created': bool}

    Raises:
        ValidationError: empty content, unknown type or malformed data
    """
    if not isinstance(content, str) or not content.strip():
        raise ValidationError('content must be a non-empty string', field='content')
    if ku_type not in VALID_KU_TYPES:
        raise ValidationError(f"type must be one of {VALID_KU_TYPES}, got: {ku_type!r}", field='type')
    if related_units is not None:
        _validate_related_units(related_units)

    try:
        with store.unit_of_work(f"create KU '{content}'"):
            ku, created = store.upsert_ku(content, ku_type, data)
            if created:
                if personal_notes:
                    ku.personal_notes = personal_notes
                if related_units:
                    ku.related_units = list(related_units)
    except ValueError as e:
        raise ValidationError(f"Invalid knowledge unit: {e}")

    return {'knowledge_unit': ku.to_dict(), 'created': created}


def update_knowledge_unit(store: KUStore, ku_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update the mutable parts of a KU.

    Args:
        changes: any of 'data', 'personal_notes', 'related_units'

    content and type never change; including either raises ValidationError.
    ``data`` is merged over the existing attributes and revalidated.
    """
    for field in IMMUTABLE_KU_FIELDS:
        if field in changes:
            raise ValidationError(f"KU {field} is immutable", field=field)
    unknown = set(changes) - set(MUTABLE_KU_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {sorted(unknown)}")

    data = changes.get('data')
    personal_notes = changes.get('personal_notes')
    related_units = changes.get('related_units')

    ku = store.get_ku(ku_id)
    if ku is None:
        raise NotFoundError('KnowledgeUnit', ku_id)

    if data is not None and not isinstance(data, dict):
        raise ValidationError('data must be an object', field='data')
    if related_units is not None:
        _validate_related_units(related_units)

    try:
        with store.unit_of_work(f"update KU {ku_id}"):
            if data is not None:
                merged = {**(ku.data or {}), **data}
                ku.data = parse_ku_data(ku.type, merged).to_json()
            if personal_notes is not None:
                ku.personal_notes = personal_notes
            if related_units is not None:
                ku.related_units = list(related_units)
    except ValueError as e:
        raise ValidationError(f"Invalid data for {ku.type}: {e}", field='data')

    logger.info(f"Updated KU {ku_id}")
    return ku.to_dict()


def list_knowledge_units(
    store: KUStore,
    status: Optional[str] = None,
    ku_type: Optional[str] = None
) -> List[Dict[str, Any]]:
    if status and status not in VALID_KU_STATUSES:
        raise ValidationError(f"status must be one of {VALID_KU_STATUSES}", field='status')
    if ku_type and ku_type not in VALID_KU_TYPES:
        raise ValidationError(f"type must be one of {VALID_KU_TYPES}", field='type')
    return [ku.to_dict() for ku in store.list_knowledge_units(status=status, ku_type=ku_type)]


def get_knowledge_unit_detail(store: KUStore, ku_id: str) -> Dict[str, Any]:
    ku: Optional[KnowledgeUnit] = store.get_ku(ku_id)
    if ku is None:
        raise NotFoundError('KnowledgeUnit', ku_id)
    detail = ku.to_dict()
    detail['facets'] = [facet.to_dict() for facet in store.list_facets_for_ku(ku_id)]
    return detail


def update_facet_status(store: KUStore, facet_id: str, status: str) -> Dict[str, Any]:
    """
    Flag, deactivate or reactivate a facet.

    Only 'active' facets are offered for review.
    """
    if status not in VALID_FACET_STATUSES:
        raise ValidationError(f"status must be one of {VALID_FACET_STATUSES}, got: {status!r}", field='status')

    facet = store.get_facet(facet_id)
    if facet is None:
        raise NotFoundError('ReviewFacet', facet_id)

    old_status = facet.status
    with store.unit_of_work(f"update status of facet {facet_id}"):
        facet.status = status
        store.save_facet(facet)

    logger.info(f"Facet {facet_id} status {old_status} -> {status}")
    return facet.to_dict()
