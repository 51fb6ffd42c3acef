"""
Knowledge Unit Routes - Administrative endpoints for KUs and facets.

- GET   /knowledge-units                          - List KUs (?status=, ?type=)
- POST  /knowledge-units                          - Create a KU (idempotent)
- GET   /knowledge-units/<ku_id>                  - KU with its facets
- PATCH /knowledge-units/<ku_id>                  - Update data, notes, related units
- PATCH /knowledge-units/facets/<facet_id>/status - Flag / deactivate / reactivate a facet
"""

from flask import Blueprint, jsonify, request

from routes.utils import json_body
from services import knowledge_unit_service
from services.container import get_container
from services.errors import ValidationError

bp = Blueprint('knowledge_units', __name__, url_prefix='/knowledge-units')


@bp.route('', methods=['GET'])
@bp.route('/', methods=['GET'])
def list_knowledge_units():
    units = knowledge_unit_service.list_knowledge_units(
        get_container().store,
        status=request.args.get('status'),
        ku_type=request.args.get('type')
    )
    return jsonify({'success': True, 'count': len(units), 'knowledge_units': units})


@bp.route('', methods=['POST'])
@bp.route('/', methods=['POST'])
def create_knowledge_unit():
    """
    Create a KU, or return the existing one with the same content and type.

    Request Body:
        {
            "content": "食べる",
            "type": "Vocab",
            "data": {"reading": "たべる", "definition": "to eat"},
            "personal_notes": "",   (optional)
            "related_units": []     (optional)
        }

    Returns:
        201: created
        200: already existed
    """
    data = json_body()
    content = data.get('content')
    ku_type = data.get('type')
    if not content or not ku_type:
        raise ValidationError('Missing required fields: content, type')
    if not isinstance(content, str) or not isinstance(ku_type, str):
        raise ValidationError('content and type must be strings')

    result = knowledge_unit_service.create_knowledge_unit(
        get_container().store,
        content=content,
        ku_type=ku_type,
        data=data.get('data'),
        personal_notes=data.get('personal_notes'),
        related_units=data.get('related_units')
    )
    return jsonify({'success': True, **result}), 201 if result['created'] else 200


@bp.route('/<ku_id>', methods=['GET'])
def get_knowledge_unit(ku_id):
    detail = knowledge_unit_service.get_knowledge_unit_detail(get_container().store, ku_id)
    return jsonify({'success': True, 'knowledge_unit': detail})


@bp.route('/<ku_id>', methods=['PATCH'])
def update_knowledge_unit(ku_id):
    data = json_body()
    updated = knowledge_unit_service.update_knowledge_unit(get_container().store, ku_id, data)
    return jsonify({'success': True, 'knowledge_unit': updated})


@bp.route('/facets/<facet_id>/status', methods=['PATCH'])
def update_facet_status(facet_id):
    data = json_body()
    facet = knowledge_unit_service.update_facet_status(get_container().store, facet_id, data.get('status'))
    return jsonify({'success': True, 'facet': facet})
