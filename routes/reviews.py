"""
Review Routes - Endpoints for spaced repetition reviews.

- GET  /reviews/due                           - Facets due now, with their KU
- POST /reviews/facets/<facet_id>/result      - Submit pass/fail for a facet
- POST /reviews/evaluate                      - Judge a drill answer
- POST /reviews/knowledge-units/<ku_id>/facets - Create facets for a KU
"""

from flask import Blueprint, jsonify

from routes.utils import json_body
from services.container import get_container
from services.errors import ValidationError

bp = Blueprint('reviews', __name__, url_prefix='/reviews')


@bp.route('/due', methods=['GET'])
def get_due_reviews():
    reviews = get_container().reviews.get_due_reviews()
    return jsonify({'success': True, 'count': len(reviews), 'reviews': reviews})


@bp.route('/facets/<facet_id>/result', methods=['POST'])
def submit_result(facet_id):
    """
    Record a review result.

    Request Body:
        {"result": "pass"}

    Returns:
        200: {"success": true, "facet_id", "old_stage", "new_stage", "band", "next_review_at"}
        400: result is not "pass" or "fail"
        404: facet not found
        409: concurrent review of the same facet (retryable)
    """
    data = json_body()
    outcome = get_container().reviews.submit_result(facet_id, data.get('result'))
    return jsonify({'success': True, **outcome})


@bp.route('/evaluate', methods=['POST'])
def evaluate_answer():
    """
    Judge a free-text answer.

    Request Body:
        {
            "user_answer": "たべる",
            "expected_answers": ["食べる", "たべる"],
            "question": "Reading of 食べる?",   (optional)
            "topic": "食べる"   (optional)
        }
    """
    data = json_body()
    expected = data.get('expected_answers')
    if isinstance(expected, str):
        expected = [expected]
    if not isinstance(expected, list):
        raise ValidationError('expected_answers must be a list', field='expected_answers')

    evaluation = get_container().reviews.evaluate_answer(
        user_answer=data.get('user_answer'),
        expected_answers=expected,
        question=data.get('question'),
        topic=data.get('topic')
    )
    return jsonify({'success': True, **evaluation})


@bp.route('/knowledge-units/<ku_id>/facets', methods=['POST'])
def create_facets(ku_id):
    """
    Create review facets for a KU.

    Request Body:
        {"facets": [{"facet_type": "Content-to-Reading"},
                    {"facet_type": "AI-Generated-Question",
                     "seed_data": {"question": "...", "answer": "..."}}]}
    """
    data = json_body()
    requests = data.get('facets')
    if not isinstance(requests, list):
        raise ValidationError('facets must be a list', field='facets')

    created = get_container().reviews.create_facets(ku_id, requests)
    return jsonify({'success': True, 'created': created, 'count': len(created)}), 201
