"""
Scenario Routes - Endpoints for the scenario learning flow.

- GET  /scenarios                     - List scenarios (newest first)
- GET  /scenarios/templates           - Built-in scenario templates
- POST /scenarios/generate            - Generate a new scenario
- GET  /scenarios/<id>                - Scenario detail
- POST /scenarios/<id>/advance        - encounter -> drill
- POST /scenarios/<id>/drill/complete - drill -> simulate
- POST /scenarios/<id>/chat           - One roleplay turn
- POST /scenarios/<id>/end            - End the roleplay and evaluate it
- POST /scenarios/<id>/retry          - Start a fresh run of a completed scenario

Errors are rendered by the app-level TrackerError handler.
"""

from flask import Blueprint, jsonify, request

from routes.utils import json_body
from services.container import get_container
from services.errors import ValidationError

bp = Blueprint('scenarios', __name__, url_prefix='/scenarios')


@bp.route('', methods=['GET'])
@bp.route('/', methods=['GET'])
def list_scenarios():
    """
    List scenarios.

    Query Parameters:
        limit_days (int, optional): only scenarios created in the last N days
    """
    limit_days = request.args.get('limit_days', type=int)
    if limit_days is not None and limit_days <= 0:
        raise ValidationError('limit_days must be a positive integer', field='limit_days')

    scenarios = get_container().scenarios.list_scenarios(limit_days=limit_days)
    return jsonify({
        'success': True,
        'scenarios': [scenario.to_dict() for scenario in scenarios],
    })


@bp.route('/templates', methods=['GET'])
def list_templates():
    return jsonify({'success': True, 'templates': get_container().scenarios.get_templates()})


@bp.route('/generate', methods=['POST'])
def generate_scenario():
    """
    Generate a new scenario.

    Request Body:
        {
            "difficulty": "N5",
            "theme": "Buying a train ticket",   (optional)
            "template_id": "core-ordering-coffee"   (optional)
        }

    Returns:
        201: {"success": true, "scenario": {...}}
        400: invalid difficulty
        404: unknown template
        502: content generation failed (retryable)
    """
    data = json_body()
    difficulty = data.get('difficulty')
    if not difficulty:
        raise ValidationError('Missing required field: difficulty', field='difficulty')

    scenario = get_container().scenarios.create_scenario(
        difficulty=difficulty,
        theme=data.get('theme'),
        template_id=data.get('template_id')
    )
    return jsonify({'success': True, 'scenario': scenario.to_dict()}), 201


@bp.route('/<scenario_id>', methods=['GET'])
def get_scenario(scenario_id):
    scenario = get_container().scenarios.get_scenario(scenario_id)
    return jsonify({'success': True, 'scenario': scenario.to_dict()})


@bp.route('/<scenario_id>/advance', methods=['POST'])
def advance(scenario_id):
    scenario = get_container().scenarios.advance(scenario_id)
    return jsonify({'success': True, 'scenario': scenario.to_dict()})


@bp.route('/<scenario_id>/drill/complete', methods=['POST'])
def complete_drill(scenario_id):
    scenario = get_container().scenarios.complete_drill(scenario_id)
    return jsonify({'success': True, 'scenario': scenario.to_dict()})


@bp.route('/<scenario_id>/chat', methods=['POST'])
def chat(scenario_id):
    """
    Send one learner message.

    Request Body:
        {"user_message": "コーヒーをください"}

    Returns:
        200: {"success": true, "scenario": {...}, "reply": {...}}
    """
    data = json_body()
    user_message = data.get('user_message')
    if not isinstance(user_message, str):
        raise ValidationError('Missing required field: user_message', field='user_message')

    scenario = get_container().scenarios.chat_turn(scenario_id, user_message)
    return jsonify({
        'success': True,
        'scenario': scenario.to_dict(),
        'reply': scenario.chat_history[-1] if scenario.chat_history else None,
    })


@bp.route('/<scenario_id>/end', methods=['POST'])
def end_simulation(scenario_id):
    scenario = get_container().scenarios.end_simulation(scenario_id)
    return jsonify({'success': True, 'scenario': scenario.to_dict()})


@bp.route('/<scenario_id>/retry', methods=['POST'])
def retry(scenario_id):
    scenario = get_container().scenarios.retry(scenario_id)
    return jsonify({'success': True, 'scenario': scenario.to_dict()}), 201
