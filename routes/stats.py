from flask import Blueprint, jsonify, request

from services import stats_service
from services.container import get_container

bp = Blueprint('stats', __name__, url_prefix='/stats')


@bp.route('/dashboard', methods=['GET'])
def dashboard():
    stats = stats_service.get_dashboard_stats(get_container().store)
    return jsonify({'success': True, **stats})


@bp.route('/forecast', methods=['GET'])
def forecast():
    days = request.args.get('days', default=7, type=int)
    return jsonify({
        'success': True,
        'forecast': stats_service.get_review_forecast(get_container().store, days=days),
    })
