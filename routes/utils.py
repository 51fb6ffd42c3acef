"""Request helpers shared by the blueprints"""

from flask import request

from services.errors import ValidationError


def json_body():
    """The request's JSON object, or ValidationError when it has none"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('No JSON data provided')
    return data
