"""
Precast Kanban backend
Blueprint registry.
"""

from flask import request

from precast.core.exceptions import ValidationError


def json_body():
    """Request JSON as a dict; anything else is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def limit_arg(default_limit=200, max_limit=1000):
    """``?limit=`` clamped to ``max_limit``; malformed values fall back to the default."""
    try:
        limit = int(request.args.get("limit", default_limit))
    except (ValueError, TypeError):
        limit = default_limit
    return max(1, min(limit, max_limit))
