# Overview: Shared JSON error responses for the API blueprints.

from flask import current_app, jsonify, request

from ..errors import CoreError, InvalidRequest


def error_response(exc: CoreError):
    return jsonify(exc.to_dict()), exc.http_status


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    """Parse the request body as a JSON object (empty body -> {})."""
    if not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return data


def limit_arg(default: int = 100, maximum: int = 500) -> int:
    raw = request.args.get("limit")
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRequest("limit must be an integer", details={"limit": raw})
    return max(1, min(value, maximum))
