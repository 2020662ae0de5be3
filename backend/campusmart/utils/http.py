from __future__ import annotations

from flask import current_app, jsonify, request

from campusmart.services.errors import ValidationFailed


def ok(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def default_commission_percent() -> float:
    """Configured platform commission, read once per request by the caller."""
    return float(current_app.config.get("DEFAULT_COMMISSION_PERCENT", 10.0))


def parse_page_values(*, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or 1)
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        raise ValidationFailed("page and limit must be integers")
    return max(1, page), max(1, min(limit, max_limit))


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
