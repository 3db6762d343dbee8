# Overview: Shared helpers for route modules; error-to-response mapping and body parsing.

from flask import jsonify, request

from ..errors import (
    ConfigurationMissing,
    IntegrityFault,
    Locked,
    NotFoundError,
    OrderEngineError,
    PermissionDeniedError,
    PreconditionFailed,
    ValidationError,
)


STATUS_BY_ERROR = (
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (PreconditionFailed, 409),
    (Locked, 423),
    (IntegrityFault, 500),
    (ConfigurationMissing, 503),
)


def error_response(exc: OrderEngineError):
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return jsonify(exc.to_dict()), status
    return jsonify(exc.to_dict()), 400


def report_status(status: str) -> int:
    """HTTP code for a batch report: 200 when clean, 207 otherwise."""
    return 200 if status == "ok" else 207


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
