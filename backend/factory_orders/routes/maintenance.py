# backend/factory_orders/routes/maintenance.py
"""
Maintenance, diagnostics and audit API Routes

- GET  /api/cleanup/old-drafts            - Count drafts past the retention window
- POST /api/cleanup/old-drafts            - Purge them (scheduler key or RUN_MAINTENANCE)
- GET  /api/reports/deleted-products      - Soft-deleted products report
- GET  /api/diagnostics/margins           - Pricing self-check
- POST /api/diagnostics/margins/repair    - Seed defaults + margin repair
- GET  /api/audit                         - Audit trail

Batch endpoints answer 200 when every unit succeeded and 207 when the
report lists failures.
"""

from flask import Blueprint, jsonify, g, current_app, request

from ..errors import OrderEngineError, ValidationError
from ..services import audit_service, cleanup_service, diagnostics_service
from ..decorators import require_actor, require_actor_or_api_key, require_capability
from ..time_utils import parse_iso_date_bound
from .common import error_response, report_status


maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api")


def _int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@maintenance_bp.get("/cleanup/old-drafts")
@require_actor_or_api_key("CLEANUP_API_KEY", "scheduler")
@require_capability("RUN_MAINTENANCE")
def count_old_drafts_route():
    try:
        return jsonify(cleanup_service.count_expired_drafts(_int_arg("retention_days"))), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to count old drafts")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.post("/cleanup/old-drafts")
@require_actor_or_api_key("CLEANUP_API_KEY", "scheduler")
@require_capability("RUN_MAINTENANCE")
def cleanup_old_drafts_route():
    """
    Purge draft orders older than DRAFT_RETENTION_DAYS (or ?retention_days=N).

    Response:
        {"status": "ok", "deleted_count": 2, "deleted_orders": [...], "failures": [...], ...}
    """
    try:
        report = cleanup_service.sweep_expired_drafts(_int_arg("retention_days"))
        current_app.logger.info("Draft cleanup triggered by %s", g.actor.name or g.actor.user_id)
        return jsonify(report.to_dict()), report_status(report.status)
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clean up old drafts")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.get("/reports/deleted-products")
@require_actor
@require_capability("VIEW_DELETED_ITEMS")
def deleted_products_report_route():
    """Query: date_from, date_to (YYYY-MM-DD), deleted_by, search, page, per_page."""
    try:
        report = cleanup_service.deleted_products_report(
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            deleted_by=request.args.get("deleted_by"),
            search=request.args.get("search"),
            page=_int_arg("page", 1),
            per_page=_int_arg("per_page", 25),
        )
        return jsonify(report), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load deleted products report")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.get("/diagnostics/margins")
@require_actor
@require_capability("VIEW_DIAGNOSTICS")
def margin_diagnostics_route():
    try:
        return jsonify(diagnostics_service.run_diagnostics()), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to run margin diagnostics")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.post("/diagnostics/margins/repair")
@require_actor
@require_capability("RUN_MAINTENANCE")
def margin_repair_route():
    try:
        result = diagnostics_service.run_margin_repair(g.actor)
        return jsonify(result), report_status(result["status"])
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to repair margins")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.get("/audit")
@require_actor
@require_capability("VIEW_AUDIT_LOG")
def audit_log_route():
    """Query: target_type, target_id, action_type, actor_user_id, since, until, limit, offset."""
    try:
        try:
            since = parse_iso_date_bound(request.args.get("since"))
            until = parse_iso_date_bound(request.args.get("until"), end_of_day=True)
        except ValueError:
            raise ValidationError("since/until must be ISO dates")
        entries, total = audit_service.list_entries(
            target_type=request.args.get("target_type"),
            target_id=_int_arg("target_id"),
            action_type=request.args.get("action_type"),
            actor_user_id=_int_arg("actor_user_id"),
            since=since,
            until=until,
            limit=_int_arg("limit", 100),
            offset=_int_arg("offset", 0),
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "total": total}), 200
    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load audit log")
        return jsonify({"error": "Internal server error"}), 500
