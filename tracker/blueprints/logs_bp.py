"""
Activity and audit log endpoints (read-only).

    GET /api/v1/activity-logs   filter[subject_type], filter[subject_id], filter[causer_id],
                                filter[log_name], filter[description]
    GET /api/v1/audits          filter[entity_type], filter[entity_id], filter[action],
                                filter[actor_user_id]
"""

from flask import Blueprint, request

from tracker.blueprints import paginated_response, per_page
from tracker.middleware.permission_required import require_permission
from tracker.models.audit import ActivityLog, AuditLog
from tracker.services.query_builder import AllowedFilter, QueryBuilder, paginate

logs_bp = Blueprint("logs", __name__, url_prefix="/api/v1")


@logs_bp.route("/activity-logs", methods=["GET"])
@require_permission("view activity logs")
def list_activity():
    builder = QueryBuilder(
        ActivityLog, ActivityLog.query,
        filters=(
            AllowedFilter.exact("subject_type"),
            AllowedFilter.exact("subject_id"),
            AllowedFilter.exact("causer_id"),
            AllowedFilter.exact("log_name"),
            "description",
        ),
        sorts=("created_at", "description"),
        default_sort="-created_at",
    )
    items, meta = paginate(builder.apply(request.args), request.args, per_page())
    return paginated_response(items, meta)


@logs_bp.route("/audits", methods=["GET"])
@require_permission("view audits")
def list_audits():
    builder = QueryBuilder(
        AuditLog, AuditLog.query,
        filters=(
            AllowedFilter.exact("entity_type"),
            AllowedFilter.exact("entity_id"),
            AllowedFilter.exact("action"),
            AllowedFilter.exact("actor_user_id"),
        ),
        sorts=("timestamp", "entity_type", "action"),
        default_sort="-timestamp",
    )
    items, meta = paginate(builder.apply(request.args), request.args, per_page())
    return paginated_response(items, meta)
