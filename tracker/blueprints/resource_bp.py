"""
Resource blueprint factory — the CRUD surface every tracked resource shares.

Endpoints (per resource, prefix /api/v1/<url>):
    GET     /                 index   (filter[...], sort, page)
    POST    /                 store
    GET     /summary          aggregate counts
    GET     /form-options     lookup lists for create/edit forms
    GET     /<key>            show    (children + audit trail)
    PUT     /<key>            update
    PATCH   /<key>            update
    DELETE  /<key>            destroy

Systems are addressed by slug, everything else by numeric id.
"""

from flask import Blueprint, request

from tracker.blueprints import current_user_id, paginated_response, per_page, request_data
from tracker.middleware.permission_required import require_any_permission, require_permission
from tracker.services.resource_service import ResourceService
from tracker.utils.errors import api_success


def make_resource_blueprint(service: ResourceService, name: str, url: str) -> Blueprint:
    bp = Blueprint(name, __name__, url_prefix=f"/api/v1{url}")
    subject = service.permission

    @bp.route("", methods=["GET"])
    @require_permission(f"view {subject}")
    def index():
        items, meta = service.index(request.args, per_page())
        return paginated_response(items, meta)

    @bp.route("", methods=["POST"])
    @require_permission(f"create {subject}")
    def store():
        instance = service.create(request_data(), user_id=current_user_id())
        instance = service.get(getattr(instance, service.lookup))
        return api_success(instance.to_dict(), f"{service.title} created successfully.", status=201)

    @bp.route("/summary", methods=["GET"])
    @require_permission(f"view {subject}")
    def summary():
        return api_success(service.get_summary())

    @bp.route("/form-options", methods=["GET"])
    # Lookups serve both the create and the edit form
    @require_any_permission(f"create {subject}", f"edit {subject}")
    def form_options():
        return api_success(service.get_form_options())

    @bp.route("/<key>", methods=["GET"])
    @require_permission(f"view {subject}")
    def show(key):
        instance = service.get(key)
        data = instance.to_dict(include_children=True)
        data["audits"] = service.audits(instance)
        return api_success(data)

    @bp.route("/<key>", methods=["PUT", "PATCH"])
    @require_permission(f"edit {subject}")
    def update(key):
        instance = service.update(service.get(key), request_data(), user_id=current_user_id())
        return api_success(instance.to_dict(), f"{service.title} updated successfully.")

    @bp.route("/<key>", methods=["DELETE"])
    @require_permission(f"delete {subject}")
    def destroy(key):
        service.delete(service.get(key), user_id=current_user_id())
        return api_success(None, f"{service.title} deleted successfully.")

    return bp
