"""
Systems Tracker
Blueprint registry.
"""

from flask import current_app, g, jsonify, request


def request_data() -> dict:
    """Request payload as a dict, from a JSON object or a form-encoded body.

    Form keys written as ``roles[]`` and repeated keys become lists; any other
    form field keeps its single value.
    """
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    payload = {}
    for key, values in request.form.to_dict(flat=False).items():
        if key.endswith("[]"):
            payload[key[:-2]] = values
        else:
            payload[key] = values[0] if len(values) == 1 else values
    return payload


def current_user_id() -> int | None:
    return getattr(g, "jwt_user_id", None)


def per_page(key: str = "PER_PAGE") -> int:
    return int(current_app.config.get(key, 10))


def paginated_response(items, meta: dict, serialize=None):
    """``{"data": [...], "meta": {...}}`` for one page of results."""
    serialize = serialize or (lambda item: item.to_dict())
    return jsonify({"data": [serialize(i) for i in items], "meta": meta}), 200


def register_blueprints(app):
    from tracker.blueprints.auth_bp import auth_bp
    from tracker.blueprints.health_bp import health_bp
    from tracker.blueprints.logs_bp import logs_bp
    from tracker.blueprints.profile_bp import profile_bp
    from tracker.blueprints.resource_bp import make_resource_blueprint
    from tracker.blueprints.user_roles_bp import user_roles_bp
    from tracker.blueprints.users_bp import users_bp
    from tracker.services.hierarchy_service import (
        correspondences,
        functions_requirements,
        processes,
        systems,
        tasks_tracking,
    )
    from tracker.services.task_service import tasks

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(user_roles_bp)
    app.register_blueprint(logs_bp)

    app.register_blueprint(make_resource_blueprint(systems, "systems", "/systems"))
    app.register_blueprint(make_resource_blueprint(processes, "processes", "/processes"))
    app.register_blueprint(
        make_resource_blueprint(functions_requirements, "functions_requirements", "/functions-requirements")
    )
    app.register_blueprint(make_resource_blueprint(tasks_tracking, "tasks_tracking", "/tasks-tracking"))
    app.register_blueprint(make_resource_blueprint(correspondences, "correspondences", "/correspondences"))
    app.register_blueprint(make_resource_blueprint(tasks, "tasks", "/tasks"))
