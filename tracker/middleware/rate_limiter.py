"""
Rate limiting configuration.

The Limiter instance is created in tracker/__init__.py with no default
limits; this module applies limits to the credential-handling endpoints.

Usage:
    from tracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# endpoint -> config key holding its limit string
RATE_LIMITED_ENDPOINTS = {
    "auth.login": "LOGIN_RATE_LIMIT",
    "profile.update_password": "PASSWORD_RATE_LIMIT",
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits per remote IP.

    Limits:
        - Login:            LOGIN_RATE_LIMIT    (5 per minute)
        - Password change:  PASSWORD_RATE_LIMIT (6 per minute)
        - Health check:     exempt

    Must run after the blueprints are registered.  Rate limiting is
    disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint, config_key in RATE_LIMITED_ENDPOINTS.items():
        view = app.view_functions.get(endpoint)
        if view is None:
            logger.warning("Rate limit target %s is not registered", endpoint)
            continue
        app.view_functions[endpoint] = limiter.limit(app.config[config_key])(view)

    # Health check is exempt
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, password: %s",
        app.config["LOGIN_RATE_LIMIT"], app.config["PASSWORD_RATE_LIMIT"],
    )
