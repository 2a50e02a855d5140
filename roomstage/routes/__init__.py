"""
Routes package for the RoomStage backend.
Contains Flask Blueprints for different API namespaces.
"""

__all__ = [
    "register_blueprints",
]


def _print_route_map(app):
    """Print all registered /api/* routes at startup for debugging."""
    api_routes = []
    for rule in app.url_map.iter_rules():
        if rule.rule.startswith("/api"):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            api_routes.append(f"  {methods:8s} {rule.rule}")

    api_routes.sort(key=lambda x: x.split()[-1])  # Sort by path

    print("[ROUTES] Registered API endpoints:")
    for route in api_routes:
        print(route)
    print(f"[ROUTES] Total: {len(api_routes)} endpoints")


def register_blueprints(app, print_routes: bool = True):
    """Register all blueprints with the Flask app."""
    from roomstage.routes.admin import bp as admin_bp
    from roomstage.routes.credits import bp as credits_bp
    from roomstage.routes.health import bp as health_bp
    from roomstage.routes.staging import bp as staging_bp
    from roomstage.routes.webhooks import bp as webhooks_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(staging_bp, url_prefix="/api/staging")
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")
    app.register_blueprint(credits_bp, url_prefix="/api/credits")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    if print_routes:
        _print_route_map(app)
