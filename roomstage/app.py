"""RoomStage API entrypoint.

Builds the Flask app, registers blueprints and the JSON error handlers.

    gunicorn roomstage.app:app
"""

from __future__ import annotations

import re

from flask import Flask, g
from flask_cors import CORS

from roomstage.config import config
from roomstage.db import init_db


def create_app() -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_IMAGE_BYTES * 2

    if config.ALLOWED_ORIGINS == ["*"]:
        origins = [re.compile(r".*")]
    else:
        origins = config.ALLOWED_ORIGINS

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Admin-Token"],
        expose_headers=["Content-Type"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    @app.before_request
    def _identity_default():
        g.identity_id = None

    from roomstage.routes import register_blueprints
    from roomstage.utils.error_handlers import register_error_handlers

    register_blueprints(app, print_routes=config.IS_DEV)
    register_error_handlers(app)

    for warning in config.validate():
        print(f"[CONFIG] WARNING: {warning}")
    if config.IS_DEV:
        config.log_summary()

    return app


def _bootstrap() -> Flask:
    init_db()
    return create_app()


app = _bootstrap()


if __name__ == "__main__":
    app.run(host=config.HOST, port=config.PORT)
