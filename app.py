#!/usr/bin/env python3
"""
Order Buddy — Application Entry Point
Creates Flask app and registers the API Blueprint.
"""

import os
import logging

from flask import Flask

from logging_config import setup_logging

log = logging.getLogger("orderbuddy")


def create_app(testing: bool = False, run_checks: bool = True):
    """Application factory. Real servers get logging set up here; tests keep pytest's."""
    if not testing:
        setup_logging()

    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "order-buddy-dev")
    app.config["TESTING"] = testing

    # ── Persistent database init ──────────────────────────────────────────────
    from order_buddy.core.db import startup as db_startup
    result = db_startup()
    log.info("DB: %s | orders=%d customers=%d activities=%d",
             result["db_path"],
             result["stats"].get("orders", 0),
             result["stats"].get("customers", 0),
             result["stats"].get("order_activities", 0))

    from order_buddy.api.routes import bp
    app.register_blueprint(bp)

    # ── Security middleware (headers, login config warning) ──────────
    from order_buddy.core.security import init_security
    init_security(app)

    # ── Runtime self-test: catches path/schema/route bugs at boot ──────────
    if run_checks:
        from order_buddy.core.startup_checks import run_startup_checks
        with app.app_context():
            checks = run_startup_checks(app)
            if checks["failed"] > 0:
                log.error("STARTUP: %d checks FAILED, review logs", checks["failed"])

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
