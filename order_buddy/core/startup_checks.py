"""
order_buddy/core/startup_checks.py — boot-time self-test.

Checks the things that only break on a live box:

  paths     DATA_DIR exists and is writable
  schema    every table in db.TABLES is present
  secrets   at least one login; email provider status
  routes    no (rule, method) pair bound to two endpoints

Failures are logged at ERROR but never stop the boot.
"""

import sqlite3
import logging

log = logging.getLogger("orderbuddy.startup")

_COUNTER = {"PASS": "passed", "FAIL": "failed", "WARN": "warnings"}
_LOG_LEVEL = {"PASS": logging.INFO, "FAIL": logging.ERROR, "WARN": logging.WARNING}


def run_startup_checks(app=None) -> dict:
    """Run every check; pass `app` to include the route scan.

    Returns {"passed", "failed", "warnings", "details": [(status, message)]}.
    """
    report = {"passed": 0, "failed": 0, "warnings": 0, "details": []}

    def note(status, message):
        report[_COUNTER[status]] += 1
        report["details"].append((status, message))
        log.log(_LOG_LEVEL[status], "%s %s", status, message)

    # ── paths ─────────────────────────────────────────────────────────────────
    from order_buddy.core.paths import validate_paths, DATA_DIR
    paths = validate_paths()
    if paths["ok"]:
        note("PASS", f"DATA_DIR usable: {DATA_DIR}")
    for message in paths["errors"]:
        note("FAIL", message)
    for message in paths["warnings"]:
        note("WARN", message)

    # ── schema ────────────────────────────────────────────────────────────────
    from order_buddy.core import db
    try:
        absent = sorted(set(db.TABLES) - set(db.list_tables()))
    except sqlite3.Error as e:
        note("FAIL", f"Database not readable: {e}")
    else:
        if absent:
            note("FAIL", f"Missing tables: {', '.join(absent)}")
        else:
            note("PASS", f"Schema OK ({len(db.TABLES)} tables)")

    # ── secrets ───────────────────────────────────────────────────────────────
    from order_buddy.core.secrets import startup_check, get_users
    logins = get_users()
    if logins:
        note("PASS", f"{len(logins)} dashboard login(s) configured")
    else:
        note("FAIL", "No dashboard logins: set DASH_USERS or DASH_USER/DASH_PASS")
    for message in startup_check()["warnings"]:
        note("WARN", message)

    # ── routes ────────────────────────────────────────────────────────────────
    if app is not None:
        bound = {}
        rules = [r for r in app.url_map.iter_rules() if r.endpoint != "static"]
        for rule in rules:
            for method in sorted(rule.methods - {"HEAD", "OPTIONS"}):
                other = bound.setdefault((rule.rule, method), rule.endpoint)
                if other != rule.endpoint:
                    note("FAIL", f"{method} {rule.rule} bound twice: {other}, {rule.endpoint}")
        note("PASS", f"{len(rules)} routes registered")

    if report["failed"]:
        log.error("STARTUP: %d of %d checks failed", report["failed"],
                  report["passed"] + report["failed"])
    else:
        log.info("STARTUP: %d checks passed, %d warnings",
                 report["passed"], report["warnings"])
    return report
