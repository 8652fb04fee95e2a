"""
secrets.py — Centralized secret & credential management for Order Buddy

Single source of truth for every credential the app reads from the
environment. Callers go through get_key() so a missing value is always ""
and never a KeyError.

Env vars:
  DASH_USERS               Dashboard logins, "alice:pw1,bob:pw2" (one owner per login)
  DASH_USER / DASH_PASS    Single-login fallback when DASH_USERS is unset
  RESEND_API_KEY           Resend HTTP API for order confirmation emails
  NOTIFY_FROM              Sender for confirmation emails
  SMTP_HOST / SMTP_PORT    SMTP fallback when Resend isn't configured
  SMTP_USER / SMTP_PASSWORD
  SECRET_KEY               Flask session key

Security:
  - Values are never logged in full (mask())
  - Health/startup reports show which keys are set, not their values
"""

import os
import logging

log = logging.getLogger("orderbuddy.secrets")

# ─── Known Credentials ──────────────────────────────────────────────────────

def _entry(env, desc, used_by, required=False, sensitive=False, default=""):
    return {"env": env, "desc": desc, "used_by": used_by,
            "required": required, "sensitive": sensitive, "default": default}


_REGISTRY = {
    "dash_users":     _entry("DASH_USERS", "Dashboard logins as user:pass pairs, comma separated",
                             "auth", sensitive=True),
    "dash_user":      _entry("DASH_USER", "Single dashboard username", "auth",
                             required=True, default="orderbuddy"),
    "dash_pass":      _entry("DASH_PASS", "Single dashboard password", "auth",
                             required=True, sensitive=True),
    "secret_key":     _entry("SECRET_KEY", "Flask session signing key", "app", sensitive=True),
    "resend_api_key": _entry("RESEND_API_KEY", "Resend API key for order confirmation emails",
                             "notify", sensitive=True),
    "notify_from":    _entry("NOTIFY_FROM", "From address for confirmation emails", "notify",
                             default="Order Buddy <onboarding@resend.dev>"),
    "smtp_host":      _entry("SMTP_HOST", "SMTP server (fallback when Resend is not set)", "notify"),
    "smtp_port":      _entry("SMTP_PORT", "SMTP port", "notify", default="587"),
    "smtp_user":      _entry("SMTP_USER", "SMTP login", "notify"),
    "smtp_password":  _entry("SMTP_PASSWORD", "SMTP password", "notify", sensitive=True),
}


# ─── Lookups ────────────────────────────────────────────────────────────────

def get_key(name: str) -> str:
    """Env value for registry entry `name`, its default, or ""."""
    secret = _REGISTRY.get(name)
    if secret is None:
        log.warning("get_key: %s is not a registered secret", name)
        return ""
    return os.environ.get(secret["env"]) or secret["default"]


def get_users() -> dict:
    """Dashboard logins as {username: password}.

    DASH_USERS wins when set; otherwise the single DASH_USER/DASH_PASS pair.
    """
    raw = get_key("dash_users")
    if not raw:
        user, password = get_key("dash_user"), get_key("dash_pass")
        return {user: password} if user and password else {}

    users = {}
    for pair in filter(None, (p.strip() for p in raw.split(","))):
        user, sep, password = pair.partition(":")
        if sep and user and password:
            users[user] = password
        else:
            log.warning("DASH_USERS: ignoring malformed entry %r", mask(pair))
    return users


def mask(value: str) -> str:
    """Loggable form of a credential: a short prefix plus ****."""
    if not value:
        return "(not set)"
    if len(value) > 12:
        return f"{value[:8]}****({len(value)} chars)"
    return f"{value[:4]}****"


# ─── Reports ────────────────────────────────────────────────────────────────

def validate_all() -> dict:
    """Which credentials are present, without exposing sensitive values."""
    multi_login = bool(get_key("dash_users"))
    secrets, warnings = {}, []
    for name, secret in _REGISTRY.items():
        value = get_key(name)
        if secret["sensitive"]:
            shown = "set" if value else "not set"
        else:
            shown = mask(value)
        secrets[name] = {
            "set": bool(value),
            "env": secret["env"],
            "desc": secret["desc"],
            "masked": shown,
            "required": secret["required"],
            "used_by": [secret["used_by"]],
        }
        # DASH_USERS replaces the single-login pair
        if secret["required"] and not value and not multi_login:
            warnings.append(f"Missing {secret['env']}: {secret['desc']}")

    if not (get_key("resend_api_key") or get_key("smtp_host")):
        warnings.append("No email provider configured: order confirmations will not be sent")

    configured = sum(1 for s in secrets.values() if s["set"])
    return {"secrets": secrets, "total": len(secrets), "set": configured,
            "missing": len(secrets) - configured, "warnings": warnings}


def startup_check():
    """Log a one-line credential summary plus one warning per gap."""
    report = validate_all()
    log.info("Secrets: %d/%d configured", report["set"], report["total"])
    for warning in report["warnings"]:
        log.warning("SECRET: %s", warning)
    return report
