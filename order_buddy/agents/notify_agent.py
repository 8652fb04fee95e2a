"""
notify_agent.py — Order confirmations & notification bell for Order Buddy

CHANNELS:
  1. Customer email: order confirmation on create
       Resend HTTP API (RESEND_API_KEY)   ← preferred
       SMTP (SMTP_HOST, SMTP_USER, ...)   ← fallback
  2. Dashboard bell: persistent SQLite notifications table, per owner

Nothing in here raises into the caller. Every send returns a result dict:
  {"ok": True, "provider": "resend", "id": "..."}
  {"ok": False, "error": "..."}                      ← provider failed
  {"ok": False, "skipped": True, "reason": "..."}    ← nothing configured

An order is never rolled back because its email or bell entry failed.
"""

import smtplib
import sqlite3
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests

from order_buddy.core.db import get_db
from order_buddy.core.secrets import get_key
from order_buddy.core.timeutil import now_utc, to_iso

log = logging.getLogger("orderbuddy.notify")

RESEND_URL = "https://api.resend.com/emails"
URGENCIES = ("info", "success", "warning", "error")


# ══════════════════════════════════════════════════════════════════════════════
# ORDER CONFIRMATION EMAIL
# ══════════════════════════════════════════════════════════════════════════════

def _confirmation_subject(order_id: str) -> str:
    return f"New Order Confirmation - {order_id}"


def _confirmation_html(customer_name: str, order_id: str, order_amount) -> str:
    amount = f"{float(order_amount or 0):,.2f}"
    return f"""<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;border:1px solid #e0e0e0;border-radius:8px">
  <div style="text-align:center;margin-bottom:30px">
    <h1 style="color:#2563eb;margin:0;font-size:28px">Order Buddy</h1>
    <p style="color:#666;margin:5px 0 0 0">Order Management System</p>
  </div>
  <h2 style="color:#333;border-bottom:2px solid #2563eb;padding-bottom:10px">Order Confirmation</h2>
  <p style="font-size:16px;color:#333">Hello <strong>{customer_name}</strong>,</p>
  <p style="font-size:16px;color:#333">Your order has been successfully created and is now being processed. Here are the details:</p>
  <table style="width:100%;border-collapse:collapse;background:#f8fafc;border-radius:8px">
    <tr><td style="padding:8px;font-weight:bold">Order ID:</td><td style="padding:8px">{order_id}</td></tr>
    <tr><td style="padding:8px;font-weight:bold">Customer Name:</td><td style="padding:8px">{customer_name}</td></tr>
    <tr><td style="padding:8px;font-weight:bold">Order Amount:</td><td style="padding:8px;font-weight:bold">{amount}</td></tr>
    <tr><td style="padding:8px;font-weight:bold">Status:</td><td style="padding:8px">PENDING</td></tr>
  </table>
  <p style="color:#999;font-size:12px;margin-top:30px;text-align:center">This is an automated message. Please do not reply to this email.</p>
</div>"""


def _confirmation_text(customer_name: str, order_id: str, order_amount) -> str:
    return (f"Hello {customer_name},\n\n"
            f"Your order {order_id} for {float(order_amount or 0):,.2f} has been created "
            f"and is now being processed.\n\nOrder Buddy")


def _send_via_resend(to: str, subject: str, html: str) -> dict:
    try:
        resp = requests.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {get_key('resend_api_key')}",
                     "Content-Type": "application/json"},
            json={"from": get_key("notify_from"), "to": [to],
                  "subject": subject, "html": html},
            timeout=15,
        )
    except requests.RequestException as e:
        log.warning("Resend request failed for %s: %s", to, e)
        return {"ok": False, "provider": "resend", "error": str(e)}
    if resp.status_code >= 400:
        log.warning("Resend rejected email to %s: HTTP %d %s", to, resp.status_code, resp.text[:200])
        return {"ok": False, "provider": "resend", "error": f"HTTP {resp.status_code}"}
    try:
        message_id = resp.json().get("id", "")
    except ValueError:
        message_id = ""
    return {"ok": True, "provider": "resend", "id": message_id}


def _send_via_smtp(to: str, subject: str, text: str, html: str) -> dict:
    host = get_key("smtp_host")
    user = get_key("smtp_user")
    msg = MIMEMultipart("alternative")
    msg["From"] = get_key("notify_from")
    msg["To"] = to
    msg["Subject"] = subject
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))
    try:
        with smtplib.SMTP(host, int(get_key("smtp_port") or 587), timeout=15) as server:
            server.starttls()
            if user:
                server.login(user, get_key("smtp_password"))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError, ValueError) as e:
        log.warning("SMTP send to %s via %s failed: %s", to, host, e)
        return {"ok": False, "provider": "smtp", "error": str(e)}
    return {"ok": True, "provider": "smtp", "to": to}


def send_order_notification(to: str, customer_name: str, order_id: str, order_amount) -> dict:
    """Email the order confirmation to the customer. Never raises."""
    if not to:
        return {"ok": False, "skipped": True, "reason": "No recipient"}
    subject = _confirmation_subject(order_id)
    html = _confirmation_html(customer_name, order_id, order_amount)

    if get_key("resend_api_key"):
        result = _send_via_resend(to, subject, html)
    elif get_key("smtp_host"):
        result = _send_via_smtp(to, subject, _confirmation_text(customer_name, order_id, order_amount), html)
    else:
        log.debug("No email provider configured, confirmation for %s not sent", order_id)
        return {"ok": False, "skipped": True,
                "reason": "Email not configured: set RESEND_API_KEY or SMTP_HOST"}

    if result["ok"]:
        log.info("Order confirmation sent: %s → %s (%s)", order_id, to, result["provider"])
    return result


# ══════════════════════════════════════════════════════════════════════════════
# DASHBOARD BELL (persistent SQLite)
# ══════════════════════════════════════════════════════════════════════════════

def push_bell(owner: str, event_type: str, title: str, body: str = "",
              urgency: str = "info", order_id: str = None, email_sent: bool = False) -> dict:
    """Add a notification to the owner's bell."""
    if urgency not in URGENCIES:
        urgency = "info"
    try:
        with get_db() as conn:
            cur = conn.execute("""
                INSERT INTO notifications
                  (user_id, created_at, event_type, urgency, title, body, order_id, is_read, email_sent)
                VALUES (?,?,?,?,?,?,?,0,?)
            """, (owner, to_iso(now_utc()), event_type, urgency, title, body,
                  order_id, 1 if email_sent else 0))
            return {"ok": True, "id": cur.lastrowid}
    except sqlite3.Error as e:
        log.warning("Bell persist failed (%s): %s", event_type, e)
        return {"ok": False, "error": str(e)}


def list_notifications(owner: str, limit: int = 30, unread_only: bool = False) -> list:
    """Owner's notifications, newest first."""
    sql = "SELECT * FROM notifications WHERE user_id=?"
    if unread_only:
        sql += " AND is_read=0"
    sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
    with get_db() as conn:
        rows = conn.execute(sql, (owner, int(limit))).fetchall()
    results = []
    for r in rows:
        n = dict(r)
        n["is_read"] = bool(n["is_read"])
        n["email_sent"] = bool(n["email_sent"])
        results.append(n)
    return results


def get_unread_count(owner: str) -> int:
    """Fast unread count for the bell badge."""
    with get_db() as conn:
        row = conn.execute("SELECT COUNT(*) AS cnt FROM notifications WHERE user_id=? AND is_read=0",
                           (owner,)).fetchone()
    return row["cnt"] if row else 0


def mark_read(owner: str, notification_id: int) -> dict:
    with get_db() as conn:
        cur = conn.execute("UPDATE notifications SET is_read=1 WHERE id=? AND user_id=?",
                           (notification_id, owner))
    if cur.rowcount == 0:
        return {"ok": False, "error": "Notification not found", "not_found": True}
    return {"ok": True}


def mark_all_read(owner: str) -> dict:
    with get_db() as conn:
        cur = conn.execute("UPDATE notifications SET is_read=1 WHERE user_id=? AND is_read=0",
                           (owner,))
    return {"ok": True, "count": cur.rowcount}


def delete_notification(owner: str, notification_id: int) -> dict:
    with get_db() as conn:
        cur = conn.execute("DELETE FROM notifications WHERE id=? AND user_id=?",
                           (notification_id, owner))
    if cur.rowcount == 0:
        return {"ok": False, "error": "Notification not found", "not_found": True}
    return {"ok": True}


# ══════════════════════════════════════════════════════════════════════════════
# AGENT STATUS
# ══════════════════════════════════════════════════════════════════════════════

def get_agent_status() -> dict:
    """Which email provider is live. Used by /api/health."""
    if get_key("resend_api_key"):
        provider = "resend"
    elif get_key("smtp_host"):
        provider = "smtp"
    else:
        provider = None
    return {
        "agent": "notify_agent",
        "email_provider": provider,
        "from": get_key("notify_from"),
    }
