"""External service integrations.

Modules:
    notify_agent  — Order confirmation email (Resend / SMTP) + dashboard bell
"""
