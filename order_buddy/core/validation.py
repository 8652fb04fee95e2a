"""Input validation for orders and customers.

Runs before anything reaches the store. Each validator returns a list of
(field, reason) pairs; an empty list means the input is acceptable. The
reasons are written for the end user and are safe to return verbatim.
"""

import re
import math

from order_buddy.core.db import ORDER_STATUSES, ORDER_PRIORITIES, CURRENCIES
from order_buddy.core.timeutil import parse_timestamp

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ORDER_TEXT_FIELDS = ("customer_name", "customer_email", "customer_phone", "notes",
                     "shipping_address", "billing_address", "invoice_file_uri")
ORDER_NUMBER_FIELDS = ("order_amount", "tax_rate", "discount_amount")
ORDER_DATE_FIELDS = ("order_date", "due_date")
ORDER_ENUM_FIELDS = {"status": ORDER_STATUSES, "priority": ORDER_PRIORITIES,
                     "currency": CURRENCIES}
ORDER_WRITABLE = (ORDER_TEXT_FIELDS + ORDER_NUMBER_FIELDS + ORDER_DATE_FIELDS
                  + tuple(ORDER_ENUM_FIELDS) + ("tags",))

ORDER_DEFAULTS = {"status": "pending", "priority": "medium", "currency": "USD",
                  "tax_rate": 0, "discount_amount": 0, "tags": []}

CUSTOMER_WRITABLE = ("name", "email", "phone", "company", "address", "notes")


def _to_float(value):
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # inf/nan compare False against every bound
    return number if math.isfinite(number) else None


def _split_tags(value) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags = []
    for t in value:
        t = str(t).strip()
        if t and t not in tags:
            tags.append(t)
    return tags


def validate_order(data: dict, partial: bool = False) -> list:
    """Check order input. `partial` is for updates: absent fields are not required."""
    errors = []
    data = data or {}

    if not partial or "customer_name" in data:
        if not str(data.get("customer_name") or "").strip():
            errors.append(("customer_name", "Customer name is required"))

    if not partial or "order_amount" in data:
        amount = _to_float(data.get("order_amount"))
        if amount is None or amount <= 0:
            errors.append(("order_amount", "Order amount must be greater than 0"))

    if data.get("tax_rate") not in (None, ""):
        rate = _to_float(data.get("tax_rate"))
        if rate is None or not 0 <= rate <= 100:
            errors.append(("tax_rate", "Tax rate must be between 0 and 100"))

    if data.get("discount_amount") not in (None, ""):
        discount = _to_float(data.get("discount_amount"))
        if discount is None or discount < 0:
            errors.append(("discount_amount", "Discount cannot be negative"))

    email = str(data.get("customer_email") or "").strip()
    if email and not EMAIL_RE.match(email):
        errors.append(("customer_email", "Please enter a valid email address"))

    for field, allowed in ORDER_ENUM_FIELDS.items():
        if field in data and data[field] not in allowed:
            errors.append((field, f"{field.capitalize()} must be one of: {', '.join(allowed)}"))

    for field in ORDER_DATE_FIELDS:
        if data.get(field):
            try:
                parse_timestamp(data[field])
            except (ValueError, OverflowError):
                errors.append((field, f"{field.replace('_', ' ').capitalize()} is not a valid date"))

    tags = data.get("tags")
    if tags is not None and not isinstance(tags, (str, list, tuple)):
        errors.append(("tags", "Tags must be a list of strings"))

    return errors


def clean_order_input(data: dict, partial: bool = False) -> dict:
    """Keep only writable fields, trimmed and typed. Call after validate_order."""
    clean = {} if partial else dict(ORDER_DEFAULTS)
    for field in ORDER_WRITABLE:
        if field not in data:
            continue
        value = data[field]
        if field in ORDER_TEXT_FIELDS or field in ORDER_DATE_FIELDS:
            value = str(value).strip() if value is not None else None
            value = value or None
        elif field in ORDER_NUMBER_FIELDS:
            value = _to_float(value) if value not in (None, "") else 0.0
        elif field == "tags":
            value = _split_tags(value)
        clean[field] = value
    if clean.get("customer_email"):
        clean["customer_email"] = clean["customer_email"].lower()
    return clean


def validate_customer(data: dict, partial: bool = False) -> list:
    errors = []
    data = data or {}
    if not partial or "name" in data:
        if not str(data.get("name") or "").strip():
            errors.append(("name", "Customer name is required"))
    email = str(data.get("email") or "").strip()
    if email and not EMAIL_RE.match(email):
        errors.append(("email", "Please enter a valid email address"))
    return errors


def clean_customer_input(data: dict) -> dict:
    clean = {}
    for field in CUSTOMER_WRITABLE:
        if field in data:
            value = str(data[field]).strip() if data[field] is not None else ""
            clean[field] = value or None
    if clean.get("email"):
        clean["email"] = clean["email"].lower()
    return clean
