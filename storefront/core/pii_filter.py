"""Storefront Billing – PII masking for log output.

Checkout sessions carry the buyer's e-mail and name. ``filter_log_record`` is
installed as a structlog processor so neither reaches the rendered log line.
"""

import re
from typing import Any

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")

# Values under these keys are masked whatever they contain.
SENSITIVE_KEYS = frozenset({"email", "customer_email", "customer_name", "name"})

# Structural keys that never hold user text.
_SKIP_KEYS = frozenset({"event", "timestamp", "level"})


def mask_email(address: str) -> str:
    """maria.silva@example.com.br → m****@e****.br"""
    local, _, domain = address.partition("@")
    host, _, tld = domain.rpartition(".")
    return f"{local[:1]}****@{host[:1]}****.{tld or 'com'}"


def mask_text(text: str) -> str:
    return EMAIL_PATTERN.sub(lambda m: mask_email(m.group(0)), text)


def mask_value(value: str) -> str:
    if EMAIL_PATTERN.search(value):
        return mask_text(value)
    return value[:1] + "****" if value else value


def filter_log_record(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask PII in the string values of the event dict."""
    for key, value in event_dict.items():
        if key in _SKIP_KEYS or not isinstance(value, str):
            continue
        event_dict[key] = mask_value(value) if key in SENSITIVE_KEYS else mask_text(value)
    return event_dict
