# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/validation.py
"""
Input validation for alert rules, applied before anything reaches the stores.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Mapping, Optional
from urllib.parse import urlparse

MAX_NAME_LENGTH = 100
MAX_KEYWORDS = 20
MAX_KEYWORD_LENGTH = 50
VALID_PRIORITIES = ("low", "medium", "high", "critical")

_NAME_RX = re.compile(r"^[a-zA-Z0-9\s\-_.()]+$")
_EMAIL_RX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_KEYWORD_SPLIT_RX = re.compile(r"[,;\n\t]+")
_SCRIPT_RX = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RX = re.compile(r"<[^>]*>")
_JS_PROTO_RX = re.compile(r"javascript:", re.IGNORECASE)
_HANDLER_RX = re.compile(r"on\w+\s*=", re.IGNORECASE)

# hostname fragments a webhook may not point at
RESTRICTED_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "10.", "192.168.", "172.")


class AlertValidationError(ValueError):
    """Raised when alert input fails validation; ``errors`` maps field -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()) or "invalid alert")


@dataclass
class ValidationResult:
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult({**self.errors, **other.errors})

    def raise_if_invalid(self):
        if self.errors:
            raise AlertValidationError(self.errors)


def validate_alert_form(data: Mapping[str, Any], partial: bool = False) -> ValidationResult:
    """
    Check name, keywords and priority.

    With ``partial=True`` only the keys present in ``data`` are checked
    (used for updates).
    """
    errors: Dict[str, str] = {}

    if not partial or "name" in data:
        name = str(data.get("name") or "")
        if not name.strip():
            errors["name"] = "Alert name is required"
        elif len(name) > MAX_NAME_LENGTH:
            errors["name"] = f"Alert name is too long (maximum {MAX_NAME_LENGTH} characters)"
        elif not _NAME_RX.match(name):
            errors["name"] = "Alert name contains invalid characters"

    if not partial or "keywords" in data:
        keywords = data.get("keywords")
        if isinstance(keywords, str):
            errors["keywords"] = "Keywords must be a list"
        elif not keywords or not [k for k in keywords if isinstance(k, str) and k.strip()]:
            errors["keywords"] = "At least one keyword is required"
        elif len(keywords) > MAX_KEYWORDS:
            errors["keywords"] = f"Too many keywords (maximum {MAX_KEYWORDS})"

    priority = data.get("priority")
    if priority is not None and str(getattr(priority, "value", priority)) not in VALID_PRIORITIES:
        errors["priority"] = "Invalid priority level"

    scheduling = data.get("scheduling")
    if scheduling is not None:
        if not isinstance(scheduling, Mapping):
            errors["scheduling"] = "Scheduling must be an object"
        elif not _valid_days(scheduling.get("activeDays")):
            errors["scheduling"] = "Active days must be integers from 0 (Sunday) to 6 (Saturday)"

    return ValidationResult(errors)


def _valid_days(days: Any) -> bool:
    if days is None:
        return True
    if not isinstance(days, (list, tuple, set)):
        return False
    return all(isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6 for d in days)


def validate_webhook_url(url: Optional[str]) -> ValidationResult:
    errors: Dict[str, str] = {}
    if not url:
        return ValidationResult(errors)  # optional

    try:
        parsed = urlparse(url)
    except ValueError:
        return ValidationResult({"webhook": "Invalid webhook URL format"})

    if not parsed.scheme or not parsed.hostname:
        return ValidationResult({"webhook": "Invalid webhook URL format"})

    if parsed.scheme != "https":
        errors["webhook"] = "Webhook URL must use HTTPS protocol"

    if any(host in parsed.hostname for host in RESTRICTED_HOSTS):
        errors["webhook"] = "Webhook URL points to a restricted domain"

    return ValidationResult(errors)


def validate_email(email: Optional[str]) -> ValidationResult:
    if not email:
        return ValidationResult()  # optional
    if not _EMAIL_RX.match(email):
        return ValidationResult({"email": "Invalid email address format"})
    return ValidationResult()


def validate_complete_alert_form(data: Mapping[str, Any], partial: bool = False) -> ValidationResult:
    """Form checks plus the notification targets nested under ``notifications``."""
    notifications = data.get("notifications") or {}
    if not isinstance(notifications, Mapping):
        notifications = getattr(notifications, "__dict__", {})
    webhook = notifications.get("webhook") or data.get("webhook")
    email = notifications.get("email") or data.get("email")

    return (
        validate_alert_form(data, partial=partial)
        .merge(validate_webhook_url(webhook))
        .merge(validate_email(email))
    )


def sanitize_input(text: Optional[str]) -> str:
    """Strip markup and script vectors from free text."""
    if not text:
        return ""
    text = _SCRIPT_RX.sub("", text)
    text = _TAG_RX.sub("", text)
    text = _JS_PROTO_RX.sub("", text)
    text = _HANDLER_RX.sub("", text)
    return text.strip()


def parse_keywords(text: Optional[str]) -> List[str]:
    """Split a free-text keyword field into a clean, de-duplicated list."""
    if not text or not text.strip():
        return []

    keywords: List[str] = []
    for part in _KEYWORD_SPLIT_RX.split(text):
        keyword = part.strip().lower()
        if not keyword or len(keyword) > MAX_KEYWORD_LENGTH:
            continue
        if keyword not in keywords:
            keywords.append(keyword)
    return keywords
