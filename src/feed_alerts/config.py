# SPDX-License-Identifier: MIT
# src/feed_alerts/config.py
from dataclasses import dataclass, asdict
import os
from typing import Optional, Dict, Any

try:
    # optional; if present we load a .env automatically
    from dotenv import load_dotenv  # pip install python-dotenv
    load_dotenv(override=False)
except Exception:
    pass

DEFAULT_DB_PATH = "data/state/feed_alerts.db"

def _env_bool(name, default=False):
    v = os.getenv(name)
    if v is None: return default
    return str(v).strip().lower() in {"1","true","yes","y","on"}

@dataclass(frozen=True)
class Settings:
    # -------- General ----------
    log_level: str        = os.getenv("LOG_LEVEL", "INFO")
    db_path: str          = os.getenv("FEED_ALERTS_DB", DEFAULT_DB_PATH)
    start_monitoring: bool = _env_bool("ALERTS_START_MONITORING", True)

    # -------- History ----------
    history_limit: int    = int(os.getenv("ALERT_HISTORY_LIMIT", "1000"))

    # -------- Scheduling -------
    # IANA name; empty means the host's local zone
    default_timezone: str = os.getenv("ALERTS_TIMEZONE", "")

    # -------- Notifications ----
    max_individual_notifications: int = int(os.getenv("MAX_INDIVIDUAL_NOTIFICATIONS", "3"))
    auto_close_seconds: float = float(os.getenv("NOTIFICATION_AUTO_CLOSE_SECONDS", "5"))
    notifier_workers: int = int(os.getenv("NOTIFIER_WORKERS", "4"))
    webhook_timeout: float = float(os.getenv("WEBHOOK_TIMEOUT", "10"))

    # -------- SMTP -------------
    smtp_host: Optional[str] = os.getenv("SMTP_HOST")
    smtp_port: int        = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_from_address: str = os.getenv("SMTP_FROM_ADDRESS", "alerts@feed-alerts.local")


    # helper: convert to dict (useful for logging)
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def smtp_config(self) -> Dict[str, Any]:
        """SMTP block in the shape EmailChannel expects; empty when no host is set."""
        if not self.smtp_host:
            return {}
        return {
            "host": self.smtp_host,
            "port": self.smtp_port,
            "username": self.smtp_username,
            "password": self.smtp_password,
            "from_address": self.smtp_from_address,
        }

    @staticmethod
    def from_overrides(**kwargs) -> "Settings":
        """
        Build Settings and apply runtime overrides (e.g., parsed CLI flags).
        Only keys that match fields will be overridden.
        """
        base = Settings()
        current = base.to_dict()
        current.update({k: v for k, v in kwargs.items() if k in current and v is not None})
        # rebuild frozen dataclass with updates
        return Settings(**current)  # type: ignore[arg-type]
