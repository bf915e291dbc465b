"""
Configuration management for the crop-claim lifecycle engine.
-------------------------------------------------------------
- Loads environment variables from `.env` (for local) or runtime environment (AWS/Prod).
- Centralized access for database, collaborator endpoints and workflow knobs.
- Includes computed flags for collaborator mode and AWS runtime detection.
"""

import os
import json
from typing import Optional
from dotenv import load_dotenv

# Load .env only in local/dev mode
if os.getenv("ENV", "local") == "local":
    load_dotenv()


class Config:
    """Central configuration object for all service-level environment variables."""

    # =========================================================
    # 🧩 Helper
    # =========================================================
    @staticmethod
    def _from_env(key: str, default: Optional[str] = None, cast=None):
        """Load environment variable with optional casting."""
        value = os.getenv(key, default)
        if cast and value is not None:
            try:
                return cast(value)
            except ValueError:
                return default
        return value

    @staticmethod
    def _as_bool(value) -> bool:
        return str(value).lower() in ("1", "true", "yes", "on")

    # =========================================================
    # 🌐 DATABASE
    # =========================================================
    DB_URL: str = _from_env.__func__("DB_URL", "sqlite:///./cropclaim.db")
    DB_ECHO: bool = _from_env.__func__("DB_ECHO", "False", _as_bool.__func__)
    AWS_REGION: str = _from_env.__func__("AWS_REGION", "ap-south-1")

    # =========================================================
    # 🔐 SECRETS & COLLABORATORS
    # =========================================================
    JWT_SECRET: Optional[str] = _from_env.__func__("JWT_SECRET")
    COLLABORATOR_MODE: str = _from_env.__func__("COLLABORATOR_MODE", "simulated").lower()  # simulated/http
    ASSESSMENT_API_URL: Optional[str] = _from_env.__func__("ASSESSMENT_API_URL")
    ASSESSMENT_API_KEY: Optional[str] = _from_env.__func__("ASSESSMENT_API_KEY")
    ASSESSMENT_CALLBACK_URL: Optional[str] = _from_env.__func__("ASSESSMENT_CALLBACK_URL")
    PAYMENT_API_URL: Optional[str] = _from_env.__func__("PAYMENT_API_URL")
    PAYMENT_API_KEY: Optional[str] = _from_env.__func__("PAYMENT_API_KEY")

    # =========================================================
    # ⚙️ WORKFLOW SETTINGS
    # =========================================================
    ASSESSMENT_TIMEOUT_HOURS: float = _from_env.__func__("ASSESSMENT_TIMEOUT_HOURS", 24, float)
    ASSESSMENT_TIMEOUT_SECONDS: float = _from_env.__func__("ASSESSMENT_TIMEOUT_SECONDS", 10, float)
    PAYMENT_TIMEOUT_SECONDS: float = _from_env.__func__("PAYMENT_TIMEOUT_SECONDS", 15, float)
    PAYOUT_LOCK_TIMEOUT_SECONDS: int = _from_env.__func__("PAYOUT_LOCK_TIMEOUT_SECONDS", 300, int)
    DUPLICATE_INCIDENT_WINDOW_DAYS: int = _from_env.__func__("DUPLICATE_INCIDENT_WINDOW_DAYS", 7, int)
    AUTO_RELEASE_DECISIONS: bool = _from_env.__func__("AUTO_RELEASE_DECISIONS", "True", _as_bool.__func__)
    HOLD_FRAUD_SUSPECT_PAYOUTS: bool = _from_env.__func__("HOLD_FRAUD_SUSPECT_PAYOUTS", "True", _as_bool.__func__)
    LOW_CONFIDENCE_THRESHOLD: float = _from_env.__func__("LOW_CONFIDENCE_THRESHOLD", 0.5, float)

    # =========================================================
    # 🚀 APP SETTINGS
    # =========================================================
    DEBUG: bool = _from_env.__func__("DEBUG", "False", _as_bool.__func__)
    LOG_LEVEL: str = _from_env.__func__("LOG_LEVEL", "INFO").upper()
    LOG_FILE: Optional[str] = _from_env.__func__("LOG_FILE")
    API_HOST: str = _from_env.__func__("API_HOST", "0.0.0.0")
    API_PORT: int = _from_env.__func__("API_PORT", 8000, int)
    ENV: str = _from_env.__func__("ENV", "local")  # local/dev/test/prod
    ALLOWED_ORIGINS = ["*"]

    # =========================================================
    # ✅ Computed Properties
    # =========================================================
    @property
    def use_http_collaborators(self) -> bool:
        """True when assessment/payment calls go to real HTTP services."""
        return self.COLLABORATOR_MODE == "http"

    @property
    def is_local_env(self) -> bool:
        return self.ENV.lower() in ("local", "dev", "development", "test", "testing")

    @property
    def is_aws_runtime(self) -> bool:
        """Detect AWS runtime environment."""
        env_vars = ["AWS_EXECUTION_ENV", "ECS_CONTAINER_METADATA_URI", "LAMBDA_TASK_ROOT"]
        return any(os.getenv(v) for v in env_vars)

    # =========================================================
    # 📋 Config Summary
    # =========================================================
    @staticmethod
    def _redact(value: Optional[str]) -> Optional[str]:
        """Redact sensitive info for display."""
        if not value:
            return None
        if len(value) <= 6:
            return "***"
        return f"{value[:3]}***{value[-3:]}"

    def summary(self) -> dict:
        return {
            "ENV": self.ENV,
            "DEBUG": self.DEBUG,
            "DB_URL": self.DB_URL,
            "COLLABORATOR_MODE": self.COLLABORATOR_MODE,
            "ASSESSMENT_API_URL": self.ASSESSMENT_API_URL,
            "ASSESSMENT_API_KEY": self._redact(self.ASSESSMENT_API_KEY),
            "PAYMENT_API_URL": self.PAYMENT_API_URL,
            "PAYMENT_API_KEY": self._redact(self.PAYMENT_API_KEY),
            "JWT_SECRET": self._redact(self.JWT_SECRET),
            "ASSESSMENT_TIMEOUT_HOURS": self.ASSESSMENT_TIMEOUT_HOURS,
            "DUPLICATE_INCIDENT_WINDOW_DAYS": self.DUPLICATE_INCIDENT_WINDOW_DAYS,
            "AUTO_RELEASE_DECISIONS": self.AUTO_RELEASE_DECISIONS,
            "HOLD_FRAUD_SUSPECT_PAYOUTS": self.HOLD_FRAUD_SUSPECT_PAYOUTS,
            "AWS_RUNTIME": self.is_aws_runtime,
        }

    def print_summary(self) -> None:
        """Pretty-print configuration summary (safe for logs)."""
        print("\n🔧 Active Configuration:")
        print(json.dumps(self.summary(), indent=4))


# =========================================================
# Instantiate Global Config
# =========================================================
config = Config()

if __name__ == "__main__":
    config.print_summary()
