from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


APP_NAME = os.getenv("APP_NAME", "JournEatz")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./journeatz.db")

SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 14)))  # 14 days

# Sign-up throttling, per email address
SIGNUP_RATE_LIMIT = int(os.getenv("SIGNUP_RATE_LIMIT", "5"))
SIGNUP_RATE_WINDOW = int(os.getenv("SIGNUP_RATE_WINDOW", "60"))

REQUIRE_EMAIL_CONFIRMATION = _flag("REQUIRE_EMAIL_CONFIRMATION")

# Provision real demo accounts (one per role) at startup
SEED_DEMO_ACCOUNTS = _flag("SEED_DEMO_ACCOUNTS")

ADMIN_BOOTSTRAP_EMAIL = os.getenv("ADMIN_BOOTSTRAP_EMAIL", "admin@journeatz.com").lower()
ADMIN_BOOTSTRAP_PASSWORD = os.getenv("ADMIN_BOOTSTRAP_PASSWORD", "ChangeMe123!")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
