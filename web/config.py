"""Centralized configuration for the storefront web app."""

import os
from pathlib import Path

# Determine project root (parent of 'web' directory)
_THIS_DIR = Path(__file__).parent
_PROJECT_ROOT = _THIS_DIR.parent

# Persistent error log (separate file from the document store)
ERROR_DB_PATH = os.getenv("ERROR_DB_PATH", str(_PROJECT_ROOT / "data" / "errors.db"))

# LLM Configuration
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-5.2")

# Flask app settings (allow env overrides; default debug off for safety)
# Render sets PORT dynamically; fall back to FLASK_PORT or 5000 for local.
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("FLASK_PORT", os.getenv("PORT", "5000")))
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"

# Admin guard: "token" compares against ADMIN_TOKEN, "firebase" verifies ID tokens
ADMIN_AUTH_MODE = os.getenv("ADMIN_AUTH_MODE", "token").lower()
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

# Gear recommendations
MIN_PREFERENCES_LENGTH = 10
