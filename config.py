"""
Runtime configuration

Values come from environment variables, optionally loaded from a .env file.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Primary MongoDB; when either is missing the embedded Mongita fallback is used
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
FALLBACK_DATABASE_NAME = os.getenv("FALLBACK_DATABASE_NAME", "fitness_challenges")

# auto | disk | memory
DATABASE_BACKEND = os.getenv("DATABASE_BACKEND", "auto").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

PORT = int(os.getenv("PORT", 8000))
