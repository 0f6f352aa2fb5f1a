"""
Runtime configuration for MediFinder.

Values come from the environment (a local .env file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
DEFAULT_JWT_SECRET = "secret"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", 1))

# Generative AI
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")

# Geocoding
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "MediFinder/1.0")

# Outbound HTTP timeout in seconds
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 15))

# Reservations
RESERVATION_HOLD_HOURS = int(os.getenv("RESERVATION_HOLD_HOURS", 2))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
