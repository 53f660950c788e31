"""Runtime settings read from the environment (and a local .env file)."""
from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

API_URL = os.getenv("CLINICNEXUS_API_URL", "http://localhost:8080").rstrip("/")
TIMEOUT = float(os.getenv("CLINICNEXUS_TIMEOUT", "15"))
# quiet period before an autocomplete lookup fires, in seconds
SEARCH_DEBOUNCE = float(os.getenv("CLINICNEXUS_SEARCH_DEBOUNCE", "0.3"))
SEARCH_MIN_CHARS = int(os.getenv("CLINICNEXUS_SEARCH_MIN_CHARS", "2"))
# bearer key for the HTTP surface; empty disables the check
API_KEY = os.getenv("CLINICNEXUS_API_KEY", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1") == "1"
