import os
from pathlib import Path
from dotenv import load_dotenv

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")

# --- Platform Connection ---
SHOP_DOMAIN = os.getenv("SHOP_DOMAIN", "")
ACCESS_TOKEN = os.getenv("ACCESS_TOKEN", "")
API_VERSION = os.getenv("API_VERSION", "2024-10")

# Every call to the platform (attribute read/write, export start/poll/download)
# is bounded by this timeout.
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))

# --- Snapshot Policy ---
FRESHNESS_WINDOW_MINUTES = int(os.getenv("FRESHNESS_WINDOW_MINUTES", "15"))

# Item records carrying this title never received a real identity upstream.
PLACEHOLDER_TITLE = os.getenv("PLACEHOLDER_TITLE", "Untitled Variant")

# --- Detail Fan-out ---
DETAIL_FETCH_CONCURRENCY = int(os.getenv("DETAIL_FETCH_CONCURRENCY", "5"))

# --- Plan Limit ---
# Unset means no ceiling.
_limit = os.getenv("SYNCED_ITEMS_LIMIT")
SYNCED_ITEMS_LIMIT = int(_limit) if _limit else None

# --- Relationship Attributes ---
SOURCE_NAMESPACE = os.getenv("SOURCE_NAMESPACE", "projektstocksyncmaster")
SOURCE_KEY = os.getenv("SOURCE_KEY", "master")
DEPENDENTS_NAMESPACE = os.getenv("DEPENDENTS_NAMESPACE", "projektstocksyncchildren")
DEPENDENTS_KEY = os.getenv("DEPENDENTS_KEY", "childrenkey")
SOURCE_REF_NAMESPACE = os.getenv("SOURCE_REF_NAMESPACE", "projektstocksyncparentmaster")
SOURCE_REF_KEY = os.getenv("SOURCE_REF_KEY", "parentmaster")
RATIO_NAMESPACE = os.getenv("RATIO_NAMESPACE", "projektstocksyncqtymanagement")
RATIO_KEY = os.getenv("RATIO_KEY", "qtymanagement")

# --- Output Configuration ---
OUTPUT_DIR = BASE_DIR / os.getenv("OUTPUT_DIR", "output")
REPORT_FILENAME_BASE = os.getenv("REPORT_FILENAME_BASE", "relationships")
SAVE_JSON_OUTPUT = os.getenv("SAVE_JSON_OUTPUT", "False").lower() == "true"

# --- Webhook ---
WEBHOOK_URL = os.getenv("WEBHOOK_URL")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = BASE_DIR / os.getenv("LOG_DIR", "logs")
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 3
