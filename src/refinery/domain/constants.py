"""Centralized constants for the Refinery scheduler.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Time ----------
MS_PER_SECOND = 1000

# ---------- Intervals ----------
# Longest interval (days) a config may request, about a century
MAX_INTERVAL_DAYS = 36500

# ---------- Easiness factor ----------
DEFAULT_EASE_FLOOR = 1.3
EASY_EASE_BONUS = 0.15
HARD_EASE_PENALTY = 0.15

# ---------- Leeches ----------
LEECH_TAG = "leech"

# ---------- Record ids ----------
RECORD_ID_PREFIX = "rec_"

# ---------- CouchDB / HTTP ----------
REQUEST_TIMEOUT = 30.0
FIND_PAGE_SIZE = 500
