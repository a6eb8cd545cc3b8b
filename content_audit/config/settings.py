"""
Configuration settings for the Content Audit Platform.

Values come from the environment (optionally a ``.env`` file); policy
constants for guideline synthesis, scoring, alerting and scheduling live
here so workers and the CLI share one source of truth.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("CONTENT_AUDIT_DATA_DIR", BASE_DIR.parent / "data"))
LOGS_DIR = Path(os.getenv("CONTENT_AUDIT_LOGS_DIR", BASE_DIR.parent / "logs"))

# Create directories if they don't exist
for d in [DATA_DIR, LOGS_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR / 'content_audit.db'}"
)

# Redis / Celery
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)

# API Keys
SERPER_API_KEY = os.getenv("SERPER_API_KEY", "")
SERPER_ENDPOINT = os.getenv("SERPER_ENDPOINT", "https://google.serper.dev/search")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")

# Pre-issued Search Console token; the OAuth exchange happens elsewhere.
GSC_ACCESS_TOKEN = os.getenv("GSC_ACCESS_TOKEN", "")

# Outbound HTTP
USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (compatible; ContentAuditBot/1.0; +https://example.com/bot)"
)
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))

# Per-page scoring lease
LEASE_TTL_SECONDS = int(os.getenv("LEASE_TTL_SECONDS", "300"))

# Guideline synthesis
GUIDELINES = {
    "max_competitors": 5,
    "max_key_terms": 20,
    "min_words_factor": 0.9,
    "max_words_factor": 1.1,
    # Placeholder competitor used when no competitor page could be fetched
    "fallback_word_count": 1500,
    "fallback_h1_count": 1,
    "fallback_h2_count": 1,
    "fallback_h3_count": 0,
}

# Content scoring
SCORING = {
    "term_coverage_weight": 0.5,
    "length_weight": 0.3,
    "headings_weight": 0.2,
    "performing_well_threshold": 80,
    "monitor_threshold": 50,
}

# Suggestion generation
SUGGESTIONS = {
    "missing_term_importance": 0.6,
    "underused_term_importance": 0.5,
    "underused_ratio": 0.5,
    "max_terms_per_category": 5,
    "page_key_terms_limit": 100,
    "link_relevance_threshold": 60,
    "max_link_suggestions": 10,
    "link_term_importance": 0.6,
    "link_terms_per_page": 10,
    "anchor_max_length": 60,
}

# Alert thresholds (percentage change over the previous 30-day window)
ALERTS = {
    "drop_threshold_pct": -30.0,
    "rise_threshold_pct": 50.0,
}

# Metrics import
IMPORT = {
    "lookback_days": 30,
}

# Scheduling Configuration
SCHEDULE = {
    "metrics_import": "daily",        # 02:00 UTC
    "re_analysis": "weekly",          # Sunday 03:00 UTC
    "alert_evaluation": "6-hourly",
    "stale_after_days": 7,
    "re_analysis_batch": 100,
}

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = LOGS_DIR / "content_audit.log"
