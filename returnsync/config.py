"""
Runtime configuration for returnsync.

Values are read from the environment at import time. Call ``load_dotenv()``
before importing this module to pick up a local ``.env`` file.
"""

import os

# Local store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///returnsync.db")

# Tracking provider (Shippo)
SHIPPO_API_KEY = os.getenv("SHIPPO_API_KEY", "")
TRACKING_API_BASE_URL = os.getenv("TRACKING_API_BASE_URL", "https://api.goshippo.com")
TRACKING_AUTH_SCHEME = os.getenv("TRACKING_AUTH_SCHEME", "ShippoToken")
TRACKING_CACHE_TTL_MINUTES = int(os.getenv("TRACKING_CACHE_TTL_MINUTES", "30"))
TRACKING_CONCURRENCY = int(os.getenv("TRACKING_CONCURRENCY", "4"))

# Inbox provider (Gmail)
GMAIL_CLIENT_ID = os.getenv("GMAIL_CLIENT_ID", "")
GMAIL_REDIRECT_URI = os.getenv("GMAIL_REDIRECT_URI", "com.returnsync:/oauth2callback")
GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
GMAIL_API_BASE_URL = os.getenv(
    "GMAIL_API_BASE_URL", "https://gmail.googleapis.com/gmail/v1/users/me"
)
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
INBOX_SEARCH_QUERY = os.getenv("INBOX_SEARCH_QUERY", "subject:(return) newer_than:100d")
INBOX_MAX_PAGES = int(os.getenv("INBOX_MAX_PAGES", "5"))
INBOX_FETCH_CONCURRENCY = int(os.getenv("INBOX_FETCH_CONCURRENCY", "5"))

HTTP_TIMEOUT_SECONDS = int(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

# Recurring sync job
SYNC_JOB_ID = os.getenv("SYNC_JOB_ID", "returnsync-refresh")
SYNC_INTERVAL_MINUTES = int(os.getenv("SYNC_INTERVAL_MINUTES", "15"))
SYNC_GRANT_SECONDS = int(os.getenv("SYNC_GRANT_SECONDS", "30"))
SYNC_SAFETY_MARGIN_SECONDS = int(os.getenv("SYNC_SAFETY_MARGIN_SECONDS", "5"))

# Notifications
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
# Days-left marks that raise a return deadline warning
DEADLINE_WARNING_DAYS = [
    int(days) for days in os.getenv("DEADLINE_WARNING_DAYS", "23,3,1").split(",") if days.strip()
]

# Cloud Tasks host
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "")
LOCATION = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")
QUEUE_NAME = os.getenv("CLOUD_TASKS_QUEUE", "returnsync-refresh")
WORKER_SERVICE_URL = os.getenv("WORKER_SERVICE_URL", "")
SERVICE_ACCOUNT_EMAIL = os.getenv("SERVICE_ACCOUNT_EMAIL", "")
