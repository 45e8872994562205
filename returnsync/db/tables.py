"""
SQLAlchemy Table definitions for the local store.

Uses SQLAlchemy Core (not ORM) alongside the Pydantic models.
"""

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text

metadata = MetaData()

# =============================================================================
# TABLE: app_state
# Serialized documents keyed by name (the tracked item list lives here)
# =============================================================================

app_state = Table(
    "app_state",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# =============================================================================
# TABLE: seen_messages
# Permanent dedup set for inbox candidates
# =============================================================================

seen_messages = Table(
    "seen_messages",
    metadata,
    Column("message_id", String(255), primary_key=True),
    Column("reason", String(20), nullable=False),
    Column("seen_at", DateTime(timezone=True), nullable=False),
)

# =============================================================================
# TABLE: sent_alerts
# Identifiers of one-off alerts already delivered
# =============================================================================

sent_alerts = Table(
    "sent_alerts",
    metadata,
    Column("identifier", String(255), primary_key=True),
    Column("sent_at", DateTime(timezone=True), nullable=False),
)

# =============================================================================
# TABLE: oauth_sessions
# =============================================================================

oauth_sessions = Table(
    "oauth_sessions",
    metadata,
    Column("provider", String(50), primary_key=True),
    Column("provider_email", String(255)),
    Column("access_token", Text, nullable=False),
    Column("refresh_token", Text),
    Column("expires_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
