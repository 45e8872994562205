"""
returnsync data models.

This package contains all Pydantic models for the returns sync engine.
"""

# Candidate models
from returnsync.models.candidate import CandidateReturn

# Item models
from returnsync.models.item import (
    Carrier,
    RefundStatus,
    TrackedItem,
    TrackingDetail,
    TrackingInfo,
    TrackingStatus,
)

# Notification models
from returnsync.models.notification import Notification, NotificationType

# OAuth models
from returnsync.models.oauth import OAuthSession, TokenResponse

# Sync models
from returnsync.models.sync import RunResult, SubtaskName, SubtaskOutcome, SyncRun

__all__ = [
    # Item models
    "Carrier",
    "RefundStatus",
    "TrackedItem",
    "TrackingDetail",
    "TrackingInfo",
    "TrackingStatus",
    # Candidate models
    "CandidateReturn",
    # Notification models
    "Notification",
    "NotificationType",
    # OAuth models
    "OAuthSession",
    "TokenResponse",
    # Sync models
    "RunResult",
    "SubtaskName",
    "SubtaskOutcome",
    "SyncRun",
]
