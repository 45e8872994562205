"""
returnsync Worker Service

Background worker for the recurring sync:
- Shipment tracking refresh for tracked returns
- Inbox scan for new return candidates
- Status change and new candidate notifications
"""

__all__ = []
