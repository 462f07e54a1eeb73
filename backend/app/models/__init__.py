"""
SQLAlchemy models for PostgreSQL persistence.
"""

from app.models.session import UserSession
from app.models.utm import UTMSession
from app.models.conversion import ConversionEvent, ConversionEventType, ConversionVisitor
from app.models.campaign import (
    AudienceUser,
    Campaign,
    CampaignEvent,
    CampaignRecipient,
    DeviceType,
    EventType,
    RecipientStatus,
)

__all__ = [
    "UserSession",
    "UTMSession",
    "ConversionEvent",
    "ConversionEventType",
    "ConversionVisitor",
    "AudienceUser",
    "Campaign",
    "CampaignEvent",
    "CampaignRecipient",
    "DeviceType",
    "EventType",
    "RecipientStatus",
]
