"""Status vocabularies shared by the models and the message pipeline."""

from enum import Enum


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class ReminderStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class ConfirmationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MISSED = "MISSED"


class ConversationContext(str, Enum):
    VERIFICATION = "verification"
    REMINDER_CONFIRMATION = "reminder_confirmation"
    GENERAL_INQUIRY = "general_inquiry"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class VerificationAction(str, Enum):
    SENT = "sent"
    RESPONDED = "responded"
    MESSAGE_RECEIVED = "message_received"
    MANUAL = "manual"


class VerificationResult(str, Enum):
    VERIFIED = "verified"
    DECLINED = "declined"
    UNSUBSCRIBED = "unsubscribed"
    PENDING = "pending"
