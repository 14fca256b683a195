from enum import Enum


class SessionType(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    NIGHT = "night"


class DoseStatus(str, Enum):
    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"
    SKIPPED = "skipped"


class StockStatus(str, Enum):
    GOOD = "good"
    LOW = "low"
    CRITICAL = "critical"


class AlertType(str, Enum):
    MISSED_DOSE = "missed_dose"
    LOW_STOCK = "low_stock"


class StockAlertType(str, Enum):
    LOW_STOCK_CAREGIVER = "low_stock_caregiver"


class CaregiverLinkStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class ChannelType(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
