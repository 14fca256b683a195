from .models import (
    Base,
    CaregiverLink,
    DoseLog,
    Medicine,
    MedicineSession,
    NotificationLog,
    Profile,
    SessionSchedule,
    StockAlert,
)

__all__ = [
    "Base",
    "CaregiverLink",
    "DoseLog",
    "Medicine",
    "MedicineSession",
    "NotificationLog",
    "Profile",
    "SessionSchedule",
    "StockAlert",
]
