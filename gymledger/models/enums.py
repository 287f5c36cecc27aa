import enum


class Role(str, enum.Enum):
    USER = "user"
    OWNER = "owner"
    ADMIN = "admin"


class DurationUnit(str, enum.Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class SubscriptionSource(str, enum.Enum):
    APP = "APP"
    CONSOLE = "CONSOLE"
    WHATSAPP = "WHATSAPP"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentMethod(str, enum.Enum):
    ONLINE = "ONLINE"
    MANUAL = "MANUAL"
    CONSOLE = "CONSOLE"


class SettlementStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
