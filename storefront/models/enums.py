import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    SPECIALIST = "SPECIALIST"
    CUSTOMER = "CUSTOMER"


class ProductType(str, enum.Enum):
    COMPONENT = "COMPONENT"
    PERIPHERAL = "PERIPHERAL"
    CONFIGURATION = "CONFIGURATION"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RepairStatus(str, enum.Enum):
    PENDING = "PENDING"
    DIAGNOSING = "DIAGNOSING"
    WAITING_FOR_PARTS = "WAITING_FOR_PARTS"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RepairPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ConfigurationStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
