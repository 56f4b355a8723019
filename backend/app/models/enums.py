import enum


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class Role(str, enum.Enum):
    """Approver role a flow step asks for; resolved per group via GroupApprover."""
    TUTOR = "TUTOR"
    YEAR_INCHARGE = "YEAR_INCHARGE"
    HOD = "HOD"
    LAB_INCHARGE = "LAB_INCHARGE"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RequestType(str, enum.Enum):
    OD = "OD"
    LEAVE = "LEAVE"


class ODCategory(str, enum.Enum):
    PROJECT = "PROJECT"
    SIH = "SIH"
    SYMPOSIUM = "SYMPOSIUM"
    OTHER = "OTHER"
