"""SQLAlchemy ORM models."""

from testintake.models.base import Base
from testintake.models.user import User, UserRole
from testintake.models.api_key import ApiKey
from testintake.models.patient import Patient
from testintake.models.test_result import FileType, TestResult, TestType
from testintake.models.audit_log import AuditAction, AuditLog

__all__ = [
    "Base",
    "User",
    "UserRole",
    "ApiKey",
    "Patient",
    "TestResult",
    "TestType",
    "FileType",
    "AuditLog",
    "AuditAction",
]
