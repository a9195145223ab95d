"""FastAPI dependency injection functions."""

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from testintake.config import Settings, get_settings
from testintake.db.engine import get_session
from testintake.errors import Unauthenticated
from testintake.models.api_key import ApiKey
from testintake.models.user import User
from testintake.services.assignment import AssignmentEngine
from testintake.services.audit import AuditTrail, RequestContext
from testintake.services.identity import Caller, hash_key
from testintake.services.ingest import IngestRecorder
from testintake.services.ownership import OwnershipResolver
from testintake.services.patients import PatientDirectory
from testintake.services.rate_limit import InMemoryRateLimiter
from testintake.services.results import TestResultService
from testintake.services.storage import StorageGateway
from testintake.services.upload_intents import UploadIntentCoordinator


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async for session in get_session():
        yield session


def get_app_settings() -> Settings:
    """Return application settings."""
    return get_settings()


def get_storage(request: Request) -> StorageGateway:
    """Return the storage gateway created at application startup."""
    return request.app.state.storage


def get_intent_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.intent_limiter


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def verify_caller(
    authorization: str | None = Header(default=None, description="Bearer <api_key>"),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Resolve the Bearer token to an active user.

    The key is hashed and matched against stored key hashes; the owning
    user must still be active.
    """
    if not authorization:
        raise Unauthenticated("No token provided")
    if not authorization.startswith("Bearer "):
        raise Unauthenticated("Authorization header must use Bearer scheme")

    raw_key = authorization[7:].strip()
    if not raw_key:
        raise Unauthenticated("API key is required")

    key_hash = hash_key(raw_key)
    stmt = (
        select(ApiKey, User)
        .join(User, User.id == ApiKey.user_id)
        .where(ApiKey.key_hash == key_hash)
        .where(ApiKey.is_active.is_(True))
    )
    row = (await db.execute(stmt)).first()

    # Timing-safe comparison to prevent timing side-channel attacks
    if row is None or not hmac.compare_digest(row.ApiKey.key_hash, key_hash):
        raise Unauthenticated("Invalid or inactive API key")
    if not row.User.is_active:
        raise Unauthenticated("User not found or inactive")

    return Caller(id=row.User.id, role=row.User.role)


# ── Service factories ────────────────────────────────────────────────


def get_patient_directory(db: AsyncSession = Depends(get_db)) -> PatientDirectory:
    return PatientDirectory(db)


def get_audit_trail(db: AsyncSession = Depends(get_db)) -> AuditTrail:
    return AuditTrail(db)


def get_ownership_resolver(
    patients: PatientDirectory = Depends(get_patient_directory),
) -> OwnershipResolver:
    return OwnershipResolver(patients)


def get_intent_coordinator(
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
) -> UploadIntentCoordinator:
    return UploadIntentCoordinator(db, storage)


def get_ingest_recorder(
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    audit: AuditTrail = Depends(get_audit_trail),
    settings: Settings = Depends(get_app_settings),
) -> IngestRecorder:
    return IngestRecorder(db, storage, audit, max_upload_bytes=settings.max_upload_bytes)


def get_assignment_engine(
    db: AsyncSession = Depends(get_db),
    patients: PatientDirectory = Depends(get_patient_directory),
    audit: AuditTrail = Depends(get_audit_trail),
) -> AssignmentEngine:
    return AssignmentEngine(db, patients, audit)


def get_result_service(
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    ownership: OwnershipResolver = Depends(get_ownership_resolver),
    audit: AuditTrail = Depends(get_audit_trail),
) -> TestResultService:
    return TestResultService(db, storage, ownership, audit)
