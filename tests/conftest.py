"""Test fixtures and configuration."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from testintake.dependencies import get_db
from testintake.errors import UpstreamStorageFailure
from testintake.main import create_app
from testintake.models import ApiKey, Base, FileType, Patient, TestResult, TestType, User, UserRole
from testintake.services.identity import generate_api_key, hash_key
from testintake.services.storage import StorageGateway


class FakeStorage(StorageGateway):
    """In-memory stand-in for the S3 gateway.

    Presigned URLs are deterministic strings; direct operations mutate
    ``objects``. Keys listed in ``failing_deletes`` raise on delete.
    """

    def __init__(self) -> None:
        super().__init__(client=None, bucket="test-bucket")
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.failing_deletes: set[str] = set()
        self.fail_presign = False
        self.fail_puts = False
        self.multipart: dict[str, str] = {}
        self.completed: dict[str, list[dict]] = {}
        self.aborted: list[str] = []

    def close(self) -> None:
        pass

    def _url(self, method: str, key: str, **params) -> str:
        query = "&".join(f"{k}={v}" for k, v in {"method": method, **params}.items())
        return f"https://{self.bucket}.storage.test/{key}?{query}"

    async def presign_upload(self, key, content_type, expires_in=None):
        if self.fail_presign:
            raise UpstreamStorageFailure("Object storage could not complete presign_upload")
        return self._url("PUT", key)

    async def presign_download(self, key, expires_in=None):
        return self._url("GET", key)

    async def presign_upload_part(self, key, upload_id, part_number, expires_in=None):
        return self._url("PUT", key, uploadId=upload_id, partNumber=part_number)

    async def create_multipart_upload(self, key, content_type):
        upload_id = f"upload-{len(self.multipart) + 1}"
        self.multipart[upload_id] = key
        return upload_id

    async def complete_multipart_upload(self, key, upload_id, parts):
        self.completed[upload_id] = parts
        self.objects[key] = b""

    async def abort_multipart_upload(self, key, upload_id):
        self.aborted.append(upload_id)

    async def put_object(self, key, body, content_type, metadata=None):
        if self.fail_puts:
            raise UpstreamStorageFailure("Object storage could not complete put_object")
        self.objects[key] = body
        self.metadata[key] = {"ContentType": content_type, **(metadata or {})}

    async def delete_object(self, key):
        if key in self.failing_deletes:
            raise UpstreamStorageFailure("Object storage could not complete delete_object")
        self.objects.pop(key, None)
        self.deleted.append(key)


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite engine for tests."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest_asyncio.fixture
async def app(session_factory, storage: FakeStorage) -> FastAPI:
    """Application wired to the test database and fake storage."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.state.storage = storage
    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client against the wired application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def create_user(
    session_factory,
    email: str,
    role: UserRole = UserRole.PATIENT,
    with_patient: bool = True,
) -> dict:
    """Insert a user (and optionally a patient record) with an active API key.

    Returns a dict with keys: ``user_id``, ``patient_id``, ``api_key``,
    ``headers``.
    """
    raw_key = generate_api_key()
    async with session_factory() as session:
        user = User(email=email, role=role)
        session.add(user)
        await session.flush()

        patient_id = None
        if with_patient:
            patient = Patient(user_id=user.id)
            session.add(patient)
            await session.flush()
            patient_id = patient.id

        session.add(ApiKey(user_id=user.id, key_hash=hash_key(raw_key), prefix=raw_key[:12]))
        await session.commit()

    return {
        "user_id": user.id,
        "patient_id": patient_id,
        "api_key": raw_key,
        "headers": {"Authorization": f"Bearer {raw_key}"},
    }


@pytest_asyncio.fixture
async def patient_user(session_factory) -> dict:
    return await create_user(session_factory, "patient@example.com")


@pytest_asyncio.fixture
async def other_patient_user(session_factory) -> dict:
    return await create_user(session_factory, "other-patient@example.com")


@pytest_asyncio.fixture
async def admin_user(session_factory) -> dict:
    return await create_user(
        session_factory, "admin@example.com", role=UserRole.ADMIN, with_patient=False
    )


@pytest_asyncio.fixture
async def clinician_user(session_factory) -> dict:
    return await create_user(
        session_factory, "clinician@example.com", role=UserRole.CLINICIAN, with_patient=False
    )


@pytest.fixture
def make_user(session_factory):
    """Factory fixture: ``await make_user(email, role=..., with_patient=...)``."""

    async def _make(email: str, role: UserRole = UserRole.PATIENT, with_patient: bool = True):
        return await create_user(session_factory, email, role=role, with_patient=with_patient)

    return _make


@pytest.fixture
def make_result(session_factory, storage: FakeStorage):
    """Factory fixture inserting a TestResult whose files exist in fake storage."""
    counter = {"n": 0}

    async def _make(
        patient_id: str | None = None,
        participant_id: str | None = None,
        test_type: TestType = TestType.AUDIOMETRY,
        test_date: datetime | None = None,
        files: tuple[FileType, ...] = (FileType.CSV,),
        namespace: str = "seed",
    ) -> TestResult:
        counter["n"] += 1
        keys = {ft: f"test-recordings/{namespace}/seed-{counter['n']}-{ft.value}" for ft in files}
        for key in keys.values():
            storage.objects[key] = b"seed"
        async with session_factory() as session:
            record = TestResult(
                test_id=f"seed-test-{counter['n']}",
                test_type=test_type,
                test_date=test_date or datetime(2026, 3, counter["n"] % 28 + 1, tzinfo=timezone.utc),
                patient_id=patient_id,
                participant_id=participant_id,
                video_url=keys.get(FileType.VIDEO),
                csv_url=keys.get(FileType.CSV),
                questions_url=keys.get(FileType.QUESTIONS),
            )
            session.add(record)
            await session.commit()
        return record

    return _make
