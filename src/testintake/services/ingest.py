"""Ingest recorder - turns an upload declaration into a durable TestResult.

Two entry points end in the same record shape: ``confirm_upload`` for files
the client already sent to storage with presigned URLs, and
``upload_direct`` for the legacy path where the bytes pass through this
service. The ``test_results.test_id`` unique constraint decides every race;
the existence check before it only lets obvious duplicates fail early.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from testintake.errors import Conflict, Forbidden, IngestError, InvalidArgument
from testintake.models.audit_log import AuditAction
from testintake.models.test_result import FileType, TestResult, TestType
from testintake.schemas.test_result import ConfirmUploadRequest, DirectUploadFields
from testintake.services.audit import AuditEvent, AuditTrail, RequestContext
from testintake.services.identity import Caller
from testintake.services.ownership import UploadOwnership
from testintake.services.storage import StorageGateway, make_object_key
from testintake.services.test_types import normalize_test_type

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {"video/mp4", "video/quicktime", "video/x-msvideo", "text/csv", "application/json"}
)

DUPLICATE_TEST_ID = "Test result with this testId already exists"


async def test_id_exists(db: AsyncSession, test_id: str) -> bool:
    found = await db.scalar(select(TestResult.id).where(TestResult.test_id == test_id))
    return found is not None


async def ensure_test_id_available(db: AsyncSession, test_id: str) -> None:
    """Fail fast on a testId that is already recorded."""
    if await test_id_exists(db, test_id):
        raise Conflict(DUPLICATE_TEST_ID)


def is_allowed_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type in ALLOWED_CONTENT_TYPES or content_type.startswith("video/")


@dataclass(frozen=True)
class IncomingFile:
    """A file received through the legacy multipart endpoint."""

    file_type: FileType
    file_name: str | None
    content_type: str | None
    data: bytes


class IngestRecorder:
    def __init__(
        self,
        db: AsyncSession,
        storage: StorageGateway,
        audit: AuditTrail,
        max_upload_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self.db = db
        self.storage = storage
        self.audit = audit
        self.max_upload_bytes = max_upload_bytes

    async def confirm_upload(
        self,
        request: ConfirmUploadRequest,
        ownership: UploadOwnership,
        caller: Caller,
        context: RequestContext | None = None,
    ) -> TestResult:
        """Record files the client has already PUT to storage.

        Keys are taken verbatim from the confirmation; object existence is
        not re-checked against the store. Every key must sit under the
        caller's upload namespace.
        """
        ownership.require_tag()
        for key in request.uploaded_files.keys().values():
            if not ownership.owns_key(key):
                logger.warning(
                    "Rejected confirm of foreign key %s for test %s", key, request.test_id
                )
                raise Forbidden("Storage key is outside the caller's upload namespace")
        test_type = normalize_test_type(request.test_type)
        await ensure_test_id_available(self.db, request.test_id)

        record = await self.record_test_result(
            test_id=request.test_id,
            test_type=test_type,
            test_date=request.test_date,
            file_keys=request.uploaded_files.keys(),
            metadata=request.metadata,
            ownership=ownership,
        )
        await self._audit_ingest(record, caller, context, via="confirm")
        return record

    async def upload_direct(
        self,
        fields: DirectUploadFields,
        files: list[IncomingFile],
        ownership: UploadOwnership,
        caller: Caller,
        context: RequestContext | None = None,
    ) -> TestResult:
        """Legacy path: write each file to storage, then record the result."""
        ownership.require_tag()
        test_type = normalize_test_type(fields.test_type)
        for incoming in files:
            self._validate_file(incoming)
        await ensure_test_id_available(self.db, fields.test_id)

        stored: dict[FileType, str] = {}
        try:
            for incoming in files:
                key = make_object_key(ownership.namespace, incoming.file_name)
                await self.storage.put_object(
                    key,
                    incoming.data,
                    incoming.content_type or "application/octet-stream",
                    metadata={
                        "original-name": quote(incoming.file_name or ""),
                        "upload-date": datetime.now(timezone.utc).isoformat(),
                    },
                )
                stored[incoming.file_type] = key

            record = await self.record_test_result(
                test_id=fields.test_id,
                test_type=test_type,
                test_date=fields.test_date,
                file_keys=stored,
                metadata=fields.metadata,
                ownership=ownership,
            )
        except BaseException:
            await self._discard(stored.values())
            raise

        await self._audit_ingest(record, caller, context, via="direct")
        return record

    async def record_test_result(
        self,
        *,
        test_id: str,
        test_type: TestType,
        test_date: datetime,
        file_keys: dict[FileType, str],
        metadata: dict | None,
        ownership: UploadOwnership,
    ) -> TestResult:
        """Insert the record; a unique-constraint violation becomes Conflict."""
        record = TestResult(
            test_id=test_id,
            test_type=test_type,
            test_date=test_date,
            patient_id=ownership.patient_id,
            participant_id=ownership.participant_id,
            video_url=file_keys.get(FileType.VIDEO),
            csv_url=file_keys.get(FileType.CSV),
            questions_url=file_keys.get(FileType.QUESTIONS),
            metadata_=metadata,
        )
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            if await test_id_exists(self.db, test_id):
                logger.info("Lost insert race for test %s", test_id)
                raise Conflict(DUPLICATE_TEST_ID) from exc
            raise

        logger.info(
            "Recorded test result %s (test %s, %s, %d file(s), %s)",
            record.id,
            test_id,
            test_type.value,
            len(file_keys),
            "patient" if record.patient_id else "provisional",
        )
        return record

    def _validate_file(self, incoming: IncomingFile) -> None:
        if not is_allowed_content_type(incoming.content_type):
            raise InvalidArgument(
                f"File type {incoming.content_type} not allowed. "
                "Only video, CSV, and JSON files are accepted."
            )
        if len(incoming.data) > self.max_upload_bytes:
            raise InvalidArgument(
                f"{incoming.file_type.value} file exceeds the "
                f"{self.max_upload_bytes} byte upload limit"
            )

    async def _discard(self, keys) -> None:
        for key in keys:
            try:
                await self.storage.delete_object(key)
            except IngestError:
                logger.warning("Could not remove orphaned object %s", key)

    async def _audit_ingest(
        self,
        record: TestResult,
        caller: Caller,
        context: RequestContext | None,
        via: str,
    ) -> None:
        await self.audit.record(
            AuditEvent(
                user_id=caller.id,
                action=AuditAction.UPLOAD_TEST_RESULT,
                resource_id=record.id,
                context=context or RequestContext(),
                details={
                    "testId": record.test_id,
                    "via": via,
                    "files": sorted(ft.value for ft in record.stored_files()),
                },
            )
        )
