"""Retrieval and deletion of recorded test results."""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from testintake.errors import IngestError, NotFound
from testintake.models.audit_log import AuditAction
from testintake.models.test_result import FileType, TestResult, TestType
from testintake.services.audit import AuditEvent, AuditTrail, RequestContext
from testintake.services.identity import Caller
from testintake.services.ownership import OwnershipResolver
from testintake.services.paging import Page, Pagination
from testintake.services.storage import StorageGateway

logger = logging.getLogger(__name__)


@dataclass
class DeletionOutcome:
    """Result of a delete: which objects went away and whether the row did."""

    removed: list[FileType] = field(default_factory=list)
    failed: list[FileType] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class TestResultService:
    def __init__(
        self,
        db: AsyncSession,
        storage: StorageGateway,
        ownership: OwnershipResolver,
        audit: AuditTrail,
    ) -> None:
        self.db = db
        self.storage = storage
        self.ownership = ownership
        self.audit = audit

    async def _page(
        self, conditions: list, pagination: Pagination
    ) -> Page[TestResult]:
        stmt = (
            select(TestResult)
            .where(*conditions)
            .order_by(TestResult.test_date.desc(), TestResult.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await self.db.execute(stmt)
        total = await self.db.scalar(
            select(func.count()).select_from(TestResult).where(*conditions)
        )
        return Page(items=list(result.scalars().all()), total=total or 0, pagination=pagination)

    async def list_own(
        self,
        caller: Caller,
        test_type: TestType | None = None,
        pagination: Pagination | None = None,
    ) -> Page[TestResult]:
        """Results assigned to the calling patient."""
        patient = await self.ownership.patients.find_by_user_id(caller.id)
        if patient is None:
            raise NotFound("Patient record not found")

        conditions = [TestResult.patient_id == patient.id]
        if test_type:
            conditions.append(TestResult.test_type == test_type)
        return await self._page(conditions, pagination or Pagination(limit=10))

    async def list_for_patient(
        self,
        caller: Caller,
        patient_id: str,
        test_type: TestType | None = None,
        pagination: Pagination | None = None,
    ) -> Page[TestResult]:
        """Results assigned to any patient. Admin only."""
        self.ownership.ensure_admin(caller)
        if not await self.ownership.patients.exists(patient_id):
            raise NotFound("Patient not found")

        conditions = [TestResult.patient_id == patient_id]
        if test_type:
            conditions.append(TestResult.test_type == test_type)
        return await self._page(conditions, pagination or Pagination(limit=20))

    async def _load_accessible(self, caller: Caller, test_result_id: str) -> TestResult:
        record = await self.db.get(TestResult, test_result_id)
        if record is None:
            raise NotFound("Test result not found")
        await self.ownership.ensure_can_access(caller, record)
        return record

    async def get(
        self,
        caller: Caller,
        test_result_id: str,
        context: RequestContext | None = None,
    ) -> TestResult:
        record = await self._load_accessible(caller, test_result_id)
        await self.audit.record(
            AuditEvent(
                user_id=caller.id,
                action=AuditAction.VIEW_TEST_RESULT,
                resource_id=record.id,
                context=context or RequestContext(),
            )
        )
        return record

    async def download_url(
        self, caller: Caller, test_result_id: str, file_type: FileType
    ) -> tuple[str, int]:
        """Short-lived GET URL for one artifact of a record."""
        record = await self._load_accessible(caller, test_result_id)
        key = record.file_key(file_type)
        if not key:
            raise NotFound(f"{file_type.value} file not found for this test result")

        expires_in = self.storage.download_expiry_seconds
        url = await self.storage.presign_download(key, expires_in)
        return url, expires_in

    async def delete(
        self,
        caller: Caller,
        test_result_id: str,
        context: RequestContext | None = None,
    ) -> DeletionOutcome:
        """Delete every stored object of a record, then the record itself.

        Objects are removed concurrently. When some removals fail, the ones
        that succeeded stay removed and their references are cleared; the
        row is kept with the remaining references so the delete can be
        retried.
        """
        record = await self._load_accessible(caller, test_result_id)
        stored = record.stored_files()

        file_types = list(stored)
        results = await asyncio.gather(
            *(self.storage.delete_object(stored[ft]) for ft in file_types),
            return_exceptions=True,
        )

        outcome = DeletionOutcome()
        for file_type, result in zip(file_types, results):
            if isinstance(result, IngestError):
                outcome.failed.append(file_type)
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome.removed.append(file_type)

        if not outcome.complete:
            for file_type in outcome.removed:
                setattr(record, file_type.column, None)
            await self.db.flush()
            logger.warning(
                "Partial delete of test result %s: removed %s, failed %s",
                record.id,
                [ft.value for ft in outcome.removed],
                [ft.value for ft in outcome.failed],
            )
            return outcome

        test_id = record.test_id
        await self.db.delete(record)
        await self.db.flush()
        logger.info("Deleted test result %s and %d object(s)", test_result_id, len(stored))

        await self.audit.record(
            AuditEvent(
                user_id=caller.id,
                action=AuditAction.DELETE_TEST_RESULT,
                resource_id=test_result_id,
                context=context or RequestContext(),
                details={"testId": test_id},
            )
        )
        return outcome
