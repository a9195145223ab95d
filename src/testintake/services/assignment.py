"""Reconciliation of provisional test results.

A provisional record carries a ``participant_id`` and no ``patient_id``.
An admin binds it to a patient exactly once; the binding is a conditional
UPDATE so a concurrent second assignment finds nothing to update.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from testintake.errors import InvalidState, NotFound
from testintake.models.audit_log import AuditAction
from testintake.models.test_result import TestResult, TestType
from testintake.services.audit import AuditEvent, AuditTrail, RequestContext
from testintake.services.identity import Caller
from testintake.services.ownership import OwnershipResolver
from testintake.services.paging import Page, Pagination
from testintake.services.patients import PatientDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrphanFilter:
    participant_id: str | None = None
    test_type: TestType | None = None


class AssignmentEngine:
    def __init__(
        self,
        db: AsyncSession,
        patients: PatientDirectory,
        audit: AuditTrail,
    ) -> None:
        self.db = db
        self.patients = patients
        self.audit = audit

    async def list_orphaned(
        self,
        caller: Caller,
        orphan_filter: OrphanFilter | None = None,
        pagination: Pagination | None = None,
    ) -> Page[TestResult]:
        """Provisional records, newest test date first. Admin only."""
        OwnershipResolver.ensure_admin(caller)
        orphan_filter = orphan_filter or OrphanFilter()
        pagination = pagination or Pagination()

        conditions = [TestResult.patient_id.is_(None), TestResult.participant_id.is_not(None)]
        if orphan_filter.participant_id:
            conditions.append(TestResult.participant_id == orphan_filter.participant_id)
        if orphan_filter.test_type:
            conditions.append(TestResult.test_type == orphan_filter.test_type)

        stmt = (
            select(TestResult)
            .where(*conditions)
            .order_by(TestResult.test_date.desc(), TestResult.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        result = await self.db.execute(stmt)
        items = list(result.scalars().all())

        total = await self.db.scalar(
            select(func.count()).select_from(TestResult).where(*conditions)
        )
        return Page(items=items, total=total or 0, pagination=pagination)

    async def assign(
        self,
        test_result_id: str,
        target_patient_id: str,
        caller: Caller,
        context: RequestContext | None = None,
    ) -> TestResult:
        """Bind a provisional record to a patient. One-way: a second call fails."""
        OwnershipResolver.ensure_admin(caller)

        record = await self.db.get(TestResult, test_result_id)
        if record is None:
            raise NotFound("Test result not found")
        if record.patient_id is not None:
            raise InvalidState("Test result is already assigned to a patient")
        if record.participant_id is None:
            raise InvalidState("Test result does not have a participantId")
        if not await self.patients.exists(target_patient_id):
            raise NotFound("Patient not found")

        assigned_at = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(TestResult)
            .where(TestResult.id == test_result_id)
            .where(TestResult.patient_id.is_(None))
            .values(
                patient_id=target_patient_id,
                assigned_by=caller.id,
                assigned_at=assigned_at,
                updated_at=assigned_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState("Test result is already assigned to a patient")

        await self.db.refresh(record)
        logger.info(
            "Assigned test result %s (participant %s) to patient %s",
            record.id,
            record.participant_id,
            target_patient_id,
        )

        await self.audit.record(
            AuditEvent(
                user_id=caller.id,
                action=AuditAction.ASSIGN_TEST_RESULT,
                resource_id=record.id,
                context=context or RequestContext(),
                details={
                    "participantId": record.participant_id,
                    "patientId": target_patient_id,
                },
            )
        )
        return record
