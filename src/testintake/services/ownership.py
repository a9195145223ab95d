"""Ownership resolution for uploads and record access.

Patients upload into their own namespace and own the resulting record.
Admins upload into an admin-scoped namespace and tag the record with a
``participant_id`` until it is reconciled with a real patient. Every
handler goes through ``OwnershipResolver`` instead of branching on role.
"""

from dataclasses import dataclass

from testintake.errors import Forbidden, InvalidArgument, NotFound
from testintake.models.test_result import TestResult
from testintake.services.identity import Caller
from testintake.services.patients import PatientDirectory
from testintake.services.storage import namespace_prefix


@dataclass(frozen=True)
class UploadOwnership:
    """Where an upload's objects live and whose record it becomes."""

    namespace: str
    patient_id: str | None = None
    participant_id: str | None = None

    @property
    def key_prefix(self) -> str:
        return namespace_prefix(self.namespace)

    def owns_key(self, key: str) -> bool:
        return key.startswith(self.key_prefix) and ".." not in key

    def require_tag(self) -> None:
        """Ensure exactly one ownership tag is set before a record is created."""
        if (self.patient_id is None) == (self.participant_id is None):
            raise InvalidArgument("participantId is required for admin uploads")


class OwnershipResolver:
    def __init__(self, patients: PatientDirectory) -> None:
        self.patients = patients

    async def resolve(
        self, caller: Caller, participant_id: str | None = None
    ) -> UploadOwnership:
        """Decide the storage namespace and ownership tag for an upload."""
        participant_id = participant_id.strip() if participant_id else None

        if caller.is_admin:
            return UploadOwnership(namespace=caller.id, participant_id=participant_id)

        if participant_id:
            raise Forbidden("Only admins can upload tests with participantId")

        patient = await self.patients.find_by_user_id(caller.id)
        if patient is None:
            raise NotFound("Patient record not found for current user")
        return UploadOwnership(namespace=patient.id, patient_id=patient.id)

    async def ensure_can_access(self, caller: Caller, test_result: TestResult) -> None:
        """Allow admins, and patients on their own assigned records."""
        if caller.is_admin:
            return
        patient = await self.patients.find_by_user_id(caller.id)
        if patient is None or test_result.patient_id != patient.id:
            raise Forbidden("Access denied to this test result")

    @staticmethod
    def ensure_admin(caller: Caller) -> None:
        if not caller.is_admin:
            raise Forbidden("Admin access required")
