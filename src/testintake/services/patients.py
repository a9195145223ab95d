"""Patient directory lookups."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from testintake.models.patient import Patient


class PatientDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_user_id(self, user_id: str) -> Patient | None:
        result = await self.db.execute(select(Patient).where(Patient.user_id == user_id))
        return result.scalar_one_or_none()

    async def get(self, patient_id: str) -> Patient | None:
        return await self.db.get(Patient, patient_id)

    async def exists(self, patient_id: str) -> bool:
        return await self.get(patient_id) is not None
