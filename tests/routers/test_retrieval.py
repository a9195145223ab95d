"""Tests for listing, fetching and download URLs of test results."""

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from testintake.models import AuditAction, AuditLog, FileType, TestType


@pytest.mark.asyncio
async def test_patient_lists_only_own_results(
    client: AsyncClient, patient_user: dict, other_patient_user: dict, make_result
):
    mine = await make_result(patient_id=patient_user["patient_id"])
    await make_result(patient_id=other_patient_user["patient_id"])
    await make_result(participant_id="P-1")

    response = await client.get("/v1/test-results", headers=patient_user["headers"])
    assert response.status_code == 200
    data = response.json()
    assert [r["id"] for r in data["testResults"]] == [mine.id]
    assert data["pagination"] == {"total": 1, "limit": 10, "offset": 0}


@pytest.mark.asyncio
async def test_own_listing_filters_by_test_type(
    client: AsyncClient, patient_user: dict, make_result
):
    patient_id = patient_user["patient_id"]
    await make_result(patient_id=patient_id, test_type=TestType.AUDIOMETRY)
    bppv = await make_result(patient_id=patient_id, test_type=TestType.BPPV)

    response = await client.get(
        "/v1/test-results", headers=patient_user["headers"], params={"testType": "BPPV"}
    )
    assert [r["id"] for r in response.json()["testResults"]] == [bppv.id]


@pytest.mark.asyncio
async def test_own_listing_requires_patient_record(client: AsyncClient, clinician_user: dict):
    response = await client.get("/v1/test-results", headers=clinician_user["headers"])
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_one_writes_view_audit(
    client: AsyncClient, patient_user: dict, make_result, session_factory
):
    record = await make_result(patient_id=patient_user["patient_id"])
    response = await client.get(f"/v1/test-results/{record.id}", headers=patient_user["headers"])
    assert response.status_code == 200
    assert response.json()["testId"] == record.test_id

    async with session_factory() as session:
        entry = (
            await session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.VIEW_TEST_RESULT)
            )
        ).scalar_one()
    assert entry.resource_id == record.id


@pytest.mark.asyncio
async def test_other_patient_cannot_read_record(
    client: AsyncClient, patient_user: dict, other_patient_user: dict, make_result
):
    record = await make_result(patient_id=patient_user["patient_id"])
    response = await client.get(
        f"/v1/test-results/{record.id}", headers=other_patient_user["headers"]
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Access denied to this test result"


@pytest.mark.asyncio
async def test_patient_cannot_read_provisional_record(
    client: AsyncClient, patient_user: dict, make_result
):
    orphan = await make_result(participant_id="P-2")
    response = await client.get(f"/v1/test-results/{orphan.id}", headers=patient_user["headers"])
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_record_is_404(client: AsyncClient, admin_user: dict):
    response = await client.get("/v1/test-results/does-not-exist", headers=admin_user["headers"])
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Download URLs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_download_url_for_stored_file(
    client: AsyncClient, patient_user: dict, make_result
):
    record = await make_result(
        patient_id=patient_user["patient_id"], files=(FileType.VIDEO, FileType.CSV)
    )
    response = await client.get(
        f"/v1/test-results/{record.id}/download/video", headers=patient_user["headers"]
    )
    assert response.status_code == 200
    data = response.json()
    assert data["fileType"] == "video"
    assert data["expiresIn"] == 900
    assert record.video_url in data["downloadUrl"]


@pytest.mark.asyncio
async def test_download_url_for_missing_file_is_404(
    client: AsyncClient, patient_user: dict, make_result
):
    record = await make_result(patient_id=patient_user["patient_id"], files=(FileType.CSV,))
    response = await client.get(
        f"/v1/test-results/{record.id}/download/questions", headers=patient_user["headers"]
    )
    assert response.status_code == 404
    assert response.json()["message"] == "questions file not found for this test result"


@pytest.mark.asyncio
async def test_download_with_unknown_file_type_is_400(
    client: AsyncClient, patient_user: dict, make_result
):
    record = await make_result(patient_id=patient_user["patient_id"])
    response = await client.get(
        f"/v1/test-results/{record.id}/download/audio", headers=patient_user["headers"]
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_can_download_provisional_file(
    client: AsyncClient, admin_user: dict, make_result
):
    orphan = await make_result(participant_id="P-3")
    response = await client.get(
        f"/v1/test-results/{orphan.id}/download/csv", headers=admin_user["headers"]
    )
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Admin patient view
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_admin_lists_a_patients_results(
    client: AsyncClient, admin_user: dict, patient_user: dict, make_result
):
    patient_id = patient_user["patient_id"]
    older = await make_result(
        patient_id=patient_id, test_date=datetime(2026, 1, 1, tzinfo=timezone.utc)
    )
    newer = await make_result(
        patient_id=patient_id, test_date=datetime(2026, 4, 1, tzinfo=timezone.utc)
    )

    response = await client.get(
        f"/v1/patients/{patient_id}/test-results", headers=admin_user["headers"]
    )
    assert response.status_code == 200
    data = response.json()
    assert [r["id"] for r in data["testResults"]] == [newer.id, older.id]
    assert data["pagination"]["limit"] == 20


@pytest.mark.asyncio
async def test_patient_view_requires_admin(client: AsyncClient, patient_user: dict):
    response = await client.get(
        f"/v1/patients/{patient_user['patient_id']}/test-results",
        headers=patient_user["headers"],
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_patient_view_unknown_patient_is_404(client: AsyncClient, admin_user: dict):
    response = await client.get(
        "/v1/patients/nobody/test-results", headers=admin_user["headers"]
    )
    assert response.status_code == 404
