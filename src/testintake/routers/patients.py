"""Admin view of a patient's assigned test results."""

from fastapi import APIRouter, Depends, Query

from testintake.dependencies import get_result_service, verify_caller
from testintake.routers.test_results import page_response
from testintake.schemas.test_result import TestResultList
from testintake.services.identity import Caller
from testintake.services.paging import Pagination
from testintake.services.results import TestResultService
from testintake.services.test_types import normalize_test_type

router = APIRouter(prefix="/v1/patients", tags=["patients"])


@router.get("/{patient_id}/test-results", response_model=TestResultList)
async def list_patient_test_results(
    patient_id: str,
    test_type: str | None = Query(default=None, alias="testType"),
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(verify_caller),
    service: TestResultService = Depends(get_result_service),
) -> TestResultList:
    page = await service.list_for_patient(
        caller,
        patient_id,
        test_type=normalize_test_type(test_type) if test_type else None,
        pagination=Pagination(limit=limit, offset=offset),
    )
    return page_response(page)
