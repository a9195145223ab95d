"""Tests for testintake.schemas.test_result request models."""

import pytest
from pydantic import ValidationError

from testintake.models import FileType
from testintake.schemas.test_result import (
    ConfirmUploadRequest,
    MultipartPartUrlsRequest,
    PresignedUploadRequest,
)


def _file(file_type: str = "csv") -> dict:
    return {"fileType": file_type, "contentType": "text/csv", "fileName": "r.csv"}


class TestPresignedUploadRequest:
    def test_accepts_camel_case(self):
        req = PresignedUploadRequest.model_validate(
            {"testId": "t-1", "testType": "BPPV", "files": [_file()], "participantId": "P-1"}
        )
        assert req.test_id == "t-1"
        assert req.participant_id == "P-1"
        assert req.files[0].file_type is FileType.CSV

    def test_accepts_snake_case(self):
        req = PresignedUploadRequest(test_id="t-1", test_type="BPPV", files=[_file()])
        assert req.participant_id is None

    def test_requires_at_least_one_file(self):
        with pytest.raises(ValidationError):
            PresignedUploadRequest.model_validate(
                {"testId": "t-1", "testType": "BPPV", "files": []}
            )

    def test_rejects_duplicate_file_types(self):
        with pytest.raises(ValidationError, match="only once"):
            PresignedUploadRequest.model_validate(
                {"testId": "t-1", "testType": "BPPV", "files": [_file(), _file()]}
            )

    def test_rejects_blank_test_id(self):
        with pytest.raises(ValidationError):
            PresignedUploadRequest.model_validate(
                {"testId": "", "testType": "BPPV", "files": [_file()]}
            )


class TestConfirmUploadRequest:
    def test_uploaded_files_map_to_file_types(self):
        req = ConfirmUploadRequest.model_validate(
            {
                "testId": "t-1",
                "testType": "BPPV",
                "testDate": "2026-03-14T09:30:00Z",
                "uploadedFiles": {"video": {"key": "k/v.mp4"}, "questions": {"key": "k/q.json"}},
            }
        )
        assert req.uploaded_files.keys() == {
            FileType.VIDEO: "k/v.mp4",
            FileType.QUESTIONS: "k/q.json",
        }
        assert req.metadata is None

    def test_requires_uploaded_files(self):
        with pytest.raises(ValidationError):
            ConfirmUploadRequest.model_validate(
                {"testId": "t-1", "testType": "BPPV", "testDate": "2026-03-14T09:30:00Z"}
            )


def test_part_numbers_must_be_in_s3_range():
    with pytest.raises(ValidationError):
        MultipartPartUrlsRequest.model_validate(
            {"key": "k", "uploadId": "u", "partNumbers": [1, 10001]}
        )
