"""
WATCHTOWER - Schema Validation Tests
====================================
Test Pydantic schemas and subject validation.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from watchtower.errors import SubjectValidationError
from watchtower.schemas.monitoring import SubjectCreate, SweepResponse, validate_subject_value
from watchtower.schemas.workflows import DispatchRequest, PollRequest, SearchData


class TestSubjectValidation:
    """Test per-type subject value validation."""

    def test_email_lowercased(self):
        assert validate_subject_value("email", "  Alice@Example.COM ") == "alice@example.com"

    def test_invalid_email(self):
        with pytest.raises(SubjectValidationError) as exc_info:
            validate_subject_value("email", "not-an-email")

        assert exc_info.value.to_dict() == {
            "field": "subject_value",
            "value": "not-an-email",
            "reason": "invalid email format",
        }

    def test_phone_normalized(self):
        assert validate_subject_value("phone", "+1 (555) 123-4567") == "+15551234567"

    def test_phone_too_short(self):
        with pytest.raises(SubjectValidationError):
            validate_subject_value("phone", "12345")

    def test_username(self):
        assert validate_subject_value("username", "jane.doe_99") == "jane.doe_99"

    def test_username_with_spaces_rejected(self):
        with pytest.raises(SubjectValidationError):
            validate_subject_value("username", "jane doe")

    def test_name_whitespace_collapsed(self):
        assert validate_subject_value("name", " Jane   Doe ") == "Jane Doe"

    def test_name_too_short(self):
        with pytest.raises(SubjectValidationError, match="name too short"):
            validate_subject_value("name", "J")

    def test_empty_value(self):
        with pytest.raises(SubjectValidationError, match="value is empty"):
            validate_subject_value("email", "   ")

    def test_unsupported_type(self):
        with pytest.raises(SubjectValidationError) as exc_info:
            validate_subject_value("ssn", "123-45-6789")

        assert exc_info.value.field == "subject_type"


class TestSubjectCreate:
    """Test subject creation schema."""

    def test_valid_subject_normalized(self):
        subject = SubjectCreate(user_id=uuid4(), subject_type="email", subject_value="Bob@Example.com")

        assert subject.subject_value == "bob@example.com"

    def test_malformed_value_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            SubjectCreate(user_id=uuid4(), subject_type="email", subject_value="bob-at-example")

        assert "invalid email format" in str(exc_info.value)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            SubjectCreate(user_id=uuid4(), subject_type="fax", subject_value="123")


class TestSweepResponse:
    """Test the sweep result wire shape."""

    def test_serialized_with_camel_case_alerts(self):
        response = SweepResponse(checked=3, new_alerts=2)

        assert response.model_dump(by_alias=True) == {
            "success": True,
            "checked": 3,
            "newAlerts": 2,
            "skipped": 0,
            "failed": 0,
        }


class TestWorkflowSchemas:
    """Test workflow request schemas."""

    def test_search_requires_one_field(self):
        with pytest.raises(ValidationError, match="At least one search parameter is required"):
            SearchData()

    def test_search_accepts_alias(self):
        assert SearchData(fullName="Jane Doe").full_name == "Jane Doe"
        assert SearchData(full_name="Jane Doe").full_name == "Jane Doe"

    def test_dispatch_request(self):
        request = DispatchRequest(investigation_id=uuid4(), search={"email": "jane@example.com"})

        assert request.search.email == "jane@example.com"

    def test_poll_request_requires_id(self):
        with pytest.raises(ValidationError):
            PollRequest(workorderid="")
