"""Tests for error handling and response envelopes.

Verifies:
- Error envelope shape is correct
- Every error code maps to correct HTTP status
- Unknown exceptions return E_INTERNAL with 500
- Malformed JSON returns E_INVALID_REQUEST
- Queue rejections that reach a route return 503 E_QUEUE_FULL
- Framework routing errors keep their status inside the envelope
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hearth.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    QueueFullError,
)
from hearth.responses import (
    FRAMEWORK_STATUS_CODES,
    error_response,
    register_exception_handlers,
    success_response,
)
from tests.helpers import auth_headers


class TestErrorResponse:
    """Tests for error response envelope format."""

    def test_error_response_has_correct_shape(self):
        """Error response contains error object with code and message."""
        response = error_response(ApiErrorCode.E_NOT_FOUND, "Resource not found")

        assert response["error"]["code"] == "E_NOT_FOUND"
        assert response["error"]["message"] == "Resource not found"

    def test_error_response_code_is_string(self):
        """Error code in response is a string, not enum."""
        response = error_response(ApiErrorCode.E_FORBIDDEN, "Access denied")

        assert isinstance(response["error"]["code"], str)

    def test_request_id_omitted_outside_requests(self):
        """No request in context means no request_id key."""
        response = error_response(ApiErrorCode.E_INTERNAL, "boom")

        assert "request_id" not in response["error"]

    def test_explicit_request_id(self):
        response = error_response(ApiErrorCode.E_INTERNAL, "boom", request_id="req-1")

        assert response["error"]["request_id"] == "req-1"


class TestSuccessResponse:
    """Tests for success response envelope format."""

    def test_success_response_has_data_key(self):
        """Success response wraps data in 'data' key."""
        response = success_response({"id": 1, "name": "test"})

        assert response == {"data": {"id": 1, "name": "test"}}

    def test_success_response_with_list(self):
        """Success response works with list data."""
        items = [{"id": 1}, {"id": 2}]

        assert success_response(items)["data"] == items


class TestErrorCodeToStatus:
    """Tests for error code to HTTP status mapping."""

    def test_all_error_codes_have_status_mapping(self):
        """Every ApiErrorCode has a corresponding HTTP status."""
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS, f"Missing status mapping for {code}"

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_FORBIDDEN, 403),
            (ApiErrorCode.E_ORIGIN_FORBIDDEN, 403),
            (ApiErrorCode.E_DEVICE_TOKEN_OWNED, 403),
            (ApiErrorCode.E_NOT_FOUND, 404),
            (ApiErrorCode.E_MESSAGE_NOT_FOUND, 404),
            (ApiErrorCode.E_PHOTO_NOT_FOUND, 404),
            (ApiErrorCode.E_DEVICE_TOKEN_NOT_FOUND, 404),
            (ApiErrorCode.E_INVALID_REQUEST, 400),
            (ApiErrorCode.E_FILE_TOO_LARGE, 400),
            (ApiErrorCode.E_INVALID_FILE_TYPE, 400),
            (ApiErrorCode.E_QUEUE_FULL, 503),
            (ApiErrorCode.E_INTERNAL, 500),
            (ApiErrorCode.E_STORAGE_ERROR, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        """Each error code maps to the expected HTTP status."""
        assert ERROR_CODE_TO_STATUS[code] == expected_status


class TestApiErrorClass:
    """Tests for ApiError exception class."""

    def test_api_error_derives_status_code(self):
        """ApiError derives HTTP status from code."""
        error = ApiError(ApiErrorCode.E_FORBIDDEN, "Access denied")

        assert error.code == ApiErrorCode.E_FORBIDDEN
        assert error.message == "Access denied"
        assert error.status_code == 403

    def test_subclass_defaults(self):
        """NotFoundError, ForbiddenError and InvalidRequestError have sensible defaults."""
        assert NotFoundError().status_code == 404
        assert ForbiddenError().status_code == 403
        assert InvalidRequestError().code == ApiErrorCode.E_INVALID_REQUEST

    def test_queue_full_error_message(self):
        error = QueueFullError("media", 100)

        assert str(error) == "media queue is full (capacity 100)"

    def test_queue_full_error_is_an_api_error(self):
        """A queue rejection carries its own code and status."""
        error = QueueFullError("push", 5)

        assert isinstance(error, ApiError)
        assert error.code == ApiErrorCode.E_QUEUE_FULL
        assert error.status_code == 503
        assert (error.queue_name, error.capacity) == ("push", 5)


class TestMalformedJsonHandling:
    """Tests for malformed JSON body handling."""

    def test_malformed_json_returns_400(self, client: TestClient, family):
        """Malformed JSON body returns 400 with E_INVALID_REQUEST."""
        response = client.post(
            "/api/chat/messages",
            content="{invalid json",
            headers={**auth_headers(family[0].id), "content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unknown_route_is_404_envelope(self, client: TestClient, family):
        response = client.get("/api/nope", headers=auth_headers(family[0].id))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"

    def test_wrong_method_keeps_405(self, client: TestClient, family):
        response = client.put("/api/chat/messages", headers=auth_headers(family[0].id))

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unmapped_framework_status_is_internal(self):
        assert 418 not in FRAMEWORK_STATUS_CODES
        assert FRAMEWORK_STATUS_CODES[413] == ApiErrorCode.E_FILE_TOO_LARGE


class TestUnhandledExceptionHandling:
    """Tests for unhandled exception handling."""

    def _crashing_app(self, exc: Exception) -> TestClient:
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise exc

        register_exception_handlers(test_app)
        return TestClient(test_app, raise_server_exceptions=False)

    def test_unhandled_exception_returns_500_with_e_internal(self):
        """Unhandled exceptions return 500 with E_INTERNAL code."""
        response = self._crashing_app(RuntimeError("Unexpected error")).get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "Internal server error" in response.json()["error"]["message"]

    def test_unhandled_exception_does_not_leak_details(self):
        """Unhandled exceptions do not leak stack traces or details."""
        response = self._crashing_app(RuntimeError("SECRET_INTERNAL_DETAIL")).get("/crash")

        assert "SECRET_INTERNAL_DETAIL" not in response.text

    def test_queue_full_returns_503(self):
        response = self._crashing_app(QueueFullError("push", 5)).get("/crash")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "E_QUEUE_FULL"
        assert response.json()["error"]["message"] == "push queue is full (capacity 5)"

    def test_api_error_renders_its_status(self):
        response = self._crashing_app(NotFoundError()).get("/crash")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"
        assert response.json()["error"]["message"] == "Not found"
