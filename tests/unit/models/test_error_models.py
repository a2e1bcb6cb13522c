"""Tests for error response models."""

from __future__ import annotations

from models.error_models import ErrorCode, ErrorResponse, WebSocketError, get_status_code


class TestErrorModels:
    def test_status_codes(self) -> None:
        assert get_status_code(ErrorCode.SESSION_NOT_FOUND) == 404
        assert get_status_code(ErrorCode.GENERATION_IN_PROGRESS) == 409
        assert get_status_code(ErrorCode.UPSTREAM_FAILURE) == 502
        assert get_status_code(ErrorCode.TRANSPORT_DISCONNECTED) == 500

    def test_error_response_envelope(self) -> None:
        data = ErrorResponse(code=ErrorCode.SESSION_NOT_FOUND, message="nope", request_id="req_1").to_dict()
        assert data["error"]["code"] == "SES_4001"
        assert data["error"]["request_id"] == "req_1"
        assert "timestamp" in data["error"]
        assert "debug" not in data["error"]

    def test_debug_only_when_requested(self) -> None:
        response = ErrorResponse(code=ErrorCode.INTERNAL_ERROR, message="x", debug={"trace": "..."})
        assert "debug" not in response.to_dict()["error"]
        assert response.to_dict(include_debug=True)["error"]["debug"] == {"trace": "..."}

    def test_websocket_error_frame(self) -> None:
        frame = WebSocketError(code=ErrorCode.WS_RATE_LIMITED, message="slow down", message_id="m1").to_dict()
        assert frame == {
            "type": "error",
            "code": "WS_6005",
            "message": "slow down",
            "recoverable": True,
            "messageId": "m1",
        }
