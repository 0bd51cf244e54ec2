"""Tests for the gRPC transport."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import grpc
import pytest
from openfeature.exception import (
    ErrorCode,
    FlagNotFoundError,
    GeneralError,
    InvalidContextError,
    TargetingKeyMissingError,
)

from flipt_openfeature.grpc_service import GRPCService
from flipt_openfeature.messages import EvaluationResponse, Flag
from tests.conftest import ENTITY_ID, REQUEST_ID

STUB_PATH = "flipt_openfeature.grpc_service.FliptStub"

EVAL_CTX = {"requestID": REQUEST_ID, "targetingKey": ENTITY_ID}


class FakeRpcError(grpc.RpcError):
    """RpcError carrying a status, as raised by a failed unary call."""

    def __init__(self, code: grpc.StatusCode, details: str) -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class TestNew:
    """Test GRPCService creation."""

    def test_default_address(self) -> None:
        assert GRPCService().address == "localhost:9000"

    def test_scheme_prefix_stripped(self) -> None:
        assert GRPCService("grpc://flipt:9000").address == "flipt:9000"

    def test_channel_created_lazily(self) -> None:
        with patch("flipt_openfeature.grpc_service.grpc.insecure_channel") as insecure:
            service = GRPCService("flipt:9000")
            insecure.assert_not_called()

            with patch(STUB_PATH) as stub_cls:
                stub_cls.return_value.GetFlag.return_value = Flag(key="foo")
                service.get_flag("default", "foo")
                service.get_flag("default", "foo")

        insecure.assert_called_once_with("flipt:9000")
        stub_cls.assert_called_once_with(insecure.return_value)

    def test_certificate_path_uses_tls(self, tmp_path: Path) -> None:
        cert = tmp_path / "ca.pem"
        cert.write_bytes(b"-----BEGIN CERTIFICATE-----")

        with patch(
            "flipt_openfeature.grpc_service.grpc.ssl_channel_credentials"
        ) as credentials, patch(
            "flipt_openfeature.grpc_service.grpc.secure_channel"
        ) as secure, patch(STUB_PATH) as stub_cls:
            stub_cls.return_value.GetFlag.return_value = Flag(key="foo")
            GRPCService("flipt:9000", certificate_path=str(cert)).get_flag(
                "default", "foo"
            )

        credentials.assert_called_once_with(
            root_certificates=b"-----BEGIN CERTIFICATE-----"
        )
        secure.assert_called_once_with("flipt:9000", credentials.return_value)

    def test_missing_certificate(self, tmp_path: Path) -> None:
        service = GRPCService(certificate_path=str(tmp_path / "missing.pem"))

        with pytest.raises(GeneralError) as exc_info:
            service.get_flag("default", "foo")

        assert exc_info.value.error_message.startswith("loading TLS credentials")


class TestGetFlag:
    """Test fetching flags."""

    def test_success(self) -> None:
        mock_stub = MagicMock()
        mock_stub.GetFlag.return_value = Flag(
            key="foo",
            name="Flag Name",
            description="Flag Description",
            namespace_key="foo-namespace",
            enabled=True,
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            flag = service.get_flag("foo-namespace", "foo", timeout=5.0)

        assert flag.key == "foo"
        assert flag.name == "Flag Name"
        assert flag.description == "Flag Description"
        assert flag.namespace_key == "foo-namespace"
        assert flag.enabled is True

        call_args = mock_stub.GetFlag.call_args
        request = call_args[0][0]
        assert request.key == "foo"
        assert request.namespace_key == "foo-namespace"
        assert call_args[1]["timeout"] == 5.0

    def test_flag_not_found(self) -> None:
        mock_stub = MagicMock()
        mock_stub.GetFlag.side_effect = FakeRpcError(
            grpc.StatusCode.NOT_FOUND, 'flag "foo" not found'
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(FlagNotFoundError) as exc_info:
                service.get_flag("foo-namespace", "foo")

        assert exc_info.value.error_code == ErrorCode.FLAG_NOT_FOUND
        assert exc_info.value.error_message == 'flag "foo" not found'

    def test_other_error(self) -> None:
        mock_stub = MagicMock()
        mock_stub.GetFlag.side_effect = FakeRpcError(
            grpc.StatusCode.INTERNAL, "internal error"
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(GeneralError) as exc_info:
                service.get_flag("foo-namespace", "foo")

        assert exc_info.value.error_code == ErrorCode.GENERAL
        assert "internal error" in exc_info.value.error_message

    def test_deadline_exceeded(self) -> None:
        """An expired deadline surfaces as a general error."""
        mock_stub = MagicMock()
        mock_stub.GetFlag.side_effect = FakeRpcError(
            grpc.StatusCode.DEADLINE_EXCEEDED, "Deadline Exceeded"
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(GeneralError) as exc_info:
                service.get_flag("foo-namespace", "foo", timeout=0.01)

        assert exc_info.value.error_message == "getting flag: Deadline Exceeded"


class TestEvaluate:
    """Test flag evaluation."""

    def test_success(self) -> None:
        mock_stub = MagicMock()
        mock_stub.Evaluate.return_value = EvaluationResponse(
            flag_key="foo", match=True, segment_key="foo-segment"
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            response = service.evaluate("foo-namespace", "foo", EVAL_CTX)

        assert response.flag_key == "foo"
        assert response.match is True
        assert response.segment_key == "foo-segment"

        request = mock_stub.Evaluate.call_args[0][0]
        assert request.flag_key == "foo"
        assert request.namespace_key == "foo-namespace"
        assert request.request_id == REQUEST_ID
        assert request.entity_id == ENTITY_ID
        assert dict(request.context) == {
            "requestID": REQUEST_ID,
            "targetingKey": ENTITY_ID,
        }

    def test_flag_not_found(self) -> None:
        mock_stub = MagicMock()
        mock_stub.Evaluate.side_effect = FakeRpcError(
            grpc.StatusCode.NOT_FOUND, 'flag "foo" not found'
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(FlagNotFoundError):
                service.evaluate("foo-namespace", "foo", EVAL_CTX)

    def test_other_error(self) -> None:
        mock_stub = MagicMock()
        mock_stub.Evaluate.side_effect = FakeRpcError(
            grpc.StatusCode.INTERNAL, "internal error"
        )

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(GeneralError) as exc_info:
                service.evaluate("foo-namespace", "foo", EVAL_CTX)

        assert exc_info.value.error_message == "evaluating: internal error"

    def test_invalid_context(self) -> None:
        mock_stub = MagicMock()

        with patch(STUB_PATH, return_value=mock_stub):
            service = GRPCService(channel=MagicMock())
            with pytest.raises(InvalidContextError):
                service.evaluate("foo-namespace", "foo", None)
            with pytest.raises(TargetingKeyMissingError):
                service.evaluate("foo-namespace", "foo", {})

        mock_stub.Evaluate.assert_not_called()


class TestClose:
    """Test channel ownership."""

    def test_injected_channel_left_open(self) -> None:
        channel = MagicMock()

        with patch(STUB_PATH):
            service = GRPCService(channel=channel)
            service.get_flag("default", "foo")
            service.close()

        channel.close.assert_not_called()

    def test_owned_channel_closed(self) -> None:
        with patch(
            "flipt_openfeature.grpc_service.grpc.insecure_channel"
        ) as insecure, patch(STUB_PATH):
            service = GRPCService()
            service.get_flag("default", "foo")
            service.close()

        insecure.return_value.close.assert_called_once()
