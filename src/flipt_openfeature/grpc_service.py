"""gRPC transport for the Flipt service."""

import logging
import threading
from typing import Any, Callable, Mapping, Optional

import grpc
from openfeature.exception import FlagNotFoundError, GeneralError

from flipt_openfeature.messages import (
    EvaluationResponse,
    Flag,
    FliptStub,
    GetFlagRequest,
)
from flipt_openfeature.service import (
    DEFAULT_GRPC_ADDRESS,
    DEFAULT_TIMEOUT,
    build_evaluation_request,
)

logger = logging.getLogger(__name__)

_SCHEME_PREFIX = "grpc://"


class GRPCService:
    """Flipt service over gRPC.

    The channel is created on first use. Supplying ``certificate_path`` switches
    to a TLS channel trusting the given PEM root certificates.
    """

    def __init__(
        self,
        address: str = DEFAULT_GRPC_ADDRESS,
        certificate_path: Optional[str] = None,
        channel: Optional[grpc.Channel] = None,
    ) -> None:
        """Initialize the gRPC service.

        Args:
            address: Target as ``host:port``, optionally prefixed with ``grpc://``.
            certificate_path: Optional path to PEM encoded root certificates.
            channel: Optional gRPC channel for testing. If not provided, one is
                created for ``address`` on first use.
        """
        if address.startswith(_SCHEME_PREFIX):
            address = address[len(_SCHEME_PREFIX) :]
        self._address = address
        self._certificate_path = certificate_path

        self._channel = channel
        self._owns_channel = channel is None
        self._stub: Optional[FliptStub] = None
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        """Return the gRPC target."""
        return self._address

    def _create_channel(self) -> grpc.Channel:
        if not self._certificate_path:
            return grpc.insecure_channel(self._address)

        try:
            with open(self._certificate_path, "rb") as f:
                root_certificates = f.read()
        except OSError as e:
            raise GeneralError(f"loading TLS credentials: {e}") from e

        return grpc.secure_channel(
            self._address,
            grpc.ssl_channel_credentials(root_certificates=root_certificates),
        )

    def _get_stub(self) -> FliptStub:
        with self._lock:
            if self._stub is None:
                if self._channel is None:
                    self._channel = self._create_channel()
                self._stub = FliptStub(self._channel)
            return self._stub

    @staticmethod
    def _call(
        method: Callable[..., Any],
        request: Any,
        flag_key: str,
        action: str,
        timeout: float,
    ) -> Any:
        """Invoke a unary RPC, classifying the status on failure."""
        try:
            return method(request, timeout=timeout)
        except grpc.RpcError as e:
            if e.code() == grpc.StatusCode.NOT_FOUND:
                raise FlagNotFoundError(f'flag "{flag_key}" not found') from e
            raise GeneralError(f"{action}: {e.details()}") from e

    def get_flag(
        self,
        namespace_key: str,
        flag_key: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Flag:
        """Fetch a flag.

        Raises:
            FlagNotFoundError: On a NOT_FOUND status.
            GeneralError: On any other status, including an expired deadline.
        """
        stub = self._get_stub()
        request = GetFlagRequest(key=flag_key, namespace_key=namespace_key)
        logger.debug("GetFlag %s/%s", namespace_key, flag_key)
        return self._call(stub.GetFlag, request, flag_key, "getting flag", timeout)

    def evaluate(
        self,
        namespace_key: str,
        flag_key: str,
        eval_ctx: Optional[Mapping[str, Any]],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> EvaluationResponse:
        """Evaluate a flag.

        Raises:
            InvalidContextError: If ``eval_ctx`` is None.
            TargetingKeyMissingError: If ``targetingKey`` is missing or empty.
            FlagNotFoundError: On a NOT_FOUND status.
            GeneralError: On any other status, including an expired deadline.
        """
        request = build_evaluation_request(namespace_key, flag_key, eval_ctx)
        stub = self._get_stub()
        logger.debug("Evaluate %s/%s", namespace_key, flag_key)
        return self._call(stub.Evaluate, request, flag_key, "evaluating", timeout)

    def close(self) -> None:
        """Close the channel if this service created it."""
        with self._lock:
            if self._owns_channel and self._channel is not None:
                self._channel.close()
                self._channel = None
                self._stub = None
