"""Service contract between the provider and a Flipt backend.

A service reaches exactly one Flipt instance and exposes two operations,
fetching a flag and evaluating it against a context. Backend failures are
reported through the OpenFeature exception hierarchy so that the provider
can read the error kind from ``OpenFeatureError.error_code`` without knowing
anything about the transport.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from openfeature.exception import InvalidContextError, TargetingKeyMissingError

from flipt_openfeature.messages import EvaluationRequest, EvaluationResponse, Flag

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "http://localhost:8080"
DEFAULT_GRPC_ADDRESS = "localhost:9000"
DEFAULT_NAMESPACE = "default"
DEFAULT_TIMEOUT = 30.0

# Reserved evaluation context keys
TARGETING_KEY = "targetingKey"
REQUEST_ID = "requestID"

# gRPC status code reported by Flipt for missing flags
NOT_FOUND_CODE = 5


@runtime_checkable
class Service(Protocol):
    """Protocol for Flipt backend access."""

    def get_flag(
        self,
        namespace_key: str,
        flag_key: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Flag:
        """Fetch a flag.

        Args:
            namespace_key: The namespace the flag lives in.
            flag_key: The flag key.
            timeout: Deadline for the call in seconds.

        Raises:
            FlagNotFoundError: If the backend reports the flag as missing.
            GeneralError: For any other failure.
        """
        ...

    def evaluate(
        self,
        namespace_key: str,
        flag_key: str,
        eval_ctx: Optional[Mapping[str, Any]],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> EvaluationResponse:
        """Evaluate a flag for the entity described by ``eval_ctx``.

        Args:
            namespace_key: The namespace the flag lives in.
            flag_key: The flag key.
            eval_ctx: Flattened evaluation context, must hold ``targetingKey``.
            timeout: Deadline for the call in seconds.

        Raises:
            InvalidContextError: If ``eval_ctx`` is None.
            TargetingKeyMissingError: If ``targetingKey`` is missing or empty.
            FlagNotFoundError: If the backend reports the flag as missing.
            GeneralError: For any other failure.
        """
        ...

    def close(self) -> None:
        """Release transport resources owned by the service."""
        ...


def split_namespace_and_flag(flag: str) -> Tuple[str, str]:
    """Split ``namespace/key`` into its parts.

    Identifiers without a separator live in the default namespace.
    """
    namespace, sep, flag_key = flag.partition("/")
    if sep:
        return namespace, flag_key
    return DEFAULT_NAMESPACE, flag


def stringify(value: Any) -> str:
    """Render a context value the way the backend expects it.

    The wire format is a flat string map, so numbers, lists and nested
    mappings lose their type here.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def convert_context(eval_ctx: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Convert a flattened evaluation context into the backend's string map.

    Raises:
        InvalidContextError: If ``eval_ctx`` is None.
        TargetingKeyMissingError: If ``targetingKey`` is missing or empty.
    """
    if eval_ctx is None:
        raise InvalidContextError("evalCtx is nil")

    context = {key: stringify(value) for key, value in eval_ctx.items()}
    if not context.get(TARGETING_KEY):
        raise TargetingKeyMissingError("targetingKey is missing")
    return context


def build_evaluation_request(
    namespace_key: str,
    flag_key: str,
    eval_ctx: Optional[Mapping[str, Any]],
) -> EvaluationRequest:
    """Build the evaluation request shared by every transport."""
    context = convert_context(eval_ctx)
    return EvaluationRequest(
        request_id=context.get(REQUEST_ID, ""),
        flag_key=flag_key,
        entity_id=context[TARGETING_KEY],
        context=context,
        namespace_key=namespace_key,
    )


def new_service(
    address: str = DEFAULT_ADDRESS,
    certificate_path: Optional[str] = None,
) -> Service:
    """Create the transport matching ``address``.

    ``http://`` and ``https://`` addresses get the HTTP transport, anything
    else is treated as a gRPC target.
    """
    if address.startswith(("http://", "https://")):
        from flipt_openfeature.http_service import HTTPService

        if certificate_path:
            logger.warning("Certificate path is ignored by the HTTP transport")
        return HTTPService(address=address)

    from flipt_openfeature.grpc_service import GRPCService

    return GRPCService(address=address, certificate_path=certificate_path)
