"""Flipt OpenFeature provider implementation.

This module provides the FliptProvider class that implements the OpenFeature
AbstractProvider interface on top of a remote Flipt server. Every resolution
fetches the flag, checks that it is enabled, asks Flipt to evaluate it and
coerces the returned string value into the requested type.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from google.protobuf import json_format, struct_pb2
from openfeature.evaluation_context import EvaluationContext
from openfeature.exception import ErrorCode, OpenFeatureError
from openfeature.flag_evaluation import FlagResolutionDetails, Reason
from openfeature.hook import Hook
from openfeature.provider import AbstractProvider, Metadata

from flipt_openfeature.messages import EvaluationResponse
from flipt_openfeature.service import (
    DEFAULT_ADDRESS,
    DEFAULT_TIMEOUT,
    TARGETING_KEY,
    Service,
    new_service,
    split_namespace_and_flag,
)

# Type variable for generic resolution
T = TypeVar("T")

logger = logging.getLogger(__name__)

# Literals accepted for boolean flags
_BOOLEAN_LITERALS = {
    "1": True,
    "t": True,
    "T": True,
    "TRUE": True,
    "true": True,
    "True": True,
    "0": False,
    "f": False,
    "F": False,
    "FALSE": False,
    "false": False,
    "False": False,
}

_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _parse_integer(value: str) -> int:
    """Parse a signed base-10 64-bit integer literal."""
    if not _INTEGER_PATTERN.fullmatch(value):
        raise ValueError(f"invalid integer literal: {value!r}")
    result = int(value)
    if not _INT64_MIN <= result <= _INT64_MAX:
        raise ValueError(f"integer out of range: {value!r}")
    return result


def _parse_float(value: str) -> float:
    """Parse a float literal, rejecting padding, separators and overflow."""
    if not value or value != value.strip() or "_" in value:
        raise ValueError(f"invalid float literal: {value!r}")
    result = float(value)
    if math.isinf(result) and "inf" not in value.lower():
        raise ValueError(f"float out of range: {value!r}")
    return result


class FliptProvider(AbstractProvider):
    """Flipt OpenFeature provider.

    Resolves flags against a Flipt server over HTTP or gRPC, chosen from the
    scheme of ``address``. Nothing is cached: each resolution performs a
    flag lookup followed by an evaluation.

    Attributes:
        PROVIDER_NAME: The name of this provider.
    """

    PROVIDER_NAME = "flipt-provider"

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        certificate_path: Optional[str] = None,
        service: Optional[Service] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the Flipt provider.

        Args:
            address: Flipt address. ``http://`` and ``https://`` addresses use
                the REST API, anything else (``host:port``) uses gRPC.
            certificate_path: Optional PEM root certificates (gRPC only).
            service: Optional service for testing; replaces the transport
                built from ``address``.
            timeout: Deadline in seconds applied to each call to Flipt.
        """
        self._address = address
        self._certificate_path = certificate_path
        self._timeout = timeout

        if service is not None:
            self._service: Service = service
            self._owns_service = False
        else:
            self._service = new_service(address, certificate_path)
            self._owns_service = True

    def get_metadata(self) -> Metadata:
        """Get provider metadata.

        Returns:
            Metadata with the provider name.
        """
        return Metadata(name=self.PROVIDER_NAME)

    def get_provider_hooks(self) -> List[Hook]:
        return []

    def initialize(self, evaluation_context: EvaluationContext) -> None:
        logger.info("FliptProvider initialized for %s", self._address)

    def shutdown(self) -> None:
        """Shutdown the provider, closing a transport it created."""
        if self._owns_service:
            self._service.close()
        logger.info("FliptProvider shutdown complete")

    def resolve_boolean_details(
        self,
        flag_key: str,
        default_value: bool,
        evaluation_context: Optional[EvaluationContext] = None,
    ) -> FlagResolutionDetails[bool]:
        """Resolve a boolean flag.

        A match without a value is the legacy boolean form and resolves to
        True with the default reason.
        """
        return self._resolve_typed(
            flag_key, default_value, evaluation_context, self._to_boolean
        )

    def resolve_string_details(
        self,
        flag_key: str,
        default_value: str,
        evaluation_context: Optional[EvaluationContext] = None,
    ) -> FlagResolutionDetails[str]:
        """Resolve a string flag."""
        return self._resolve_typed(
            flag_key, default_value, evaluation_context, self._to_string
        )

    def resolve_integer_details(
        self,
        flag_key: str,
        default_value: int,
        evaluation_context: Optional[EvaluationContext] = None,
    ) -> FlagResolutionDetails[int]:
        """Resolve an integer flag."""
        return self._resolve_typed(
            flag_key, default_value, evaluation_context, self._to_integer
        )

    def resolve_float_details(
        self,
        flag_key: str,
        default_value: float,
        evaluation_context: Optional[EvaluationContext] = None,
    ) -> FlagResolutionDetails[float]:
        """Resolve a float flag."""
        return self._resolve_typed(
            flag_key, default_value, evaluation_context, self._to_float
        )

    def resolve_object_details(
        self,
        flag_key: str,
        default_value: Dict[str, Any],
        evaluation_context: Optional[EvaluationContext] = None,
    ) -> FlagResolutionDetails[Dict[str, Any]]:
        """Resolve an object flag from the variant attachment."""
        return self._resolve_typed(
            flag_key, default_value, evaluation_context, self._to_object
        )

    def _resolve_typed(
        self,
        flag_key: str,
        default_value: T,
        evaluation_context: Optional[EvaluationContext],
        convert: Callable[[EvaluationResponse, T], FlagResolutionDetails[T]],
    ) -> FlagResolutionDetails[T]:
        """Generic typed resolution: evaluate, then convert a match."""
        response, details = self._evaluate(flag_key, default_value, evaluation_context)
        if details is not None:
            return details
        return convert(response, default_value)

    def _evaluate(
        self,
        flag_key: str,
        default_value: Any,
        evaluation_context: Optional[EvaluationContext],
    ) -> Tuple[Optional[EvaluationResponse], Optional[FlagResolutionDetails[Any]]]:
        """Core resolution logic for all flag types.

        Args:
            flag_key: The flag identifier, ``namespace/key`` or ``key``.
            default_value: The default value.
            evaluation_context: The evaluation context.

        Returns:
            Either a matching evaluation response, or the final details when
            resolution stops early (error, disabled flag or no match).
        """
        if evaluation_context is None:
            return None, self._failure(
                default_value, ErrorCode.INVALID_CONTEXT, "evalCtx is nil"
            )

        eval_ctx = self._flatten_context(evaluation_context)
        if not eval_ctx.get(TARGETING_KEY):
            return None, self._failure(
                default_value,
                ErrorCode.TARGETING_KEY_MISSING,
                "targetingKey is missing",
            )

        namespace_key, key = split_namespace_and_flag(flag_key)

        flag, details = self._call(
            default_value, self._service.get_flag, namespace_key, key
        )
        if details is not None:
            return None, details

        if not flag.enabled:
            return None, FlagResolutionDetails(
                value=default_value, reason=Reason.DISABLED
            )

        response, details = self._call(
            default_value, self._service.evaluate, namespace_key, key, eval_ctx
        )
        if details is not None:
            return None, details

        if not response.match:
            return None, FlagResolutionDetails(
                value=default_value, reason=Reason.DEFAULT
            )

        return response, None

    def _call(
        self,
        default_value: Any,
        operation: Callable[..., Any],
        *args: Any,
    ) -> Tuple[Any, Optional[FlagResolutionDetails[Any]]]:
        """Run a service operation, turning failures into resolution details."""
        try:
            return operation(*args, timeout=self._timeout), None
        except OpenFeatureError as e:
            logger.warning(
                "Flipt request failed (%s): %s", e.error_code, e.error_message
            )
            return None, self._failure(default_value, e.error_code, e.error_message)
        except Exception as e:
            logger.error("Unexpected error calling Flipt: %s", e)
            return None, self._failure(default_value, ErrorCode.GENERAL, str(e))

    @staticmethod
    def _failure(
        default_value: Any,
        error_code: ErrorCode,
        error_message: Optional[str],
        reason: Reason = Reason.DEFAULT,
    ) -> FlagResolutionDetails[Any]:
        return FlagResolutionDetails(
            value=default_value,
            reason=reason,
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def _flatten_context(context: EvaluationContext) -> Dict[str, Any]:
        """Flatten an EvaluationContext into a single mapping.

        The targeting key is stored under ``targetingKey`` next to the
        attributes.
        """
        flat: Dict[str, Any] = dict(context.attributes or {})
        if context.targeting_key:
            flat[TARGETING_KEY] = context.targeting_key
        return flat

    @classmethod
    def _to_boolean(
        cls, response: EvaluationResponse, default_value: bool
    ) -> FlagResolutionDetails[bool]:
        if not response.value:
            return FlagResolutionDetails(value=True, reason=Reason.DEFAULT)

        if response.value not in _BOOLEAN_LITERALS:
            return cls._failure(
                default_value, ErrorCode.TYPE_MISMATCH, "value is not a boolean"
            )

        return FlagResolutionDetails(
            value=_BOOLEAN_LITERALS[response.value],
            reason=Reason.TARGETING_MATCH,
        )

    @staticmethod
    def _to_string(
        response: EvaluationResponse, default_value: str
    ) -> FlagResolutionDetails[str]:
        return FlagResolutionDetails(
            value=response.value, reason=Reason.TARGETING_MATCH
        )

    @classmethod
    def _to_integer(
        cls, response: EvaluationResponse, default_value: int
    ) -> FlagResolutionDetails[int]:
        try:
            value = _parse_integer(response.value)
        except ValueError:
            return cls._failure(
                default_value,
                ErrorCode.TYPE_MISMATCH,
                "value is not an integer",
                reason=Reason.ERROR,
            )

        return FlagResolutionDetails(value=value, reason=Reason.TARGETING_MATCH)

    @classmethod
    def _to_float(
        cls, response: EvaluationResponse, default_value: float
    ) -> FlagResolutionDetails[float]:
        try:
            value = _parse_float(response.value)
        except ValueError:
            return cls._failure(
                default_value,
                ErrorCode.TYPE_MISMATCH,
                "value is not a float",
                reason=Reason.ERROR,
            )

        return FlagResolutionDetails(value=value, reason=Reason.TARGETING_MATCH)

    @classmethod
    def _to_object(
        cls, response: EvaluationResponse, default_value: Dict[str, Any]
    ) -> FlagResolutionDetails[Dict[str, Any]]:
        # The variant key is reported even when the variant has no attachment.
        if not response.attachment:
            return FlagResolutionDetails(
                value=default_value,
                reason=Reason.DEFAULT,
                variant=response.value,
            )

        try:
            struct = json_format.Parse(response.attachment, struct_pb2.Struct())
        except json_format.ParseError:
            return cls._failure(
                default_value,
                ErrorCode.TYPE_MISMATCH,
                f"value is not an object: {response.attachment!r}",
                reason=Reason.ERROR,
            )

        return FlagResolutionDetails(
            value=json_format.MessageToDict(struct),
            reason=Reason.TARGETING_MATCH,
            variant=response.value,
        )
