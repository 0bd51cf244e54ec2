"""HTTP transport for the Flipt service.

Talks to the Flipt REST API (grpc-gateway) with JSON bodies encoded as
proto-JSON.
"""

import json
import logging
from typing import Any, Mapping, NoReturn, Optional
from urllib.parse import urlsplit

import httpx
from google.protobuf import json_format
from google.protobuf.message import Message
from openfeature.exception import FlagNotFoundError, GeneralError

from flipt_openfeature.messages import EvaluationResponse, Flag
from flipt_openfeature.service import (
    DEFAULT_ADDRESS,
    DEFAULT_NAMESPACE,
    DEFAULT_TIMEOUT,
    NOT_FOUND_CODE,
    build_evaluation_request,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080

_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class HTTPService:
    """Flipt service over HTTP(S).

    Example:
        service = HTTPService("https://flipt.example.com:443")
        flag = service.get_flag("default", "my-flag")
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the HTTP service.

        Args:
            address: Base address as ``scheme://host[:port]``. The port
                defaults to 8080 when omitted.
            http_client: Optional httpx.Client for custom HTTP configuration or
                testing. Without one, a client is created per request.
        """
        url = httpx.URL(address)
        self._scheme = "https" if url.scheme == "https" else "http"
        self._host = url.host or DEFAULT_HOST
        # httpx drops scheme-default ports, so read the port as written
        self._port = urlsplit(address).port or DEFAULT_PORT
        self._http_client = http_client

    @property
    def address(self) -> str:
        """Return the normalized base address."""
        return f"{self._scheme}://{self._host}:{self._port}"

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._http_client is not None:
            return self._http_client
        return httpx.Client(timeout=DEFAULT_TIMEOUT)

    def _flag_url(self, namespace_key: str, flag_key: str) -> str:
        if namespace_key == DEFAULT_NAMESPACE:
            return f"{self.address}/api/v1/flags/{flag_key}"
        return f"{self.address}/api/v1/namespaces/{namespace_key}/flags/{flag_key}"

    def _evaluate_url(self, namespace_key: str) -> str:
        if namespace_key == DEFAULT_NAMESPACE:
            return f"{self.address}/api/v1/evaluate"
        return f"{self.address}/api/v1/namespaces/{namespace_key}/evaluate"

    def _send(
        self,
        method: str,
        url: str,
        timeout: float,
        content: Optional[str] = None,
    ) -> httpx.Response:
        """Send a request, mapping transport failures to GeneralError."""
        client = self._get_client()
        should_close = self._http_client is None

        try:
            logger.debug("%s %s", method, url)
            return client.request(
                method,
                url,
                headers=_HEADERS,
                content=content,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise GeneralError(f"making request: {e}") from e
        finally:
            if should_close:
                client.close()

    @staticmethod
    def _parse(response: httpx.Response, message: Message) -> Any:
        try:
            json_format.Parse(response.text, message, ignore_unknown_fields=True)
        except json_format.ParseError as e:
            raise GeneralError(f"unmarshalling response body: {e}") from e
        return message

    @staticmethod
    def _raise_for_status(
        response: httpx.Response, flag_key: str, action: str
    ) -> NoReturn:
        """Classify a non-200 response.

        Only a JSON 404 carrying the gRPC NotFound code is a missing flag; a
        bare 404 usually means the address points at the wrong server.
        """
        if response.status_code == 404:
            content_type = response.headers.get("Content-Type", "")
            if content_type.split(";")[0].strip() == "application/json":
                try:
                    body = response.json()
                except ValueError as e:
                    raise GeneralError(f"unmarshalling response body: {e}") from e

                if isinstance(body, dict) and body.get("code") == NOT_FOUND_CODE:
                    raise FlagNotFoundError(f'flag "{flag_key}" not found')

        raise GeneralError(f"{action}: status={response.status_code} {response.text}")

    def get_flag(
        self,
        namespace_key: str,
        flag_key: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Flag:
        """Fetch a flag from ``/api/v1/flags/{flag_key}``.

        Raises:
            FlagNotFoundError: If Flipt reports the flag as missing.
            GeneralError: For transport failures and unexpected responses.
        """
        response = self._send("GET", self._flag_url(namespace_key, flag_key), timeout)
        if response.status_code == 200:
            return self._parse(response, Flag())

        self._raise_for_status(response, flag_key, "getting flag")

    def evaluate(
        self,
        namespace_key: str,
        flag_key: str,
        eval_ctx: Optional[Mapping[str, Any]],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> EvaluationResponse:
        """Evaluate a flag through ``/api/v1/evaluate``.

        Raises:
            InvalidContextError: If ``eval_ctx`` is None.
            TargetingKeyMissingError: If ``targetingKey`` is missing or empty.
            FlagNotFoundError: If Flipt reports the flag as missing.
            GeneralError: For transport failures and unexpected responses.
        """
        request = build_evaluation_request(namespace_key, flag_key, eval_ctx)
        if namespace_key == DEFAULT_NAMESPACE:
            request.ClearField("namespace_key")
        body = json.dumps(json_format.MessageToDict(request))

        response = self._send("POST", self._evaluate_url(namespace_key), timeout, body)
        if response.status_code == 200:
            return self._parse(response, EvaluationResponse())

        self._raise_for_status(response, flag_key, "evaluating")

    def close(self) -> None:
        """Release transport resources.

        Per-request clients are already closed and an injected client belongs
        to the caller, so there is nothing to release.
        """
