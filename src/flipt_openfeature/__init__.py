"""Flipt OpenFeature provider for Python.

This package provides an OpenFeature provider that resolves flags against a
remote Flipt server over HTTP or gRPC.
"""

from flipt_openfeature.version import __version__
from flipt_openfeature.provider import FliptProvider
from flipt_openfeature.service import (
    DEFAULT_NAMESPACE,
    Service,
    new_service,
    split_namespace_and_flag,
)
from flipt_openfeature.http_service import HTTPService
from flipt_openfeature.grpc_service import GRPCService

__all__ = [
    "__version__",
    "FliptProvider",
    "Service",
    "HTTPService",
    "GRPCService",
    "DEFAULT_NAMESPACE",
    "new_service",
    "split_namespace_and_flag",
]
