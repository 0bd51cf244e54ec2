"""Shared pytest fixtures for Flipt OpenFeature provider tests."""

from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest
from openfeature.evaluation_context import EvaluationContext

from flipt_openfeature.messages import EvaluationResponse, Flag

ENTITY_ID = "123456789"
REQUEST_ID = "987654321"


class MockService:
    """Mock Flipt service recording every call."""

    def __init__(
        self,
        flag: Optional[Flag] = None,
        response: Optional[EvaluationResponse] = None,
        get_flag_error: Optional[Exception] = None,
        evaluate_error: Optional[Exception] = None,
    ) -> None:
        self.flag = flag if flag is not None else Flag(key="foo", enabled=True)
        self.response = response if response is not None else EvaluationResponse()
        self.get_flag_error = get_flag_error
        self.evaluate_error = evaluate_error
        self.get_flag_calls: List[Tuple[str, str, float]] = []
        self.evaluate_calls: List[Tuple[str, str, Dict[str, Any], float]] = []
        self.close_called = False

    def get_flag(
        self, namespace_key: str, flag_key: str, timeout: float = 30.0
    ) -> Flag:
        self.get_flag_calls.append((namespace_key, flag_key, timeout))
        if self.get_flag_error is not None:
            raise self.get_flag_error
        return self.flag

    def evaluate(
        self,
        namespace_key: str,
        flag_key: str,
        eval_ctx: Optional[Mapping[str, Any]],
        timeout: float = 30.0,
    ) -> EvaluationResponse:
        self.evaluate_calls.append((namespace_key, flag_key, dict(eval_ctx), timeout))
        if self.evaluate_error is not None:
            raise self.evaluate_error
        return self.response

    def close(self) -> None:
        self.close_called = True


@pytest.fixture
def mock_service() -> MockService:
    """Create a mock service with an enabled flag and no match."""
    return MockService()


@pytest.fixture
def evaluation_context() -> EvaluationContext:
    """Evaluation context carrying a targeting key and request ID."""
    return EvaluationContext(
        targeting_key=ENTITY_ID,
        attributes={"requestID": REQUEST_ID},
    )
