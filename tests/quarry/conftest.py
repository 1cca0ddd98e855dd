"""Shared fixtures and utilities for Quarry tests."""

from typing import Any, List

import pytest

from quarry import Quarry, QuarryEvalError


@pytest.fixture
def quarry():
    """Create a Quarry instance with the standard library."""
    return Quarry()


@pytest.fixture
def quarry_core():
    """Create a Quarry instance with only the core natives."""
    return Quarry(include_std=False)


class QuarryTestHelpers:
    """Helper utilities for Quarry testing."""

    @staticmethod
    def outputs(quarry: Quarry, text: str, value: Any = None, **kwargs: Any) -> List[Any]:
        """Collect every stream element, error elements included."""
        return list(quarry.run(text, value, **kwargs))

    @staticmethod
    def assert_outputs(quarry: Quarry, text: str, value: Any, expected: List[Any]) -> None:
        """Assert that a filter produces exactly the expected values."""
        result = quarry.evaluate(text, value)
        assert result == expected, f"Expected {expected!r} from {text!r}, got {result!r}"

    @staticmethod
    def assert_error(quarry: Quarry, text: str, value: Any, fragment: str) -> QuarryEvalError:
        """Assert that the last element of the stream is an error mentioning fragment."""
        result = list(quarry.run(text, value))
        assert result, f"Expected an error from {text!r}, got no output"
        error = result[-1]
        assert isinstance(error, QuarryEvalError), f"Expected an error from {text!r}, got {result!r}"
        assert fragment in error.message, f"Expected {fragment!r} in {error.message!r}"
        return error


@pytest.fixture
def helpers():
    """Provide test helper utilities."""
    return QuarryTestHelpers
