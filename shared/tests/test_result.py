"""
Unit tests for the Result type.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import ForbiddenError, NotFoundError, ProvisioningError
from shared.result import Result, attempt, from_optional


class TestResult:
    """Test cases for Result."""

    def test_ok(self):
        result = Result.ok(3)

        assert result.is_ok
        assert not result.is_err
        assert result.unwrap() == 3

    def test_fail(self):
        error = NotFoundError("missing")
        result = Result.fail(error)

        assert result.is_err
        assert result.error is error
        assert result.unwrap_or("default") == "default"
        with pytest.raises(NotFoundError):
            result.unwrap()

    def test_ok_may_carry_none(self):
        result = Result.ok(None)

        assert result.is_ok
        assert result.unwrap() is None

    def test_map(self):
        assert Result.ok(2).map(lambda v: v * 10).value == 20

    def test_and_then_short_circuits(self):
        """Steps after the first failure never run."""
        later = MagicMock()
        error = ForbiddenError()

        result = Result.ok(1).and_then(lambda v: Result.fail(error)).and_then(later)

        assert result.error is error
        later.assert_not_called()

    @pytest.mark.asyncio
    async def test_and_then_async(self):
        step = AsyncMock(return_value=Result.ok("done"))

        assert (await Result.ok(1).and_then_async(step)).value == "done"
        step.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_and_then_async_short_circuits(self):
        step = AsyncMock()

        result = await Result.fail(NotFoundError()).and_then_async(step)

        assert result.is_err
        step.assert_not_awaited()

    def test_from_optional(self):
        assert from_optional("x", NotFoundError()).value == "x"
        assert isinstance(from_optional(None, NotFoundError()).error, NotFoundError)


class TestAttempt:
    """Test cases for attempt()."""

    @pytest.mark.asyncio
    async def test_captures_provisioning_error(self):
        async def failing():
            raise ForbiddenError("no")

        result = await attempt(failing())

        assert isinstance(result.error, ForbiddenError)

    @pytest.mark.asyncio
    async def test_wraps_value(self):
        async def succeeding():
            return 42

        assert (await attempt(succeeding())).value == 42

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self):
        async def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await attempt(broken())

    def test_error_is_provisioning_error(self):
        assert issubclass(ForbiddenError, ProvisioningError)
