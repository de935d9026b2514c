"""Tests for the retry wrapper around external collaborators."""

import pytest

from consent_gate.core.errors import ExternalServiceError, NoValidPermissionError
from consent_gate.services.collaborators import call_with_retry


class Flaky:
    """Fails a fixed number of times, then returns ``"ok"``."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ConnectionError("upstream down")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestCallWithRetry:
    async def test_retries_then_succeeds(self) -> None:
        func = Flaky(failures=2)

        result = await call_with_retry("anchor", func, attempts=3, backoff_seconds=0)

        assert result == "ok"
        assert func.calls == 3

    async def test_exhaustion_raises_external_error(self) -> None:
        func = Flaky(failures=5)

        with pytest.raises(ExternalServiceError) as exc_info:
            await call_with_retry("anchor", func, attempts=2, backoff_seconds=0)

        assert func.calls == 2
        assert exc_info.value.details["operation"] == "anchor"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    async def test_domain_errors_are_not_retried(self) -> None:
        func = Flaky(failures=5, error=NoValidPermissionError("no permission"))

        with pytest.raises(NoValidPermissionError):
            await call_with_retry("anchor", func, attempts=3, backoff_seconds=0)

        assert func.calls == 1
