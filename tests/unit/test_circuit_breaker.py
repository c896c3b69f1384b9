"""
Circuit Breaker Tests.
State transitions on a fake clock, single half-open probe, failure classification.
"""

import asyncio

import pytest

from hcbs_revenue.core.enums import CircuitState, FailureType
from hcbs_revenue.services.submission import BreakerRegistry, CircuitBreaker, CircuitBreakerConfig
from hcbs_revenue.utils.errors import IntegrationError, ServiceUnavailableError


def outage() -> IntegrationError:
    return IntegrationError(
        "clearinghouse returned HTTP 503",
        service="clearinghouse",
        retryable=True,
        failure_type=FailureType.SERVER,
        status_code=503,
    )


def rejection(status_code: int = 400, failure_type: FailureType = FailureType.VALIDATION) -> IntegrationError:
    return IntegrationError(
        f"clearinghouse returned HTTP {status_code}",
        service="clearinghouse",
        retryable=False,
        failure_type=failure_type,
        status_code=status_code,
    )


async def raise_(error):
    raise error


async def succeed():
    return "ok"


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "clearinghouse",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout_seconds=30.0),
        clock,
    )


async def trip(breaker, times=3):
    for _ in range(times):
        with pytest.raises(IntegrationError):
            await breaker.call(lambda: raise_(outage()))


@pytest.mark.unit
class TestCircuitBreaker:
    """CLOSED -> OPEN -> HALF_OPEN -> CLOSED/OPEN."""

    @pytest.mark.asyncio
    async def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(succeed) == "ok"

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        await trip(breaker, times=2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 2

        await trip(breaker, times=1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, breaker):
        await trip(breaker, times=2)
        await breaker.call(succeed)
        assert breaker.consecutive_failures == 0
        await trip(breaker, times=2)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self, breaker, clock):
        await trip(breaker)
        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        clock.advance(10)
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await breaker.call(tracked)

        assert calls == []
        assert exc_info.value.retryable is False
        assert exc_info.value.retry_after_seconds == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self, breaker, clock):
        await trip(breaker)
        clock.advance(30)

        assert await breaker.call(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self, breaker, clock):
        await trip(breaker)
        clock.advance(31)

        await trip(breaker, times=1)
        assert breaker.state == CircuitState.OPEN

        clock.advance(5)
        with pytest.raises(ServiceUnavailableError):
            await breaker.call(succeed)

    @pytest.mark.asyncio
    async def test_single_probe_in_half_open(self, breaker, clock):
        await trip(breaker)
        clock.advance(30)
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_probe():
            started.set()
            await release.wait()
            return "ok"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await started.wait()
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(ServiceUnavailableError):
            await breaker.call(succeed)

        release.set()
        assert await probe == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_auth_rejections_open_the_breaker(self, breaker):
        calls = []

        async def unauthorized():
            calls.append(1)
            raise rejection(401, FailureType.AUTH)

        for _ in range(3):
            with pytest.raises(IntegrationError):
                await breaker.call(unauthorized)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(ServiceUnavailableError):
            await breaker.call(unauthorized)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_rejections_count_until_a_success(self, breaker):
        for _ in range(2):
            with pytest.raises(IntegrationError):
                await breaker.call(lambda: raise_(rejection()))
        assert breaker.consecutive_failures == 2

        await breaker.call(succeed)
        with pytest.raises(IntegrationError):
            await breaker.call(lambda: raise_(outage()))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_releases_probe(self, breaker, clock):
        await trip(breaker)
        clock.advance(30)

        with pytest.raises(RuntimeError):
            await breaker.call(lambda: raise_(RuntimeError("bug")))

        assert await breaker.call(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_snapshot_and_reset(self, breaker, clock):
        await trip(breaker)
        snapshot = breaker.snapshot()
        assert snapshot.state == CircuitState.OPEN
        assert snapshot.opened_at == clock.now
        assert snapshot.to_dict()["state"] == "open"

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().consecutive_failures == 0


@pytest.mark.unit
class TestBreakerRegistry:
    """One breaker per integration id."""

    def test_same_id_same_breaker(self, clock):
        registry = BreakerRegistry(CircuitBreakerConfig(failure_threshold=2), clock)
        assert registry.get("medicaid") is registry.get("medicaid")
        assert registry.get("medicaid") is not registry.get("clearinghouse")

    @pytest.mark.asyncio
    async def test_breakers_are_independent(self, clock):
        registry = BreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock)
        with pytest.raises(IntegrationError):
            await registry.get("medicaid").call(lambda: raise_(outage()))

        snapshot = registry.snapshot()
        assert snapshot["medicaid"].state == CircuitState.OPEN
        assert registry.get("clearinghouse").state == CircuitState.CLOSED

        registry.reset("medicaid")
        assert registry.get("medicaid").state == CircuitState.CLOSED

    def test_from_settings(self, settings):
        registry = BreakerRegistry.from_settings(settings)
        assert registry.config.failure_threshold == settings.CIRCUIT_FAILURE_THRESHOLD
        assert registry.config.reset_timeout_seconds == settings.CIRCUIT_RESET_TIMEOUT_SECONDS

    def test_close_forgets_breakers(self, clock):
        registry = BreakerRegistry(clock=clock)
        registry.get("medicaid")
        registry.close()
        assert registry.snapshot() == {}
