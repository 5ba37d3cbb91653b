from unittest.mock import AsyncMock

import httpx
import pytest
from openai import APIError, AuthenticationError, RateLimitError

from chainaudit.domain.models.ai import StructuredAIResponse
from chainaudit.infrastructure.resilience.api_retry import ApiRetryService, MaxRetryError
from chainaudit.infrastructure.resilience.rate_limiter import RateLimiter

REQUEST = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


def _rate_limit_error():
    response = httpx.Response(429, request=REQUEST)
    return RateLimitError("Too many requests", response=response, body=None)


def _auth_error():
    response = httpx.Response(401, request=REQUEST)
    return AuthenticationError("Invalid key", response=response, body=None)


@pytest.fixture
def retry_service():
    return ApiRetryService(max_retries=2, initial_backoff_s=0)


@pytest.mark.asyncio
async def test_success_sets_latency(retry_service):
    call = AsyncMock(return_value=StructuredAIResponse(content="{}"))

    result = await retry_service.execute_with_retry(call, "prompt", provider_name="openrouter", model="m")

    assert result.latency_ms is not None
    call.assert_awaited_once_with("prompt", model="m")


@pytest.mark.asyncio
async def test_retries_until_success(retry_service):
    call = AsyncMock(side_effect=[_rate_limit_error(), APIError("Bad gateway", REQUEST, body=None), "ok"])

    assert await retry_service.execute_with_retry(call) == "ok"
    assert call.await_count == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(retry_service):
    error = _rate_limit_error()
    call = AsyncMock(side_effect=error)

    with pytest.raises(MaxRetryError) as excinfo:
        await retry_service.execute_with_retry(call)

    assert excinfo.value.original_exception is error
    assert excinfo.value.attempts == 2
    assert call.await_count == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ValueError("bad response"), _auth_error()])
async def test_non_retryable_errors_propagate(retry_service, error):
    call = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await retry_service.execute_with_retry(call)

    assert call.await_count == 1


@pytest.mark.asyncio
async def test_backoff_grows_by_factor(mocker):
    sleep = mocker.patch("chainaudit.infrastructure.resilience.api_retry.asyncio.sleep", new=AsyncMock())
    service = ApiRetryService(max_retries=2, initial_backoff_s=1.0, backoff_factor=3.0)
    call = AsyncMock(side_effect=_rate_limit_error())

    with pytest.raises(MaxRetryError):
        await service.execute_with_retry(call)

    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 3.0]


@pytest.mark.asyncio
async def test_rate_limiter_is_consulted(retry_service):
    limiter = RateLimiter(max_requests=5, time_window=60, name="openrouter")
    retry_service.rate_limiter = limiter

    await retry_service.execute_with_retry(AsyncMock(return_value="ok"))

    assert len(limiter.timestamps) == 1


def test_rate_limiter_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)


@pytest.mark.asyncio
async def test_rate_limiter_reports_wait_time():
    limiter = RateLimiter(max_requests=2, time_window=30)

    await limiter.wait_for_permission()
    assert await limiter.get_wait_time() == 0.0
    await limiter.wait_for_permission()

    wait = await limiter.get_wait_time()
    assert 0 < wait <= 30
