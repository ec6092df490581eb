from __future__ import annotations

import httpx
import pytest

from fetchkit import (
    ClientConfig,
    ConfigurationError,
    FetchClient,
    FetchRequest,
    FetchResponse,
    NetworkError,
    Next,
    RateLimitExceededError,
    compose,
)
from fetchkit.middleware import (
    RetryOptions,
    RetrySummary,
    calculate_delay,
    create_exponential_retry,
    create_retry_middleware,
    create_server_error_retry,
    default_should_retry,
)


def test_calculate_delay_strategies() -> None:
    assert [calculate_delay(n, 100, "exponential", 30_000) for n in (1, 2, 3, 4)] == [
        100,
        200,
        400,
        800,
    ]
    assert [calculate_delay(n, 100, "linear", 30_000) for n in (1, 2, 3)] == [100, 200, 300]
    assert [calculate_delay(n, 100, "fixed", 30_000) for n in (1, 5, 9)] == [100, 100, 100]


def test_calculate_delay_is_capped_and_exponential_grows_until_cap() -> None:
    delays = [calculate_delay(n, 1000, "exponential", 5000) for n in range(1, 8)]
    assert all(d <= 5000 for d in delays)
    assert delays[:3] == [1000, 2000, 4000]
    assert delays[3:] == [5000, 5000, 5000, 5000]
    assert calculate_delay(50, 1000, "linear", 30_000) == 30_000


def test_calculate_delay_stays_capped_for_very_large_attempts() -> None:
    assert calculate_delay(1100, 1000.0, "exponential", 30_000) == 30_000
    assert calculate_delay(5000, 1.0, "exponential", 250) == 250
    assert calculate_delay(5000, 0.0, "exponential", 250) == 0


async def test_long_exponential_schedule_never_exceeds_max_delay(
    make_request, downstream, sleep
) -> None:
    down = downstream([503])
    retry = create_retry_middleware(max_retries=1100, delay=1, max_delay=30_000, sleep=sleep)

    response = await retry(make_request(), down)

    assert response.status == 503
    assert down.calls == 1101
    assert len(sleep.calls) == 1100
    assert max(sleep.calls) == 30.0


def test_default_should_retry() -> None:
    assert default_should_retry(FetchResponse(status=0), 1)
    assert default_should_retry(FetchResponse(status=500), 1)
    assert default_should_retry(FetchResponse(status=599), 1)
    assert not default_should_retry(FetchResponse(status=404), 1)
    assert not default_should_retry(FetchResponse(status=429), 1)


async def test_persistent_503_with_fixed_backoff_makes_three_attempts(
    make_request, downstream, sleep
) -> None:
    down = downstream([503])
    retry = create_retry_middleware(max_retries=2, backoff="fixed", delay=100, sleep=sleep)

    response = await retry(make_request(), down)

    assert down.calls == 3
    assert response.status == 503
    assert not response.ok
    assert sleep.calls == [0.1, 0.1]


async def test_network_errors_then_success_with_defaults(make_request, downstream, sleep) -> None:
    down = downstream(
        [
            NetworkError("Failed to fetch", "https://api.example.com/items"),
            NetworkError("Failed to fetch", "https://api.example.com/items"),
            200,
        ]
    )
    retries: list[tuple[int, float, RetrySummary]] = []
    retry = create_retry_middleware(
        on_retry=lambda attempt, delay, summary: retries.append((attempt, delay, summary)),
        sleep=sleep,
    )

    response = await retry(make_request(), down)

    assert response.ok
    assert down.calls == 3
    assert len(retries) == 2
    assert [r[:2] for r in retries] == [(1, 1000), (2, 2000)]
    assert retries[0][2] == RetrySummary(status=0, status_text="Network Error")
    assert sleep.calls == [1.0, 2.0]


@pytest.mark.parametrize("max_retries", [0, 1, 4])
async def test_retry_bound_is_max_retries_plus_one(
    max_retries, make_request, downstream, sleep
) -> None:
    down = downstream([500])
    retry = create_retry_middleware(max_retries=max_retries, sleep=sleep)

    await retry(make_request(), down)

    assert down.calls == max_retries + 1
    assert len(sleep.calls) == max_retries


async def test_success_short_circuits_remaining_budget(make_request, downstream, sleep) -> None:
    down = downstream([502, 200, 500])
    retry = create_retry_middleware(max_retries=5, sleep=sleep)

    response = await retry(make_request(), down)

    assert response.status == 200
    assert down.calls == 2


async def test_client_errors_are_not_retried(make_request, downstream, sleep) -> None:
    down = downstream([404])
    response = await create_retry_middleware(sleep=sleep)(make_request(), down)
    assert response.status == 404
    assert down.calls == 1
    assert sleep.calls == []


async def test_should_retry_receives_one_based_attempt(make_request, downstream, sleep) -> None:
    seen: list[tuple[int, int]] = []

    def should_retry(response: FetchResponse, attempt: int) -> bool:
        seen.append((response.status, attempt))
        return True

    down = downstream([429])
    retry = create_retry_middleware(max_retries=2, should_retry=should_retry, sleep=sleep)
    response = await retry(make_request(), down)

    assert response.status == 429
    assert seen == [(429, 1), (429, 2), (429, 3)]


async def test_exhausted_thrown_errors_return_synthetic_response(
    make_request, downstream, sleep
) -> None:
    cause = NetworkError("refused", "https://api.example.com/items")
    down = downstream([cause])
    retry = create_retry_middleware(max_retries=1, sleep=sleep)

    response = await retry(make_request(), down)

    assert down.calls == 2
    assert response.status == 0
    assert response.status_text == "Network Error"
    assert not response.ok
    assert response.url == "https://api.example.com/items"
    assert response.error is not None
    assert response.error.body is cause
    assert "refused" in response.error.message


async def test_thrown_error_not_retried_when_predicate_declines(
    make_request, downstream, sleep
) -> None:
    down = downstream([RuntimeError("bad"), 200])
    retry = create_server_error_retry(max_retries=3)

    response = await retry(make_request(), down)

    assert down.calls == 1
    assert response.status == 0


async def test_rate_limit_errors_propagate_through_retry(make_request, downstream, sleep) -> None:
    down = downstream([RateLimitExceededError(250)])
    retry = create_retry_middleware(sleep=sleep)

    with pytest.raises(RateLimitExceededError):
        await retry(make_request(), down)
    assert down.calls == 1


async def test_on_retry_exceptions_propagate(make_request, downstream, sleep) -> None:
    def on_retry(attempt: int, delay: float, summary: RetrySummary) -> None:
        raise ValueError("observer failed")

    retry = create_retry_middleware(on_retry=on_retry, sleep=sleep)
    with pytest.raises(ValueError, match="observer failed"):
        await retry(make_request(), downstream([500]))


async def test_async_on_retry_is_awaited(make_request, downstream, sleep) -> None:
    attempts: list[int] = []

    async def on_retry(attempt: int, delay: float, summary: RetrySummary) -> None:
        attempts.append(attempt)

    retry = create_retry_middleware(max_retries=2, on_retry=on_retry, sleep=sleep)
    await retry(make_request(), downstream([500]))
    assert attempts == [1, 2]


async def test_each_attempt_reenters_the_downstream_chain(make_request, sleep) -> None:
    header_values: list[str] = []
    token_calls = 0

    async def auth(req: FetchRequest, next: Next) -> FetchResponse:
        nonlocal token_calls
        token_calls += 1
        req.headers["Authorization"] = f"Bearer token-{token_calls}"
        return await next(req)

    async def terminal(req: FetchRequest) -> FetchResponse:
        header_values.append(req.headers["Authorization"])
        status = 200 if len(header_values) == 3 else 503
        return FetchResponse(status=status, url=req.url)

    pipeline = compose([create_retry_middleware(delay=10, sleep=sleep), auth], terminal)
    original = make_request()
    response = await pipeline(original)

    assert response.ok
    assert token_calls == 3
    assert header_values == ["Bearer token-1", "Bearer token-2", "Bearer token-3"]
    assert "Authorization" not in original.headers


async def test_attempt_number_is_recorded_in_request_context(
    make_request, downstream, sleep
) -> None:
    down = downstream([500, 500, 200])
    await create_retry_middleware(sleep=sleep)(make_request(), down)
    assert [r.context["attempt"] for r in down.requests] == [1, 2, 3]


async def test_exponential_convenience_factory(make_request, downstream, sleep) -> None:
    retry = create_exponential_retry(max_retries=3, base_delay=50)
    response = await retry(make_request(), downstream([200]))
    assert response.ok


def test_invalid_options_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        create_retry_middleware(max_retries=-1)
    with pytest.raises(ConfigurationError):
        create_retry_middleware(backoff="random")
    with pytest.raises(ConfigurationError):
        create_retry_middleware(max_tries=3)


def test_options_object_and_overrides_merge() -> None:
    options = RetryOptions(max_retries=5, delay=10)
    assert options.backoff == "exponential"
    assert options.max_delay == 30_000
    # overrides are validated on top of the given options
    create_retry_middleware(options, backoff="linear")


async def test_retry_through_client_recovers_from_transport_errors(sleep) -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"ok": True}, request=request)

    client = FetchClient(ClientConfig(transport=httpx.MockTransport(handler)))
    client.use(create_retry_middleware(delay=1, sleep=sleep))
    try:
        response = await client.get("https://api.example.com/flaky")
    finally:
        await client.close()

    assert response.ok
    assert response.data == {"ok": True}
    assert attempts == 3
