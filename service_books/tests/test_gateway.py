"""
Unit tests for the BookGateway.
"""

import pytest
from unittest.mock import MagicMock

from service_books.app.gateway import normalize_book_id, normalize_max_results, normalize_query
from shared.circuit_breaker import CircuitBreakerState
from shared.errors import CircuitOpenError, ClientError, ServerError, ValidationError
from shared.test_helpers import ScriptedTransport, TestDataFactory


class TestNormalization:
    """Parameter normalisation clamps benign input instead of rejecting it."""

    def test_query_trimmed_and_capped(self):
        assert normalize_query("  dune  ") == "dune"
        assert normalize_query("x" * 150) == "x" * 100
        assert normalize_query(None) == ""

    def test_query_must_be_text(self):
        with pytest.raises(ValidationError):
            normalize_query(42)

    @pytest.mark.parametrize("value,expected", [
        (0, 1), (-5, 1), (1, 1), (10, 10), (40, 40), (41, 40), (1000, 40), ("15", 15), (None, 10),
    ])
    def test_max_results_clamped(self, value, expected):
        assert normalize_max_results(value) == expected

    @pytest.mark.parametrize("value", ["many", object(), True])
    def test_max_results_uncoercible(self, value):
        with pytest.raises(ValidationError):
            normalize_max_results(value)

    def test_book_id_trimmed_and_capped(self):
        assert normalize_book_id("  abc  ") == "abc"
        assert normalize_book_id("a" * 80) == "a" * 50

    @pytest.mark.parametrize("value", ["", "   ", None, 123])
    def test_book_id_invalid(self, value):
        with pytest.raises(ValidationError):
            normalize_book_id(value)


class TestBookGateway:
    """Test cases for BookGateway."""

    @pytest.mark.asyncio
    async def test_search_caches_result(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_search_payload()))
        gateway = gateway_factory(transport)

        first = await gateway.search("  dune ", 10)
        second = await gateway.search("dune", 10)

        assert first == second
        assert transport.call_count == 1
        assert "search:dune:10" in gateway.cache

    @pytest.mark.asyncio
    async def test_clamped_parameters_share_cache_key(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_search_payload()))
        gateway = gateway_factory(transport)

        await gateway.search("dune", 99)
        await gateway.search("dune", 40)

        assert transport.call_count == 1
        assert "search:dune:40" in gateway.cache

    @pytest.mark.asyncio
    async def test_blank_query_skips_network(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_search_payload()))
        gateway = gateway_factory(transport)

        result = await gateway.search("   ")

        assert result.total_items == 0
        assert result.items == []
        assert transport.call_count == 0

    @pytest.mark.asyncio
    async def test_get_by_id(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)

        book = await gateway.get_by_id(" abc ")

        assert book.id == "abc"
        assert "book:abc" in gateway.cache

    @pytest.mark.asyncio
    async def test_mutating_a_result_leaves_cache_intact(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)

        first = await gateway.get_by_id("abc")
        first.volume_info.title = "Changed"
        first.volume_info.authors.append("Someone Else")
        second = await gateway.get_by_id("abc")

        assert second.volume_info.title == "Dune"
        assert second.volume_info.authors == ["Frank Herbert"]
        assert transport.call_count == 1

    @pytest.mark.asyncio
    async def test_invalid_id_does_not_engage_breaker(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_volume()))
        gateway = gateway_factory(transport)

        for _ in range(5):
            with pytest.raises(ValidationError):
                await gateway.get_by_id("  ")

        assert transport.call_count == 0
        assert gateway.circuit_breaker.get_state().failure_count == 0
        assert gateway.rate_limiter.get_count() == 0

    @pytest.mark.asyncio
    async def test_cache_hit_bypasses_limiter_and_breaker(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)
        await gateway.get_by_id("abc")

        gateway.circuit_breaker._state = CircuitBreakerState.OPEN
        gateway.circuit_breaker._last_failure_time = gateway.circuit_breaker._clock()

        book = await gateway.get_by_id("abc")

        assert book.id == "abc"
        assert gateway.rate_limiter.get_count() == 1

    @pytest.mark.asyncio
    async def test_retries_are_rate_limited(self, gateway_factory):
        transport = ScriptedTransport(503, 503, (200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)

        await gateway.get_by_id("abc")

        assert transport.call_count == 3
        assert gateway.rate_limiter.get_count() == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_after_one_attempt(self, gateway_factory, clock):
        transport = ScriptedTransport(404)
        gateway = gateway_factory(transport)

        with pytest.raises(ClientError) as exc_info:
            await gateway.get_by_id("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.attempts == 1
        assert transport.call_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_redirect_is_not_retried(self, gateway_factory, clock):
        transport = ScriptedTransport(302)
        gateway = gateway_factory(transport)

        with pytest.raises(ClientError) as exc_info:
            await gateway.get_by_id("moved")

        assert exc_info.value.status_code == 302
        assert exc_info.value.attempts == 1
        assert transport.call_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, gateway_factory):
        transport = ScriptedTransport(404, (200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)

        with pytest.raises(ClientError):
            await gateway.get_by_id("abc")
        assert gateway.cache.size == 0

        book = await gateway.get_by_id("abc")
        assert book.id == "abc"

    @pytest.mark.asyncio
    async def test_stale_fallback_disabled_by_default(self, gateway_factory, clock):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")), 404)
        gateway = gateway_factory(transport)
        await gateway.get_by_id("abc")
        clock.advance(301.0)

        with pytest.raises(ClientError):
            await gateway.get_by_id("abc")

    @pytest.mark.asyncio
    async def test_stale_fallback_when_enabled(self, gateway_factory, clock):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")), 404)
        gateway = gateway_factory(transport, serve_stale_on_error=True)
        original = await gateway.get_by_id("abc")
        clock.advance(301.0)

        book = await gateway.get_by_id("abc")

        assert book == original
        assert transport.call_count == 2
        assert gateway.metrics.registry.get_sample_value(
            "stale_fallbacks_total", {"operation": "get_by_id"}
        ) == 1

    @pytest.mark.asyncio
    async def test_stale_fallback_covers_open_circuit(self, gateway_factory, clock):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")), 400)
        gateway = gateway_factory(transport, serve_stale_on_error=True)
        await gateway.get_by_id("abc")
        clock.advance(301.0)

        for index in range(3):
            with pytest.raises(ClientError):
                await gateway.get_by_id(f"other-{index}")
        assert gateway.circuit_breaker.is_open()

        book = await gateway.get_by_id("abc")
        assert book.id == "abc"

    @pytest.mark.asyncio
    async def test_on_retry_hook_and_metrics(self, gateway_factory):
        on_retry = MagicMock()
        transport = ScriptedTransport(503, (200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport, on_retry=on_retry)

        await gateway.get_by_id("abc")

        on_retry.assert_called_once()
        attempt, error = on_retry.call_args.args
        assert attempt == 1
        assert isinstance(error, ServerError)
        assert gateway.metrics.registry.get_sample_value(
            "retries_total", {"operation": "get_by_id", "error_kind": "server"}
        ) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_error_propagates(self, gateway_factory):
        transport = ScriptedTransport(400)
        gateway = gateway_factory(transport)

        for index in range(3):
            with pytest.raises(ClientError):
                await gateway.get_by_id(f"id-{index}")

        with pytest.raises(CircuitOpenError):
            await gateway.get_by_id("id-3")
        assert transport.call_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_status(self, gateway_factory):
        transport = ScriptedTransport((200, TestDataFactory.create_volume("abc")))
        gateway = gateway_factory(transport)

        assert gateway.get_rate_limit_status() == {"request_count": 0, "cache_size": 0}

        await gateway.get_by_id("abc")

        assert gateway.get_rate_limit_status() == {"request_count": 1, "cache_size": 1}
