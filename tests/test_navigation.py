"""Tests for retrying navigation and site-state reset."""

from unittest.mock import AsyncMock, Mock

import pytest
from playwright.async_api import Error as PlaywrightError

from theme_runner.errors import NavigationError, RateLimitedError
from theme_runner.executor.backoff import BackoffPolicy
from theme_runner.executor.navigation import Navigator, reset_site_state


def _response(status: int, headers: dict | None = None) -> Mock:
    response = Mock()
    response.status = status
    response.headers = headers or {}
    return response


def _navigator(sleep: AsyncMock, max_attempts: int = 4) -> Navigator:
    return Navigator(
        max_attempts=max_attempts,
        timeout_ms=1000,
        rate_limit=BackoffPolicy(base=1.0, jitter=0.0, cap=60),
        transient=BackoffPolicy(base=0.5, jitter=0.0, cap=60),
        sleep=sleep,
    )


class TestGoto:
    """Tests for Navigator.goto."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, mock_page):
        sleep = AsyncMock()
        ok = _response(200)
        mock_page.goto = AsyncMock(return_value=ok)

        assert await _navigator(sleep).goto(mock_page, "https://x.example.com") is ok
        sleep.assert_not_called()
        kwargs = mock_page.goto.call_args.kwargs
        assert kwargs["wait_until"] == "domcontentloaded"
        assert kwargs["timeout"] == 1000

    @pytest.mark.asyncio
    async def test_three_429s_then_success(self, mock_page):
        sleep = AsyncMock()
        ok = _response(200)
        mock_page.goto = AsyncMock(side_effect=[_response(429)] * 3 + [ok])

        assert await _navigator(sleep).goto(mock_page, "https://x.example.com") is ok
        assert mock_page.goto.call_count == 4
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_retry_after_header_honoured(self, mock_page):
        sleep = AsyncMock()
        mock_page.goto = AsyncMock(side_effect=[_response(429, {"retry-after": "9"}), _response(200)])

        await _navigator(sleep).goto(mock_page, "https://x.example.com")
        sleep.assert_awaited_once_with(9.0)

    @pytest.mark.asyncio
    async def test_persistent_429_raises_rate_limited(self, mock_page):
        sleep = AsyncMock()
        mock_page.goto = AsyncMock(return_value=_response(429))

        with pytest.raises(RateLimitedError) as exc:
            await _navigator(sleep, max_attempts=3).goto(mock_page, "https://x.example.com")
        assert exc.value.attempts == 3
        assert mock_page.goto.call_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, mock_page):
        sleep = AsyncMock()
        ok = _response(200)
        mock_page.goto = AsyncMock(side_effect=[PlaywrightError("net::ERR_CONNECTION_RESET"), ok])

        assert await _navigator(sleep).goto(mock_page, "https://x.example.com") is ok
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_transient_error_exhausted(self, mock_page):
        sleep = AsyncMock()
        mock_page.goto = AsyncMock(side_effect=PlaywrightError("Timeout 1000ms exceeded.\nCall log:"))

        with pytest.raises(NavigationError) as exc:
            await _navigator(sleep, max_attempts=2).goto(mock_page, "https://x.example.com")
        assert not isinstance(exc.value, RateLimitedError)
        assert str(exc.value) == "Timeout 1000ms exceeded."
        assert exc.value.url == "https://x.example.com"

    @pytest.mark.asyncio
    async def test_other_statuses_returned(self, mock_page):
        sleep = AsyncMock()
        mock_page.goto = AsyncMock(return_value=_response(503))
        response = await _navigator(sleep).goto(mock_page, "https://x.example.com")
        assert response.status == 503
        sleep.assert_not_called()


class TestResetSiteState:
    """Tests for reset_site_state."""

    @pytest.mark.asyncio
    async def test_sends_cdp_commands_for_origin(self, mock_page):
        client = AsyncMock()
        mock_page.context.new_cdp_session = AsyncMock(return_value=client)

        await reset_site_state(mock_page, "https://x.example.com/products/hat?variant=1")

        mock_page.context.clear_cookies.assert_awaited_once()
        methods = [c.args[0] for c in client.send.call_args_list]
        assert methods == [
            "Network.enable",
            "Network.clearBrowserCookies",
            "Network.clearBrowserCache",
            "Network.setCacheDisabled",
            "Storage.clearDataForOrigin",
        ]
        assert client.send.call_args_list[-1].args[1] == {
            "origin": "https://x.example.com", "storageTypes": "all",
        }

    @pytest.mark.asyncio
    async def test_failing_command_does_not_stop_the_rest(self, mock_page):
        client = AsyncMock()
        client.send = AsyncMock(side_effect=[PlaywrightError("nope"), None, None, None, None])
        mock_page.context.new_cdp_session = AsyncMock(return_value=client)

        await reset_site_state(mock_page, "https://x.example.com/")
        assert client.send.await_count == 5

    @pytest.mark.asyncio
    async def test_no_cdp_session(self, mock_page):
        mock_page.context.new_cdp_session = AsyncMock(side_effect=PlaywrightError("not chromium"))
        await reset_site_state(mock_page, "https://x.example.com/")
