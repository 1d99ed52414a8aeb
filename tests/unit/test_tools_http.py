"""
Unit tests for the webfetch tool.

Tests for webfetch functionality including:
- Argument validation
- Response handling
- Error cases
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from warden.errors import ToolExecutionError
from warden.tools.base import ToolContext
from warden.tools.http import WebFetchArgs, WebFetchTool

PUBLIC_IP = "93.184.216.34"


def mock_client(response: MagicMock) -> MagicMock:
    """Build an httpx.Client mock whose stream() yields the response."""
    client = MagicMock()
    client.__enter__.return_value = client
    client.__exit__.return_value = False
    client.stream.return_value.__enter__.return_value = response
    client.stream.return_value.__exit__.return_value = False
    return client


def mock_response(
    body: bytes = b"Hello World",
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    url: str = "https://example.com/",
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers if headers is not None else {"content-type": "text/plain"}
    response.url = url
    response.iter_bytes.return_value = [body]
    return response


@pytest.fixture
def context() -> ToolContext:
    return ToolContext(session_id="test-session")


class TestWebFetchValidation:
    """Tests for webfetch argument validation."""

    def test_name(self) -> None:
        assert WebFetchTool().name == "webfetch"

    def test_url_required(self) -> None:
        errors = WebFetchTool().validate_args({})
        assert any(e.startswith("url:") for e in errors)

    def test_url_must_be_string(self) -> None:
        assert WebFetchTool().validate_args({"url": 123}) != []

    def test_url_scheme_must_be_http(self) -> None:
        errors = WebFetchTool().validate_args({"url": "ftp://example.com"})
        assert any("http" in e for e in errors)

    def test_url_must_have_host(self) -> None:
        errors = WebFetchTool().validate_args({"url": "http://"})
        assert any("host" in e for e in errors)

    def test_valid_urls(self) -> None:
        tool = WebFetchTool()
        assert tool.validate_args({"url": "http://example.com"}) == []
        assert tool.validate_args({"url": "https://example.com:8080/path?query=1"}) == []

    def test_headers_must_be_strings(self) -> None:
        errors = WebFetchTool().validate_args(
            {"url": "https://example.com", "headers": {"X-Count": ["a"]}}
        )
        assert errors != []

    def test_timeout_must_be_positive(self) -> None:
        errors = WebFetchTool().validate_args({"url": "https://example.com", "timeout": 0})
        assert errors != []


class TestWebFetchExecution:
    """Tests for webfetch execution with a mocked network."""

    def test_successful_fetch(self, context: ToolContext) -> None:
        response = mock_response()
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=mock_client(response)) as client_cls,
        ):
            result = WebFetchTool().execute(WebFetchArgs(url="https://example.com/"), context)

        assert result["status_code"] == 200
        assert result["body"] == "Hello World"
        assert result["url"] == "https://example.com/"
        assert result["headers"] == {"content-type": "text/plain"}
        assert "encoding" not in result
        client_cls.assert_called_once()
        assert client_cls.call_args.kwargs["timeout"] == 30.0
        assert client_cls.call_args.kwargs["follow_redirects"] is True

    def test_headers_forwarded(self, context: ToolContext) -> None:
        client = mock_client(mock_response())
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=client),
        ):
            WebFetchTool().execute(
                WebFetchArgs(url="https://example.com/", headers={"Accept": "text/html"}),
                context,
            )

        client.stream.assert_called_once_with(
            "GET", "https://example.com/", headers={"Accept": "text/html"}
        )

    def test_error_status_is_a_result(self, context: ToolContext) -> None:
        response = mock_response(body=b"missing", status_code=404)
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=mock_client(response)),
        ):
            result = WebFetchTool().execute(WebFetchArgs(url="https://example.com/x"), context)

        assert result["status_code"] == 404
        assert result["body"] == "missing"

    def test_binary_body_base64(self, context: ToolContext) -> None:
        response = mock_response(body=b"\xff\xd8\xff")
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=mock_client(response)),
        ):
            result = WebFetchTool().execute(WebFetchArgs(url="https://example.com/a.jpg"), context)

        assert result["encoding"] == "base64"
        assert result["body"] == "/9j/"

    def test_body_exceeds_limit(self, context: ToolContext) -> None:
        response = mock_response(body=b"x" * 64)
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=mock_client(response)),
        ):
            with pytest.raises(ToolExecutionError) as exc_info:
                WebFetchTool(max_response_bytes=16).execute(
                    WebFetchArgs(url="https://example.com/"), context
                )

        assert "exceeded size limit" in exc_info.value.message

    def test_timeout(self, context: ToolContext) -> None:
        client = mock_client(mock_response())
        client.stream.side_effect = httpx.TimeoutException("Timeout")
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=client),
        ):
            with pytest.raises(ToolExecutionError) as exc_info:
                WebFetchTool().execute(WebFetchArgs(url="https://example.com/", timeout=1), context)

        assert "timed out" in exc_info.value.message

    def test_connection_error(self, context: ToolContext) -> None:
        client = mock_client(mock_response())
        client.stream.side_effect = httpx.ConnectError("refused")
        with (
            patch("warden.tools.http.resolve_hostname", return_value=[PUBLIC_IP]),
            patch("httpx.Client", return_value=client),
        ):
            with pytest.raises(ToolExecutionError) as exc_info:
                WebFetchTool().execute(WebFetchArgs(url="https://example.com/"), context)

        assert "Request failed" in exc_info.value.message
