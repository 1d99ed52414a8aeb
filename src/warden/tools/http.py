"""
HTTP tool for Warden.

This module provides the `webfetch` tool, which fetches a URL with an
HTTP GET request.

Security Note:
    Permission rules are evaluated BEFORE the tool executes. The tool adds:
    - DNS rebinding prevention: Resolve DNS and verify IP before request,
      and again for every redirect target
    - Private IP blocking: Refuse hosts that resolve to private ranges
    - Response size limits: Stop reading if response exceeds limit
    - Timeout enforcement: Abort requests that take too long
"""

import base64
import ipaddress
import socket
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field, field_validator

from warden.errors import ToolExecutionError
from warden.tools.base import Tool, ToolContext

DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_RESPONSE_BYTES = 10 * 1024 * 1024

# Private IP ranges to block
PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local
    ipaddress.ip_network("::1/128"),  # IPv6 loopback
    ipaddress.ip_network("fc00::/7"),  # IPv6 private
    ipaddress.ip_network("fe80::/10"),  # IPv6 link-local
]


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is in a private, loopback, or reserved range."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_reserved
        or ip.is_link_local
        or any(ip in network for network in PRIVATE_IP_RANGES)
    )


def resolve_hostname(hostname: str) -> list[str]:
    """
    Resolve a hostname to its unique IP addresses.

    Raises:
        socket.gaierror: If DNS resolution fails
    """
    addr_info = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    return sorted({str(info[4][0]) for info in addr_info})


class WebFetchArgs(BaseModel):
    url: str = Field(..., min_length=1, description="http(s) URL to fetch")
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0, description="Seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http or https URL with a host."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https"):
            msg = "url scheme must be http or https"
            raise ValueError(msg)
        if not parsed.hostname:
            msg = "url must have a host"
            raise ValueError(msg)
        return v


class WebFetchTool(Tool):
    """
    Fetch a URL.

    Returns:
        {"status_code": int, "headers": dict, "body": str, "url": final URL}

    Binary bodies are returned base64-encoded with "encoding": "base64".
    """

    args_model = WebFetchArgs

    def __init__(
        self,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.max_response_bytes = max_response_bytes
        self.transport = transport

    @property
    def name(self) -> str:
        return "webfetch"

    @property
    def description(self) -> str:
        return "Fetch the contents of a URL with an HTTP GET request"

    def execute(self, args: WebFetchArgs, context: ToolContext) -> dict[str, Any]:
        hostname = urlparse(args.url).hostname or ""

        def fail(reason: str) -> ToolExecutionError:
            return ToolExecutionError(
                tool=self.name,
                tool_args={"url": args.url},
                underlying_error=reason,
            )

        def check_host(host: str) -> None:
            try:
                resolved_ips = resolve_hostname(host)
            except socket.gaierror as e:
                raise fail(f"DNS resolution failed for {host}: {e}") from e

            if not resolved_ips:
                raise fail(f"No IP addresses found for {host}")

            for ip in resolved_ips:
                if is_private_ip(ip):
                    raise fail(f"DNS rebinding blocked: {host} resolves to private IP {ip}")

        def check_redirect(request: httpx.Request) -> None:
            if request.url.host != hostname:
                check_host(request.url.host)

        check_host(hostname)

        limit = self.max_response_bytes
        try:
            with httpx.Client(
                timeout=args.timeout,
                follow_redirects=True,
                event_hooks={"request": [check_redirect]},
                transport=self.transport,
            ) as client:
                with client.stream("GET", args.url, headers=args.headers) as response:
                    content_length = response.headers.get("content-length")
                    if content_length and content_length.isdigit() and int(content_length) > limit:
                        raise fail(f"Response too large: {content_length} bytes (max: {limit})")

                    chunks = []
                    total = 0
                    for chunk in response.iter_bytes(chunk_size=8192):
                        total += len(chunk)
                        if total > limit:
                            raise fail(f"Response exceeded size limit: {total} bytes (max: {limit})")
                        chunks.append(chunk)

                    body_bytes = b"".join(chunks)
                    result: dict[str, Any] = {
                        "status_code": response.status_code,
                        "headers": dict(response.headers),
                        "url": str(response.url),
                    }
        except httpx.TimeoutException as e:
            raise fail(f"Request timed out after {args.timeout:g} seconds") from e
        except httpx.TooManyRedirects as e:
            raise fail("Too many redirects") from e
        except httpx.HTTPError as e:
            raise fail(f"Request failed: {e}") from e

        try:
            result["body"] = body_bytes.decode("utf-8")
        except UnicodeDecodeError:
            result["body"] = base64.b64encode(body_bytes).decode("ascii")
            result["encoding"] = "base64"
        return result
