"""
Web Client

Per-wallet HTTP client with optional SOCKS5/HTTP proxy.

Features:
- One aiohttp session per client, never shared between wallets
- Fixed or random User-Agent chosen once at construction
- Every failure returned as an Envelope (NO_RESPONSE, REQUEST_SETUP_ERROR, HTTP_ERROR)
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp
from aiohttp_socks import ProxyConnectionError, ProxyConnector, ProxyError, ProxyTimeoutError, ProxyType
from fake_useragent import UserAgent
from loguru import logger

from .outcomes import Envelope, ErrorKind
from .proxy_config import ProxyBinding


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
)

PROXY_ECHO_URL = "https://httpbin.org/ip"

SOCKS_TYPES = {
    'socks4': ProxyType.SOCKS4,
    'socks5': ProxyType.SOCKS5,
    'socks5h': ProxyType.SOCKS5,
}


def socks_connector(proxy: Optional[ProxyBinding]) -> Optional[ProxyConnector]:
    """
    aiohttp_socks connector for SOCKS proxies, None otherwise

    Must be called inside a running event loop.
    """
    if proxy is None or proxy.scheme not in SOCKS_TYPES:
        return None
    return ProxyConnector(
        proxy_type=SOCKS_TYPES[proxy.scheme],
        host=proxy.host,
        port=proxy.port,
        username=proxy.username,
        password=proxy.password,
        rdns=proxy.scheme == 'socks5h',
    )


def proxy_request_kwargs(proxy: Optional[ProxyBinding]) -> Dict[str, Any]:
    """HTTP(S) proxies go through aiohttp's per-request `proxy=` argument"""
    if proxy is None or proxy.scheme in SOCKS_TYPES:
        return {}
    return {'proxy': proxy.url}


def generate_user_agent() -> str:
    """Random desktop browser User-Agent, or the default one if generation fails"""
    try:
        return UserAgent().random
    except Exception as e:
        logger.warning(f"⚠ Random User-Agent generation failed, using default: {e}")
        return DEFAULT_USER_AGENT


class WebClient:
    """
    HTTP client bound to one proxy for its whole lifetime

    Headers, timeout, User-Agent and proxy are resolved in __init__ and never
    change afterwards. Per-request headers (e.g. Authorization) are merged for
    that request only.
    """

    def __init__(
        self,
        proxy: Optional[ProxyBinding] = None,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
        random_user_agent: bool = True,
        headers: Optional[Dict[str, str]] = None,
        label: str = "web"
    ):
        """
        Initialize web client

        Args:
            proxy: Optional egress proxy
            timeout: Total request timeout in seconds
            user_agent: Fixed User-Agent (takes precedence over random_user_agent)
            random_user_agent: Generate a random User-Agent when none is given
            headers: Default headers sent with every request
            label: Prefix for log messages (usually the wallet id)
        """
        self.proxy = proxy
        self.timeout = timeout
        self.label = label

        if user_agent:
            self.user_agent = user_agent
        elif random_user_agent:
            self.user_agent = generate_user_agent()
        else:
            self.user_agent = DEFAULT_USER_AGENT

        self.default_headers: Dict[str, str] = {**(headers or {}), 'User-Agent': self.user_agent}
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_kwargs: Dict[str, Any] = proxy_request_kwargs(proxy)

        if proxy:
            logger.debug(f"[{label}] ✓ Web client proxy configured: {proxy.masked_url}")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=socks_connector(self.proxy),
                headers=self.default_headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        text = await response.text(errors='replace')
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Envelope:
        """
        Send one request

        Args:
            method: HTTP method
            url: Absolute URL
            body: JSON body (None sends no body)
            headers: Extra headers for this request only

        Returns:
            Envelope; never raises
        """
        try:
            session = self._get_session()
            async with session.request(
                method,
                url,
                json=body,
                headers=headers,
                **self._request_kwargs
            ) as response:
                data = await self._read_body(response)
                response_headers = dict(response.headers)

                if response.status >= 400:
                    return Envelope(
                        success=False,
                        data=data,
                        status=response.status,
                        headers=response_headers,
                        message=response.reason or f"HTTP {response.status}",
                        error_kind=ErrorKind.HTTP_ERROR,
                    )

                return Envelope(
                    success=True,
                    data=data,
                    status=response.status,
                    headers=response_headers,
                )

        except aiohttp.InvalidURL as e:
            return Envelope(success=False, message=f"Invalid URL: {e}", error_kind=ErrorKind.REQUEST_SETUP_ERROR)
        except asyncio.TimeoutError:
            return Envelope(
                success=False,
                message=f"Request timed out after {self.timeout}s",
                error_kind=ErrorKind.NO_RESPONSE,
            )
        except (ProxyError, ProxyConnectionError, ProxyTimeoutError) as e:
            return Envelope(success=False, message=f"Proxy error: {e}", error_kind=ErrorKind.NO_RESPONSE)
        except aiohttp.ClientError as e:
            return Envelope(success=False, message=str(e) or type(e).__name__, error_kind=ErrorKind.NO_RESPONSE)
        except Exception as e:
            return Envelope(success=False, message=str(e) or type(e).__name__, error_kind=ErrorKind.REQUEST_SETUP_ERROR)

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> Envelope:
        return await self.request('GET', url, headers=headers)

    async def post(self, url: str, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Envelope:
        return await self.request('POST', url, body=body, headers=headers)

    async def put(self, url: str, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Envelope:
        return await self.request('PUT', url, body=body, headers=headers)

    async def delete(self, url: str, headers: Optional[Dict[str, str]] = None) -> Envelope:
        return await self.request('DELETE', url, headers=headers)

    async def test_proxy(self, echo_url: str = PROXY_ECHO_URL) -> Envelope:
        """
        Check that the proxy works by asking an echo service for our public IP

        Returns:
            Envelope with data {'ip': ...} on success
        """
        if self.proxy is None:
            return Envelope(success=False, message="No proxy configured", error_kind=ErrorKind.REQUEST_SETUP_ERROR)

        result = await self.get(echo_url)
        if not result.success:
            logger.warning(f"[{self.label}] ✗ Proxy test failed: {result.describe_error()}")
            return result

        ip = result.data.get('origin') if isinstance(result.data, dict) else result.data
        logger.info(f"[{self.label}] ✓ Proxy OK, egress IP: {ip}")
        return Envelope(success=True, data={'ip': ip}, status=result.status, headers=result.headers)

    async def close(self):
        """Close the underlying session"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> 'WebClient':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
