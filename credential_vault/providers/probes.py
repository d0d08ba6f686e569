"""
HTTP probes for the supported providers.

Each probe performs the cheapest authenticated call the provider offers and
maps the answer onto :class:`~.dispatcher.ProbeError`. They only check a
secret; fetching accounts, balances or quotes belongs to the provider
clients elsewhere in the application.
"""
import hmac
import time
import hashlib
import logging
from typing import Optional
from urllib.parse import urlencode

import aiohttp

from .dispatcher import (
    ProbeError,
    ValidityDispatcher,
    INVALID,
    NETWORK,
    RATE_LIMITED,
    HTTP_ERROR,
)
from ..vault.config import VaultConfig

logger = logging.getLogger("credential_vault.providers")

USER_AGENT = "credential-vault/1.0"


def _status_error(provider: str, status: int) -> ProbeError:
    if status in (401, 403):
        return ProbeError(INVALID, f"{provider} rejected the credentials ({status})")
    if status == 429:
        return ProbeError(RATE_LIMITED, f"{provider} rate limit exceeded, try again later")
    return ProbeError(HTTP_ERROR, f"{provider} API error: {status}")


class HttpProbe:
    """Base class holding an optional shared :class:`aiohttp.ClientSession`."""

    name = "provider"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, base_url: Optional[str] = None):
        self._session = session
        if base_url:
            self.base_url = base_url

    async def probe(self, raw_secret: str) -> Optional[ProbeError]:
        try:
            if self._session is not None:
                return await self._check(self._session, raw_secret)
            async with aiohttp.ClientSession() as session:
                return await self._check(session, raw_secret)
        except aiohttp.ClientError as err:
            logger.debug("%s probe failed: %s", self.name, err)
            return ProbeError(NETWORK, f"Network error: {err}")

    async def _check(self, session: aiohttp.ClientSession, raw_secret: str) -> Optional[ProbeError]:
        raise NotImplementedError


class MonobankProbe(HttpProbe):
    """Monobank personal API: ``GET /personal/client-info`` with ``X-Token``."""

    name = "monobank"
    base_url = "https://api.monobank.ua"

    async def _check(self, session, raw_secret):
        headers = {"X-Token": raw_secret, "User-Agent": USER_AGENT}
        async with session.get(f"{self.base_url}/personal/client-info", headers=headers) as resp:
            if resp.status == 200:
                return None
            return _status_error("Monobank", resp.status)


class AlphaVantageProbe(HttpProbe):
    """Alpha Vantage: a ``GLOBAL_QUOTE`` lookup, errors come back in the body."""

    name = "alpha_vantage"
    base_url = "https://www.alphavantage.co"

    async def _check(self, session, raw_secret):
        params = {"function": "GLOBAL_QUOTE", "symbol": "SPY", "apikey": raw_secret}
        async with session.get(f"{self.base_url}/query", params=params) as resp:
            if resp.status != 200:
                return _status_error("Alpha Vantage", resp.status)
            data = await resp.json(content_type=None)
        if not isinstance(data, dict):
            return ProbeError(HTTP_ERROR, "Alpha Vantage returned an unexpected payload")
        if "Error Message" in data:
            return ProbeError(INVALID, "Invalid Alpha Vantage API key")
        if "Note" in data or "Information" in data:
            return ProbeError(RATE_LIMITED, "Alpha Vantage rate limit exceeded")
        return None


class BinanceProbe(HttpProbe):
    """Binance: signed ``GET /api/v3/account``.

    The secret is the key pair joined as ``"<api_key>:<secret_key>"``.
    """

    name = "binance"
    base_url = "https://api.binance.com"

    @staticmethod
    def sign(query: str, secret_key: str) -> str:
        return hmac.new(
            secret_key.encode("utf-8"), query.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    async def _check(self, session, raw_secret):
        api_key, sep, secret_key = raw_secret.partition(":")
        if not sep or not api_key or not secret_key:
            return ProbeError(INVALID, "Binance credentials must be '<api_key>:<secret_key>'")
        query = urlencode({"timestamp": int(time.time() * 1000), "recvWindow": 5000})
        url = f"{self.base_url}/api/v3/account?{query}&signature={self.sign(query, secret_key)}"
        headers = {"X-MBX-APIKEY": api_key, "User-Agent": USER_AGENT}
        async with session.get(url, headers=headers) as resp:
            if resp.status == 200:
                return None
            return _status_error("Binance", resp.status)


def default_dispatcher(
    config: Optional[VaultConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> ValidityDispatcher:
    """Dispatcher wired with the built-in HTTP probes.

    Timeout and retry budget come from ``config`` (``VAULT_PROBE_TIMEOUT`` and
    ``VAULT_PROBE_RETRIES``); without one the dispatcher defaults apply.
    """
    options = {}
    if config is not None:
        options = {"timeout": config.probe_timeout, "max_retries": config.probe_retries}
    return ValidityDispatcher(
        probes={
            "monobank": MonobankProbe(session),
            "alpha_vantage": AlphaVantageProbe(session),
            "binance": BinanceProbe(session),
        },
        **options,
    )
