"""
REST API client for the Upbit exchange.

Covers the four endpoints the trading system needs: accounts, minute candles,
order placement and order lookup. Private endpoints are signed with an HS256
JWT whose payload carries the SHA-512 hash of the query string.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import uuid
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional
from urllib.parse import unquote, urlencode

import aiohttp
import jwt

from .models import Account, Candle, Order

logger = logging.getLogger(__name__)


class ExchangeAPIError(Exception):
    """Base exception for exchange API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ExchangeAPIError):
    """Rate limit exceeded."""
    pass


# (minimum price, tick size), highest band first
PRICE_UNITS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("2000000"), Decimal("1000")),
    (Decimal("1000000"), Decimal("500")),
    (Decimal("500000"), Decimal("100")),
    (Decimal("100000"), Decimal("50")),
    (Decimal("10000"), Decimal("10")),
    (Decimal("1000"), Decimal("1")),
    (Decimal("100"), Decimal("0.1")),
    (Decimal("10"), Decimal("0.01")),
    (Decimal("1"), Decimal("0.001")),
    (Decimal("0.1"), Decimal("0.0001")),
    (Decimal("0.01"), Decimal("0.00001")),
    (Decimal("0.001"), Decimal("0.000001")),
    (Decimal("0.0001"), Decimal("0.0000001")),
)
MIN_PRICE_UNIT = Decimal("0.00000001")


def price_unit(price: Decimal) -> Decimal:
    """Tick size for a KRW-market price."""
    for floor, unit in PRICE_UNITS:
        if price >= floor:
            return unit
    return MIN_PRICE_UNIT


def floor_to_price_unit(price: Decimal) -> Decimal:
    """Round a price down onto the tick grid."""
    unit = price_unit(price)
    return (price / unit).to_integral_value(rounding=ROUND_DOWN) * unit


class UpbitClient:
    """
    Async REST client for Upbit.

    Features:
        - JWT (HS256) request signing with query hash
        - Automatic retries with exponential backoff on 5xx / timeouts
        - 4xx errors fail immediately

    Usage:
        async with UpbitClient(access_key, secret_key) as client:
            accounts = await client.get_accounts()
            candles = await client.get_candles("KRW-BTC", count=1)
    """

    DEFAULT_URL = "https://api.upbit.com"

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self._access_key = access_key
        self._secret_key = secret_key
        self._base_url = (base_url or self.DEFAULT_URL).rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    @classmethod
    def from_env(cls) -> "UpbitClient":
        return cls(
            access_key=os.environ.get("UPBIT_OPEN_API_ACCESS_KEY", ""),
            secret_key=os.environ.get("UPBIT_OPEN_API_SECRET_KEY", ""),
            base_url=os.environ.get("UPBIT_API_URL") or None,
        )

    async def __aenter__(self) -> "UpbitClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    # =========================================================================
    # Signing
    # =========================================================================

    def _auth_headers(self, params: Optional[dict] = None) -> dict[str, str]:
        payload: dict[str, Any] = {
            "access_key": self._access_key,
            "nonce": str(uuid.uuid4()),
        }
        if params:
            query = unquote(urlencode(params, doseq=True)).encode()
            payload["query_hash"] = hashlib.sha512(query).hexdigest()
            payload["query_hash_alg"] = "SHA512"

        token = jwt.encode(payload, self._secret_key, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
        signed: bool = True,
    ) -> Any:
        """
        Make an HTTP request with retries.

        Raises:
            ExchangeAPIError: On API errors
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            headers = {"Accept": "application/json"}
            if signed:
                headers.update(self._auth_headers(body if body is not None else params))

            try:
                async with self._session.request(
                    method, url, params=params, json=body, headers=headers
                ) as response:
                    if response.status == 429:
                        raise RateLimitError("Rate limit exceeded", status_code=429)

                    # 4xx client errors (except 429) - don't retry
                    if 400 <= response.status < 500:
                        text = await response.text()
                        raise ExchangeAPIError(
                            f"API error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    if response.status >= 500:
                        text = await response.text()
                        raise ExchangeAPIError(
                            f"Server error: {response.status} - {text}",
                            status_code=response.status,
                        )

                    return await response.json()

            except RateLimitError as e:
                delay = self._retry_delay * (2 ** attempt) * 2
                logger.warning(f"Rate limited, waiting {delay}s before retry")
                await asyncio.sleep(delay)
                last_error = e

            except ExchangeAPIError as e:
                if e.status_code and e.status_code >= 500:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Server error {e.status_code}, retry {attempt + 1}/{self._max_retries}"
                    )
                    await asyncio.sleep(delay)
                    last_error = e
                else:
                    raise

            except asyncio.TimeoutError:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request timeout, retry {attempt + 1}/{self._max_retries}")
                await asyncio.sleep(delay)
                last_error = ExchangeAPIError("Request timed out")

            except asyncio.CancelledError:
                raise

            except aiohttp.ClientError as e:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"Request failed: {e}, retry {attempt + 1}/{self._max_retries}")
                await asyncio.sleep(delay)
                last_error = ExchangeAPIError(str(e))

        raise last_error or ExchangeAPIError("Request failed after retries")

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def get_accounts(self) -> list[Account]:
        data = await self._request("GET", "/v1/accounts")
        return [Account.from_api(item) for item in data]

    async def get_candles(
        self,
        symbol: str,
        count: int = 1,
        to: Optional[str] = None,
    ) -> list[Candle]:
        """
        One-minute candles, newest first.

        `to` is an exclusive upper bound ("yyyy-MM-dd HH:mm:ss", UTC).
        """
        params: dict[str, Any] = {"market": symbol, "count": count}
        if to:
            params["to"] = to
        data = await self._request("GET", "/v1/candles/minutes/1", params=params, signed=False)
        return [Candle.from_api(item) for item in data]

    async def place_order(
        self,
        symbol: str,
        side: str,
        volume: Optional[Decimal],
        price: Optional[Decimal],
        ord_type: str,
        identifier: str,
    ) -> Order:
        """
        Submit an order.

        side: "bid" (buy) or "ask" (sell)
        ord_type: "limit", "price" (market buy by amount), "market" (market sell by volume)
        identifier: client-generated idempotency key, unique per order
        """
        body: dict[str, Any] = {
            "market": symbol,
            "side": side,
            "ord_type": ord_type,
            "identifier": identifier,
        }
        if volume is not None:
            body["volume"] = str(volume)
        if price is not None:
            if ord_type == "limit":
                price = floor_to_price_unit(price)
            body["price"] = str(price)

        logger.info(f"Placing order: {body}")
        data = await self._request("POST", "/v1/orders", body=body)
        return Order.from_api(data)

    async def get_order(self, order_uuid: str) -> Order:
        data = await self._request("GET", "/v1/order", params={"uuid": order_uuid})
        return Order.from_api(data)

    async def get_order_by_identifier(self, identifier: str) -> Order:
        """
        Look an order up by the client identifier it was placed with.

        Raises:
            ExchangeAPIError: status_code 404 when no order carries the identifier
        """
        data = await self._request("GET", "/v1/order", params={"identifier": identifier})
        return Order.from_api(data)
