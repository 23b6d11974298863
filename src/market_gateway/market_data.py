# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Typed market-data helpers on top of GatewayService.

Each helper builds an upstream endpoint path and assigns the priority of its
data family: previous-day aggregates are what users watch, so they jump
ahead of search, grouped daily data, and news.

The price-oriented helpers (get_stock_price, get_watchlist_prices,
get_trending_stocks, search_stocks) add a second, shorter-lived cache layer
keyed by symbol or query on top of the gateway's response cache.
"""

import asyncio
import json
import logging
import math
import re
from collections.abc import Callable
from datetime import date as Date
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .exceptions import GatewayError, UpstreamError
from .gateway.cache import MISS
from .gateway.service import GatewayService

logger = logging.getLogger(__name__)

PRIORITY_PREVIOUS_CLOSE = 5
PRIORITY_TICKER_SEARCH = 3
PRIORITY_GROUPED_DAILY = 2
PRIORITY_NEWS = 1

STOCK_PRICE_TTL = 3600
WATCHLIST_PRICES_TTL = 60
TRENDING_STOCKS_TTL = 60
TRENDING_STOCKS_KEY = "trendingStocks"
SEARCH_RESULTS_TTL = 1800
EMPTY_SEARCH_RESULTS_TTL = 3600
SEARCH_PRICE_LIMIT = 5

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class PriceQuote(BaseModel):
    """Last close of one symbol; price is None when no data was available."""

    symbol: str
    price: float | None = None


class TrendingStock(BaseModel):
    """One row of the trending list, derived from a grouped daily bar."""

    symbol: str
    price: float
    volume: float
    change: float
    change_percent: str


class SearchResult(BaseModel):
    """A ticker search match, with price data for the first few matches."""

    symbol: str
    name: str | None = None
    price: float | None = None
    change: float | None = None
    change_percent: str | None = None
    volume: float | None = None


class AggregateBar(BaseModel):
    """One OHLCV bar as returned by the aggregates endpoints."""

    ticker: str | None = Field(default=None, alias="T")
    open: float | None = Field(default=None, alias="o")
    close: float | None = Field(default=None, alias="c")
    volume: float | None = Field(default=None, alias="v")


class TickerMatch(BaseModel):
    ticker: str
    name: str | None = None


class _ResultsEnvelope(BaseModel):
    results: list[Any] | None = None


_PRICE_QUOTES = TypeAdapter(list[PriceQuote])
_TRENDING_STOCKS = TypeAdapter(list[TrendingStock])
_SEARCH_RESULTS = TypeAdapter(list[SearchResult])


def previous_trading_day(today: Date) -> Date:
    """
    Approximate the last completed trading day.

    Monday and Sunday map to the preceding Friday, every other day to the
    day before. Market holidays are not taken into account.
    """
    weekday = today.weekday()
    if weekday == 0:
        return today - timedelta(days=3)
    if weekday == 6:
        return today - timedelta(days=2)
    return today - timedelta(days=1)


def _validate_date(value: str) -> str:
    if not _DATE_PATTERN.match(value):
        raise ValueError(f"date must be formatted as YYYY-MM-DD, got {value!r}")
    try:
        Date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"invalid calendar date {value!r}") from e
    return value


def _previous_day_path(ticker: str) -> str:
    return f"/v2/aggs/ticker/{quote(ticker, safe='')}/prev"


def _ticker_search_path(query: str) -> str:
    return f"/v3/reference/tickers?search={quote(query, safe='')}&active=true"


def _grouped_daily_path(date: str) -> str:
    return f"/v2/aggs/grouped/locale/us/market/stocks/{date}"


def _change_percent(close: float, open_: float | None) -> str:
    if not open_:
        return "0.00%"
    return f"{(close - open_) / open_ * 100:.2f}%"


def _normalize_symbols(symbols: list[str]) -> list[str]:
    return sorted({s.strip().upper() for s in symbols if s and s.strip()})


def _stock_key(symbol: str) -> str:
    return f"stock:{symbol.strip().upper()}"


def _results(body: Any) -> list[Any]:
    """Rows of a {"results": [...]} body. Raises ValidationError on any other shape."""
    return _ResultsEnvelope.model_validate(body).results or []


def _first_bar(body: Any) -> AggregateBar | None:
    rows = _results(body)
    return AggregateBar.model_validate(rows[0]) if rows else None


def _parse_rows(model: type[M], rows: list[Any]) -> list[M]:
    """Validate rows against model, skipping the ones that do not fit."""
    parsed: list[M] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError:
            logger.debug(f"Skipping malformed {model.__name__} row: {row!r}")
    return parsed


def _parse_cached_price(raw: str) -> float | None:
    """
    Price stored under stock:{SYMBOL}.

    Accepts a plain number, a quoted number, or an object carrying the
    price as "c" or "price". Returns None for anything else, including the
    "[object Object]" text left behind by broken writers.
    """
    try:
        value: Any = json.loads(raw)
    except json.JSONDecodeError:
        return None

    if isinstance(value, dict):
        value = value.get("c", value.get("price"))
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None

    try:
        price = float(value)
    except ValueError:
        return None
    return price if math.isfinite(price) else None


class MarketDataGateway:
    """
    Market-data API built on a running GatewayService.

    Example:
        >>> async with GatewayService(backend, config=config) as service:
        ...     market = MarketDataGateway(service)
        ...     body = await market.fetch_previous_day_data("AAPL")
    """

    def __init__(self, service: GatewayService) -> None:
        self.service = service
        self.cache = service.cache

    # ------------------------------------------------------------------
    # Raw endpoint helpers
    # ------------------------------------------------------------------

    async def fetch_previous_day_data(self, ticker: str) -> Any:
        """Previous-day OHLCV aggregate for one ticker (priority 5)."""
        return await self.service.fetch(
            _previous_day_path(ticker), priority=PRIORITY_PREVIOUS_CLOSE
        )

    async def search_tickers(self, query: str) -> Any:
        """Active tickers matching a free-text query (priority 3)."""
        return await self.service.fetch(
            _ticker_search_path(query), priority=PRIORITY_TICKER_SEARCH
        )

    async def fetch_grouped_daily_data(self, date: str) -> Any:
        """
        Daily bars for the whole US stock market on one date (priority 2).

        Raises:
            ValueError: If date is not a YYYY-MM-DD calendar date
        """
        _validate_date(date)
        return await self.service.fetch(
            _grouped_daily_path(date), priority=PRIORITY_GROUPED_DAILY
        )

    async def fetch_news(self, ticker: str) -> Any:
        """Recent news articles mentioning a ticker (priority 1)."""
        return await self.service.fetch(
            f"/v2/reference/news?ticker={quote(ticker, safe='')}",
            priority=PRIORITY_NEWS,
        )

    async def _fetch_parsed(
        self, endpoint_path: str, priority: int, parse: Callable[[Any], T]
    ) -> T:
        """
        Fetch endpoint_path and parse the body.

        A body that parse rejects is deleted from the response cache and the
        endpoint is fetched once more, so a corrupt entry never outlives the
        call that found it.

        Raises:
            UpstreamError: If the refetched body is malformed too
        """
        cache_key = self.cache.key_for_endpoint(endpoint_path)
        endpoint = endpoint_path.split("?", 1)[0]

        for attempt in range(2):
            body = await self.service.fetch(endpoint_path, priority=priority)
            try:
                return parse(body)
            except ValidationError as e:
                logger.error(
                    f"Malformed response for {endpoint} (attempt {attempt + 1}), "
                    f"deleting '{cache_key}': {e}"
                )
                await self.cache.invalidate(cache_key)

        raise UpstreamError(f"Malformed response for {endpoint}", endpoint=endpoint)

    async def _previous_bar(self, symbol: str) -> AggregateBar | None:
        return await self._fetch_parsed(
            _previous_day_path(symbol), PRIORITY_PREVIOUS_CLOSE, _first_bar
        )

    # ------------------------------------------------------------------
    # Price helpers
    # ------------------------------------------------------------------

    async def _cached_price(self, symbol: str) -> float | None:
        cache_key = _stock_key(symbol)
        cached = await self.cache.get_raw(cache_key)
        if cached is None:
            return None

        price = _parse_cached_price(cached)
        if price is None:
            logger.error(f"Corrupt cached price for {symbol}: {cached!r}")
            await self.cache.invalidate(cache_key)
            return None

        logger.debug(f"Cache hit: {symbol} = {price}")
        return price

    async def get_stock_price(self, symbol: str) -> float | None:
        """
        Last close for symbol, cached under stock:{SYMBOL} for an hour.

        A close of zero counts as no data.

        Returns:
            The close price, or None when the upstream had no data or failed
        """
        symbol = symbol.strip().upper()

        price = await self._cached_price(symbol)
        if price is not None:
            return price

        logger.debug(f"Cache miss for {symbol}, fetching from API")

        try:
            bar = await self._previous_bar(symbol)
        except GatewayError as e:
            logger.error(f"Error fetching {symbol} price: {e}")
            return None

        if bar is None or not bar.close:
            logger.warning(f"No price data found for {symbol}")
            return None

        await self.cache.set_raw(_stock_key(symbol), str(bar.close), ttl=STOCK_PRICE_TTL)
        logger.info(f"Fetched {symbol} = {bar.close}")
        return bar.close

    async def get_watchlist_prices(self, symbols: list[str]) -> list[PriceQuote]:
        """
        Prices for a set of symbols, cached as one composite entry for 60s.

        Symbols are upper-cased, de-duplicated and sorted, so the same set
        always maps to the same cache key.
        """
        normalized = _normalize_symbols(symbols)
        if not normalized:
            return []

        cache_key = f"prices:{','.join(normalized)}"
        cached = await self.cache.get_json(cache_key)
        if cached is not MISS:
            try:
                return _PRICE_QUOTES.validate_python(cached)
            except ValidationError as e:
                logger.error(f"Corrupt cached watchlist prices at '{cache_key}': {e}")
                await self.cache.invalidate(cache_key)

        prices = await asyncio.gather(*(self.get_stock_price(s) for s in normalized))
        quotes = [PriceQuote(symbol=s, price=p) for s, p in zip(normalized, prices)]

        await self.cache.set_json(
            cache_key,
            _PRICE_QUOTES.dump_python(quotes, mode="json"),
            ttl=WATCHLIST_PRICES_TTL,
        )
        return quotes

    async def get_trending_stocks(
        self,
        limit: int = 20,
        min_price: float = 100.0,
        date: str | None = None,
    ) -> list[TrendingStock]:
        """
        Highest-volume stocks above min_price on the previous trading day.

        Bars without a ticker or a numeric close are skipped.

        Args:
            limit: Maximum number of rows
            min_price: Only closes strictly above this price are kept
            date: YYYY-MM-DD override; defaults to the previous trading day

        Raises:
            UpstreamError: If the grouped daily response has no results
        """
        default_date = previous_trading_day(datetime.now(timezone.utc).date()).isoformat()
        if date is None:
            date = default_date
        else:
            _validate_date(date)

        # The shared key only ever holds the default view
        cache_key = TRENDING_STOCKS_KEY
        if (limit, min_price, date) != (20, 100.0, default_date):
            cache_key = f"{TRENDING_STOCKS_KEY}:{date}:{min_price:g}:{limit}"

        cached = await self.cache.get_json(cache_key)
        if cached is not MISS:
            try:
                stocks = _TRENDING_STOCKS.validate_python(cached)
                logger.debug("Returning cached trending stocks")
                return stocks
            except ValidationError as e:
                logger.error(f"Corrupt cached trending stocks at '{cache_key}': {e}")
                await self.cache.invalidate(cache_key)

        rows = await self._fetch_parsed(
            _grouped_daily_path(date), PRIORITY_GROUPED_DAILY, _results
        )
        if not rows:
            raise UpstreamError(
                f"Unexpected grouped daily response for {date}",
                endpoint="/v2/aggs/grouped/locale/us/market/stocks",
            )

        logger.info(f"Received {len(rows)} stocks for {date}")

        trending = [
            TrendingStock(
                symbol=bar.ticker,
                price=bar.close,
                volume=bar.volume or 0,
                change=bar.close - (bar.open if bar.open is not None else bar.close),
                change_percent=_change_percent(bar.close, bar.open),
            )
            for bar in _parse_rows(AggregateBar, rows)
            if bar.ticker and bar.close is not None and bar.close > min_price
        ]
        trending.sort(key=lambda s: s.volume, reverse=True)
        trending = trending[:limit]

        await self.cache.set_json(
            cache_key,
            _TRENDING_STOCKS.dump_python(trending, mode="json"),
            ttl=TRENDING_STOCKS_TTL,
        )
        return trending

    async def search_stocks(self, query: str) -> list[SearchResult]:
        """
        Ticker search with prices for the first few matches.

        Results are cached under search:{query} (lower-cased) for 30 minutes,
        an empty result for an hour. Each of the first SEARCH_PRICE_LIMIT
        matches is priced from the stock:{SYMBOL} cache or, on a miss, from
        the previous-day aggregate. A match whose price cannot be fetched is
        returned without price data.

        Raises:
            ValueError: If query is blank
            GatewayError: If the ticker search itself fails
        """
        query = query.strip()
        if not query:
            raise ValueError("query must not be empty")

        cache_key = f"search:{query.lower()}"
        cached = await self.cache.get_json(cache_key)
        if cached is not MISS:
            try:
                results = _SEARCH_RESULTS.validate_python(cached)
                logger.debug(f"Cache hit for search: {query!r}")
                return results
            except ValidationError as e:
                logger.error(f"Corrupt cached search results at '{cache_key}': {e}")
                await self.cache.invalidate(cache_key)

        rows = await self._fetch_parsed(
            _ticker_search_path(query), PRIORITY_TICKER_SEARCH, _results
        )
        matches = _parse_rows(TickerMatch, rows)

        if not matches:
            await self.cache.set_json(cache_key, [], ttl=EMPTY_SEARCH_RESULTS_TTL)
            return []

        logger.info(f"Found {len(matches)} matching stocks for {query!r}")

        results = list(
            await asyncio.gather(
                *(self._priced_match(m) for m in matches[:SEARCH_PRICE_LIMIT])
            )
        )

        await self.cache.set_json(
            cache_key,
            _SEARCH_RESULTS.dump_python(results, mode="json"),
            ttl=SEARCH_RESULTS_TTL,
        )
        return results

    async def _priced_match(self, match: TickerMatch) -> SearchResult:
        price = await self._cached_price(match.ticker)
        if price is not None:
            return SearchResult(symbol=match.ticker, name=match.name, price=price)

        try:
            bar = await self._previous_bar(match.ticker)
        except GatewayError as e:
            logger.error(f"Error processing {match.ticker}: {e}")
            bar = None

        if bar is None or not bar.close:
            return SearchResult(symbol=match.ticker, name=match.name)

        await self.cache.set_raw(
            _stock_key(match.ticker), str(bar.close), ttl=STOCK_PRICE_TTL
        )
        return SearchResult(
            symbol=match.ticker,
            name=match.name,
            price=bar.close,
            change=bar.close - bar.open if bar.open is not None else None,
            change_percent=_change_percent(bar.close, bar.open) if bar.open else None,
            volume=bar.volume or None,
        )


__all__ = [
    "AggregateBar",
    "MarketDataGateway",
    "PriceQuote",
    "SearchResult",
    "TickerMatch",
    "TrendingStock",
    "previous_trading_day",
]
