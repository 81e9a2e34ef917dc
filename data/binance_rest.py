import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.settings import (
    BINANCE_REST_BASE_URL,
    BINANCE_API_KEY,
    BINANCE_SECRET_KEY,
    QUOTE_ASSET,
    CONTRACT_TYPE,
    TIMEFRAME_1D,
    ADR_LOOKBACK_DAYS,
)
from data.parsing import parse_rest_kline, parse_rest_ticker
from models.types import Candle, InstrumentSnapshot, MalformedPayloadError
from utils.logger import setup_logger

logger = setup_logger("BinanceRest")


class CredentialsMissingError(RuntimeError):
    pass


class BinanceRestClient:
    """
    Read-only market data over the futures REST API, plus the signed request
    mode needed for account-scoped endpoints.
    """

    def __init__(
        self,
        api_key: str = BINANCE_API_KEY,
        secret_key: str = BINANCE_SECRET_KEY,
        base_url: str = BINANCE_REST_BASE_URL,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.base_url = base_url
        self.timeout = timeout
        if session is None:
            # Persistent session so baseline refreshes reuse sockets
            session = requests.Session()
            retries = Retry(total=3, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504])
            adapter = HTTPAdapter(max_retries=retries, pool_connections=20, pool_maxsize=20)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session

    def close(self):
        self.session.close()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------
    def _sign(self, query_string: str) -> str:
        return hmac.new(
            self.secret_key.encode("utf-8"),
            query_string.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None, signed: bool = False):
        params = dict(params or {})
        headers = {}
        if self.api_key:
            headers["X-MBX-APIKEY"] = self.api_key

        if signed:
            if not self.api_key or not self.secret_key:
                raise CredentialsMissingError("Binance API credentials not found in environment variables")
            params["timestamp"] = int(time.time() * 1000)
            params["signature"] = self._sign(urlencode(params))

        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            body = getattr(getattr(e, "response", None), "text", None)
            logger.error(f"Binance API error for {endpoint}: {body or e}")
            raise

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    def get_exchange_info(self) -> Dict[str, Any]:
        return self._request("/fapi/v1/exchangeInfo")

    def get_klines(self, symbol: str, interval: str, limit: int = 500) -> List[list]:
        return self._request("/fapi/v1/klines", {"symbol": symbol, "interval": interval, "limit": limit})

    def get_24hr_ticker(self, symbol: Optional[str] = None):
        params = {"symbol": symbol} if symbol else {}
        return self._request("/fapi/v1/ticker/24hr", params)

    def get_account_info(self) -> Dict[str, Any]:
        return self._request("/fapi/v2/account", signed=True)

    # ------------------------------------------------------------------
    # Helpers that degrade to empty results
    # ------------------------------------------------------------------
    def get_symbols(self, limit: Optional[int] = None) -> List[str]:
        """Actively trading USDT perpetuals."""
        try:
            info = self.get_exchange_info()
        except requests.RequestException:
            return []

        symbols = [
            s["symbol"]
            for s in info.get("symbols", [])
            if s.get("status") == "TRADING"
            and s.get("contractType") == CONTRACT_TYPE
            and s.get("quoteAsset") == QUOTE_ASSET
        ]
        logger.info(f"Exchange universe: {len(symbols)} {QUOTE_ASSET} perpetuals")
        return symbols[:limit] if limit else symbols

    def get_candles(self, symbol: str, interval: str, limit: int = 500) -> List[Candle]:
        candles = []
        for row in self.get_klines(symbol, interval, limit):
            try:
                candles.append(parse_rest_kline(symbol, interval, row))
            except MalformedPayloadError as e:
                logger.warning(f"Skipping malformed kline for {symbol}: {e}")
        return candles

    def get_historical_ranges(self, symbol: str, days: int = ADR_LOOKBACK_DAYS) -> List[float]:
        """Daily high-low ranges, oldest first. Empty on failure."""
        try:
            candles = self.get_candles(symbol, TIMEFRAME_1D, days)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch historical ranges for {symbol}: {e}")
            return []
        return [c.high - c.low for c in candles]

    def get_market_snapshots(self, symbols: Optional[List[str]] = None) -> List[InstrumentSnapshot]:
        """24h tickers as snapshots, used to seed the store before the stream delivers."""
        try:
            tickers = self.get_24hr_ticker()
        except requests.RequestException:
            return []

        wanted = set(symbols) if symbols else None
        snapshots = []
        for t in tickers:
            if wanted is not None and t.get("symbol") not in wanted:
                continue
            try:
                snapshots.append(parse_rest_ticker(t))
            except MalformedPayloadError as e:
                logger.warning(f"Skipping malformed ticker: {e}")
        return snapshots
