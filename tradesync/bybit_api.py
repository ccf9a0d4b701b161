"""
Signed request client for the Bybit v5 REST API.

Every call goes through send(), which signs the canonical query string,
retries transient failures a fixed number of times with a fixed delay, and
checks the retCode of the response envelope.
"""

import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, TypeVar, Union
from urllib.parse import urlencode

import requests

from .config import BybitSecrets, parse_secrets
from .errors import (
    AuthError,
    HTTPStatusError,
    MalformedResponseError,
    RemoteAPIError,
    TransportError,
    is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Coins below this equity are dust and left out of the balance snapshot
MIN_BALANCE = 0.01


@dataclass
class BybitEndpoint:
    api: str
    path: str
    signed: bool


def with_retry(
    func: Callable[[], T],
    attempts: int = 3,
    delay_seconds: float = 2.0,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "request"
) -> T:
    """
    Call func until it succeeds, fails with a non-retryable error, or
    attempts are exhausted. The last error is re-raised.

    :param func: Zero-argument callable performing one attempt
    :param attempts: Maximum number of attempts (>= 1)
    :param delay_seconds: Fixed pause between attempts
    :param retryable: Predicate deciding whether an error deserves another attempt
    :param sleep: Sleep function (injectable for tests)
    :param description: Label used in log messages
    """
    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if not retryable(e) or attempt >= attempts:
                raise
            logger.warning(
                f"Attempt {attempt}/{attempts} for {description} failed: {e}. "
                f"Retrying in {delay_seconds}s"
            )
            sleep(delay_seconds)
            attempt += 1


class BybitAPI:

    API_KEY_EXECUTIONS = "executions"
    API_KEY_WALLET_BALANCE = "wallet_balance"
    API_KEY_TICKERS = "tickers"

    API_ENDPOINTS: Dict[str, BybitEndpoint] = {
        API_KEY_EXECUTIONS: BybitEndpoint(API_KEY_EXECUTIONS, "/v5/execution/list", True),
        API_KEY_WALLET_BALANCE: BybitEndpoint(API_KEY_WALLET_BALANCE, "/v5/account/wallet-balance", True),
        API_KEY_TICKERS: BybitEndpoint(API_KEY_TICKERS, "/v5/market/tickers", False)
    }

    def __init__(self, secrets: Union[Dict[str, Any], BybitSecrets]) -> None:
        self.secrets: BybitSecrets = secrets if isinstance(secrets, BybitSecrets) else parse_secrets(secrets)
        self.sleep: Callable[[float], None] = time.sleep
        self._last_timestamp = 0
        self._timestamp_lock = threading.Lock()

    @property
    def api_key(self) -> str:
        return self.secrets.api_key

    # ==================== Signing ====================

    def next_timestamp(self) -> int:
        """Millisecond timestamp, strictly increasing for this client."""
        with self._timestamp_lock:
            now = int(time.time() * 1000)
            self._last_timestamp = max(now, self._last_timestamp + 1)
            return self._last_timestamp

    def generate_signature(self, timestamp: str, recv_window: str, query_string: str) -> str:
        payload = timestamp + self.secrets.api_key + recv_window + query_string
        return hmac.new(
            self.secrets.api_secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256
        ).hexdigest()

    def build_headers(self, query_string: str) -> Dict[str, str]:
        timestamp = str(self.next_timestamp())
        recv_window = self.secrets.recv_window
        return {
            "X-BAPI-API-KEY": self.secrets.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": recv_window,
            "X-BAPI-SIGN": self.generate_signature(timestamp, recv_window, query_string)
        }

    @staticmethod
    def build_query(params: Optional[Dict[str, Any]]) -> str:
        """Canonical query string: keys sorted, None and empty values dropped."""
        if not params:
            return ""
        items = [
            (key, str(value)) for key, value in sorted(params.items())
            if value is not None and value != ""
        ]
        return urlencode(items)

    # ==================== Transport ====================

    def send(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = True
    ) -> Dict[str, Any]:
        """
        GET path with params and return the checked response envelope.

        :raises AuthError: On HTTP 401, without retrying
        :raises TransportError: When all attempts failed at the transport level
        :raises MalformedResponseError: When all attempts returned an unparsable body
        :raises RemoteAPIError: When the envelope carries a non-zero retCode
        """
        query_string = self.build_query(params)
        url = f"{self.secrets.base_url}{path}"
        if query_string:
            url = f"{url}?{query_string}"

        body = with_retry(
            lambda: self._request_once(url, path, query_string, signed),
            attempts=self.secrets.retry.attempts,
            delay_seconds=self.secrets.retry.delay_ms / 1000,
            sleep=self.sleep,
            description=path
        )
        return self.check_envelope(body)

    def _request_once(self, url: str, path: str, query_string: str, signed: bool) -> Dict[str, Any]:
        headers = self.build_headers(query_string) if signed else {}

        try:
            response = requests.get(url, headers=headers, timeout=self.secrets.timeout_seconds)
        except requests.RequestException as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            logger.error(f"HTTP 401 from {path}: check API key/secret and IP whitelist")
            raise AuthError("Unauthorized: check API key/secret and IP whitelist")

        if response.status_code != 200:
            logger.warning(f"Unexpected HTTP status {response.status_code} from {path}")
            raise HTTPStatusError(response.status_code, str(response.text))

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(f"Could not parse JSON from {path}: {e}")
            raise MalformedResponseError(f"Invalid JSON in response from {path}") from e

        if not isinstance(body, dict):
            raise MalformedResponseError(f"Unexpected response shape from {path}")

        return body

    @staticmethod
    def check_envelope(body: Dict[str, Any]) -> Dict[str, Any]:
        """Raise RemoteAPIError for a non-zero retCode; a missing retCode counts as success."""
        try:
            ret_code = int(body.get("retCode", 0))
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid retCode: {body.get('retCode')!r}") from e

        if ret_code != 0:
            raise RemoteAPIError(ret_code, body.get("retMsg"))
        return body

    # ==================== Endpoints ====================

    def get_executions(self, params: Dict[str, Any]) -> Dict[str, Any]:
        endpoint = self.API_ENDPOINTS[self.API_KEY_EXECUTIONS]
        return self.send(endpoint.path, params, signed=endpoint.signed)

    def get_spot_balance(self) -> Dict[str, str]:
        """
        Fetch the unified account wallet.

        :return: {"TOTAL": total wallet balance, coin: equity} for coins whose
                 equity is at least MIN_BALANCE
        """
        endpoint = self.API_ENDPOINTS[self.API_KEY_WALLET_BALANCE]
        body = self.send(endpoint.path, {"accountType": "UNIFIED"}, signed=endpoint.signed)

        accounts = (body.get("result") or {}).get("list") or []
        if not accounts:
            logger.warning("Wallet balance response contained no accounts")
            return {}

        account = accounts[0]
        balances = {"TOTAL": str(account.get("totalWalletBalance", "0"))}

        for coin in account.get("coin") or []:
            name = coin.get("coin")
            equity = coin.get("equity")
            if not name or not equity or equity == "0":
                continue
            try:
                value = float(equity)
            except (TypeError, ValueError):
                continue
            if value >= MIN_BALANCE:
                balances[name] = equity

        return balances

    def get_market_prices(self, category: str = "spot") -> Dict[str, float]:
        """Last traded price per symbol; tickers with unparsable prices are skipped."""
        endpoint = self.API_ENDPOINTS[self.API_KEY_TICKERS]
        body = self.send(endpoint.path, {"category": category}, signed=endpoint.signed)

        prices = {}
        for ticker in (body.get("result") or {}).get("list") or []:
            try:
                prices[ticker["symbol"]] = float(ticker["lastPrice"])
            except (KeyError, TypeError, ValueError):
                continue
        return prices

    def get_current_price(self, symbol: str, category: str = "spot") -> float:
        endpoint = self.API_ENDPOINTS[self.API_KEY_TICKERS]
        body = self.send(endpoint.path, {"category": category, "symbol": symbol}, signed=endpoint.signed)

        tickers = (body.get("result") or {}).get("list") or []
        if not tickers:
            raise RemoteAPIError(-1, f"price for {symbol} not found")

        try:
            return float(tickers[0]["lastPrice"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid lastPrice for {symbol}") from e
