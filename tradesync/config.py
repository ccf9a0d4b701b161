import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from dacite import from_dict

DEFAULT_BASE_URL = "https://api.bybit.com"
DEFAULT_DB_PATH = "trade_history.duckdb"


@dataclass
class RetryParameters:
    attempts: int = 3
    delay_ms: int = 2000


@dataclass
class ExecutionListParameters:
    category: str = "spot"
    limit: int = 100
    window_days: int = 7
    lookback_days: int = 725
    page_delay_ms: int = 100
    symbol: Optional[str] = None


@dataclass
class BybitSecrets:
    api_key: str
    api_secret: str
    base_url: str = DEFAULT_BASE_URL
    recv_window: str = "20000"
    timeout_seconds: int = 10
    retry: RetryParameters = field(default_factory=RetryParameters)
    executions: ExecutionListParameters = field(default_factory=ExecutionListParameters)


def default_secrets(api_key: str = "", api_secret: str = "") -> Dict[str, Any]:
    """Return the default API configuration dict for one set of credentials."""
    return {
        "api_key": api_key,
        "api_secret": api_secret,
        "base_url": DEFAULT_BASE_URL,
        "recv_window": "20000",
        "timeout_seconds": 10,
        "retry": {
            "attempts": 3,
            "delay_ms": 2000
        },
        "executions": {
            "category": "spot",
            "limit": 100,
            "window_days": 7,
            "lookback_days": 725,
            "page_delay_ms": 100,
            "symbol": None
        }
    }


def parse_secrets(secrets: Dict[str, Any]) -> BybitSecrets:
    return from_dict(data_class=BybitSecrets, data=secrets)


def load_secrets_from_env(environ: Optional[Dict[str, str]] = None) -> BybitSecrets:
    """
    Build secrets from the defaults with environment overrides applied.

    :param environ: Mapping to read instead of os.environ (for tests)
    :return: Parsed BybitSecrets
    """
    env = os.environ if environ is None else environ
    secrets = default_secrets(
        env.get("BYBIT_API_KEY", ""),
        env.get("BYBIT_API_SECRET", "")
    )
    if env.get("BYBIT_BASE_URL"):
        secrets["base_url"] = env["BYBIT_BASE_URL"]
    return parse_secrets(secrets)


def get_db_path(environ: Optional[Dict[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return env.get("TRADESYNC_DB_PATH") or DEFAULT_DB_PATH
