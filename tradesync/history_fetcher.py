"""
Paginated trade history fetcher.

The execution list endpoint only accepts ranges of at most seven days, so a
long range is cut into fixed windows. Each window is read page by page
following the opaque nextPageCursor until the API returns an empty one.
"""

import logging
import time
from typing import Optional, List, Dict, Any, Iterator, Tuple, Callable

from .config import ExecutionListParameters
from .errors import MalformedResponseError
from .models import Execution

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
WINDOW_DAYS = 7
PAGE_LIMIT = 100
PAGE_DELAY_SECONDS = 0.1


def iter_windows(
    start_ms: int,
    end_ms: int,
    window_ms: int = WINDOW_DAYS * DAY_MS,
    backward: bool = True
) -> Iterator[Tuple[int, int]]:
    """
    Split [start_ms, end_ms) into half-open windows of at most window_ms.

    :param backward: Yield the most recent window first (full backfill) instead
                     of the oldest first (incremental gap)
    """
    if window_ms <= 0:
        raise ValueError(f"window_ms must be positive, got {window_ms}")

    if backward:
        window_end = end_ms
        while window_end > start_ms:
            window_start = max(start_ms, window_end - window_ms)
            yield window_start, window_end
            window_end = window_start
    else:
        window_start = start_ms
        while window_start < end_ms:
            window_end = min(end_ms, window_start + window_ms)
            yield window_start, window_end
            window_start = window_end


def parse_execution_page(body: Dict[str, Any]) -> Tuple[List[Execution], str]:
    """Extract executions and the next cursor from a checked envelope."""
    result = body.get("result") or {}
    if not isinstance(result, dict):
        raise MalformedResponseError("Execution list result is not an object")

    items = result.get("list") or []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise MalformedResponseError("Execution list is not a list of objects")

    return [Execution.from_api(item) for item in items], result.get("nextPageCursor") or ""


def iter_pages(
    client,
    window_start: int,
    window_end: int,
    category: str = "spot",
    limit: int = PAGE_LIMIT,
    symbol: Optional[str] = None,
    page_delay: float = PAGE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep
) -> Iterator[List[Execution]]:
    """
    Yield one list of executions per page of a single window.

    The request's endTime is window_end - 1 so that adjacent windows, which
    share their boundary, never return the same execution twice.
    """
    cursor = ""
    while True:
        params = {
            "category": category,
            "limit": limit,
            "startTime": window_start,
            "endTime": window_end - 1,
            "symbol": symbol,
            "cursor": cursor
        }
        executions, cursor = parse_execution_page(client.get_executions(params))
        yield executions

        if not cursor:
            break
        sleep(page_delay)


class HistoryFetcher:
    """
    Fetches every execution of a time range through a request client.

    The fetcher has no retry logic of its own: transient failures are retried
    inside the client, and any error that escapes it ends the whole fetch.
    """

    def __init__(
        self,
        client,
        parameters: Optional[ExecutionListParameters] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        :param client: Object exposing get_executions(params) -> envelope dict
        :param parameters: Paging parameters; defaults to the client's own if it has them
        :param sleep: Sleep function (injectable for tests)
        """
        self.client = client
        if parameters is None:
            secrets = getattr(client, "secrets", None)
            parameters = secrets.executions if secrets is not None else ExecutionListParameters()
        self.parameters = parameters
        self.sleep = sleep

    @property
    def window_ms(self) -> int:
        return self.parameters.window_days * DAY_MS

    @property
    def page_delay(self) -> float:
        return self.parameters.page_delay_ms / 1000

    def iter_executions(self, start_ms: int, end_ms: int, backward: bool = True) -> Iterator[Execution]:
        """Lazily yield every execution in [start_ms, end_ms)."""
        for index, (window_start, window_end) in enumerate(
            iter_windows(start_ms, end_ms, self.window_ms, backward)
        ):
            if index > 0:
                self.sleep(self.page_delay)

            window_count = 0
            for page in iter_pages(
                self.client,
                window_start,
                window_end,
                category=self.parameters.category,
                limit=self.parameters.limit,
                symbol=self.parameters.symbol,
                page_delay=self.page_delay,
                sleep=self.sleep
            ):
                window_count += len(page)
                yield from page

            if window_count:
                logger.debug(f"Window {window_start} -> {window_end}: {window_count} executions")

    def fetch_range(self, start_ms: int, end_ms: int, backward: bool = True) -> List[Execution]:
        """
        Fetch every execution in [start_ms, end_ms).

        :param backward: Walk windows from the most recent to the oldest
        :return: Executions in fetch order
        """
        logger.info(f"Fetching executions {start_ms} -> {end_ms} ({'backward' if backward else 'forward'})")
        executions = list(self.iter_executions(start_ms, end_ms, backward))

        if executions:
            logger.info(f"Loaded {len(executions)} new executions")
        return executions
