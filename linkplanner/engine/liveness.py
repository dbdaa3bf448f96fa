"""Target URL liveness checks run before a draft is finalised."""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Optional, Protocol

from .errors import ExternalServiceError
from .progress import RunControl

logger = logging.getLogger(__name__)

DEAD_STATUSES = frozenset({404, 410})

Checkpoint = Callable[[int, int], None]


class LivenessChecker(Protocol):
    """Return False for dead URLs; raise :class:`ExternalServiceError` when unsure."""

    def is_alive(self, url: str) -> bool:
        ...


class UrlLivenessChecker:
    """HEAD request per URL with ``urllib.request``."""

    def __init__(self, timeout: float = 10.0, user_agent: str = "linkplanner-liveness/1.0") -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    def is_alive(self, url: str) -> bool:
        request = urllib.request.Request(url, method="HEAD", headers={"User-Agent": self.user_agent})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as resp:
                return resp.status not in DEAD_STATUSES
        except urllib.error.HTTPError as exc:
            if exc.code in DEAD_STATUSES:
                return False
            if exc.code >= 500:
                raise ExternalServiceError(f"{url} answered {exc.code}") from exc
            return True
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise ExternalServiceError(f"{url} unreachable: {exc}") from exc


def check_targets(
    checker: LivenessChecker,
    urls: Iterable[str],
    concurrency: int = 8,
    retries: int = 1,
    control: Optional[RunControl] = None,
    checkpoint: Checkpoint | None = None,
) -> Dict[str, Optional[bool]]:
    """Check ``urls`` concurrently.

    Returns ``True``/``False`` per URL, or ``None`` when the check stayed
    inconclusive after ``retries`` additional attempts.
    """

    pending = sorted(set(urls))
    results: Dict[str, Optional[bool]] = {}
    if not pending:
        return results

    def _check(url: str) -> Optional[bool]:
        for attempt in range(retries + 1):
            if control is not None:
                control.raise_if_canceled()
            try:
                return checker.is_alive(url)
            except ExternalServiceError as exc:
                logger.warning("Liveness check failed for %s (attempt %s): %s", url, attempt + 1, exc)
        return None

    with ThreadPoolExecutor(
        max_workers=max(1, min(concurrency, len(pending))),
        thread_name_prefix="linkplanner-liveness",
    ) as pool:
        futures = {pool.submit(_check, url): url for url in pending}
        for done, future in enumerate(as_completed(futures), start=1):
            results[futures[future]] = future.result()
            if checkpoint is not None:
                checkpoint(done, len(pending))
    return results
