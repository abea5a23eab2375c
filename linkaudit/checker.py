"""Concurrent, rate-limited HTTP checking of URL batches."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import requests
from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import ValidationConfig
from .models import CheckProgress, CheckResult
from .urls import host_matches, url_host

logger = logging.getLogger("linkaudit")

FETCH = "fetch"
FETCH_BROWSER_AGENT = "fetch-browser-agent"
PLAYWRIGHT = "playwright"
STRATEGIES = (FETCH, FETCH_BROWSER_AGENT, PLAYWRIGHT)

# Statuses that often mean "bot blocked" rather than "gone"; worth another strategy.
ESCALATE_STATUSES = {401, 403, 406, 429, 503, 999}
# Statuses accepted with a warning once every strategy has been tried.
SOFT_STATUSES = {401, 403, 429, 999}
RETRY_STATUSES = (429, 500, 502, 503, 504)
# A HEAD answering with one of these is trusted without a GET fallback.
GONE_STATUSES = {404, 410}
MAX_ERROR_LENGTH = 200

ProgressCallback = Callable[[CheckProgress], None]


def is_success_status(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 400


def describe_error(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    text = f"{type(exc).__name__}: {message}"
    if len(text) > MAX_ERROR_LENGTH:
        text = text[: MAX_ERROR_LENGTH - 3] + "..."
    return text


def build_session(config: ValidationConfig) -> requests.Session:
    """Create a session whose connection pool matches the worker count."""
    session = requests.Session()
    max_retries: Retry | int = 0
    if config.retries > 0:
        max_retries = Retry(
            total=config.retries,
            backoff_factor=config.backoff_factor,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset({"HEAD", "GET"}),
            raise_on_status=False,
        )
    pool_size = max(1, config.concurrency) * 2
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=max_retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _request_status(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float,
    user_agent: str,
) -> int:
    response = session.request(
        method,
        url,
        timeout=timeout,
        allow_redirects=True,
        stream=True,
        headers={"User-Agent": user_agent},
    )
    response.close()
    return response.status_code


def probe_url(session: requests.Session, url: str, timeout: float, user_agent: str) -> CheckResult:
    """Issue a HEAD request, falling back to GET when HEAD is not accepted.

    A HEAD timeout or a 404/410 answer is final; any other HEAD failure is
    retried once as a GET.
    """
    head_status: Optional[int] = None
    try:
        head_status = _request_status(session, "HEAD", url, timeout, user_agent)
    except requests.Timeout as exc:
        return CheckResult(url=url, ok=False, error=describe_error(exc))
    except requests.RequestException as exc:
        logger.debug("HEAD %s failed (%s); retrying with GET", url, exc)

    if is_success_status(head_status):
        return CheckResult(url=url, ok=True, status=head_status)
    if head_status in GONE_STATUSES:
        return CheckResult(url=url, ok=False, status=head_status, error=f"HTTP {head_status}")

    try:
        status = _request_status(session, "GET", url, timeout, user_agent)
    except requests.RequestException as exc:
        return CheckResult(url=url, ok=False, error=describe_error(exc))

    if is_success_status(status):
        warning = None
        if head_status is not None:
            warning = f"HEAD rejected with HTTP {head_status}; GET succeeded"
        return CheckResult(url=url, ok=True, status=status, warning=warning)
    return CheckResult(url=url, ok=False, status=status, error=f"HTTP {status}")


class HostThrottle:
    """Space out requests to the same host."""

    def __init__(self, requests_per_second: float, exempt_hosts: Iterable[str] = ()) -> None:
        self._interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._exempt = tuple(exempt_hosts)
        self._next_slot: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def wait(self, url: str) -> None:
        host = url_host(url)
        if not host or not self._interval or host_matches(host, self._exempt):
            return
        host = host.lower()
        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            loop = asyncio.get_running_loop()
            delay = self._next_slot.get(host, 0.0) - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_slot[host] = loop.time() + self._interval


class ProgressEmitter:
    """Forward progress snapshots at most once per ``interval`` seconds."""

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def emit(self, progress: CheckProgress, force: bool = False) -> None:
        if self._callback is None:
            return
        now = self._clock()
        if not force and self._last is not None and now - self._last < self._interval:
            return
        self._last = now
        self._callback(replace(progress))


class BrowserChecker:
    """Navigate with headless Chromium for sites that refuse plain clients."""

    def __init__(self, timeout: float, concurrency: int, user_agent: str) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._init_lock = asyncio.Lock()
        self._playwright = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self._init_error: Optional[str] = None

    async def _ensure_context(self) -> BrowserContext:
        async with self._init_lock:
            if self._context is not None:
                return self._context
            if self._init_error:
                raise RuntimeError(self._init_error)
            try:
                logger.info("Launching headless browser for link checks")
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
                self._context = await self._browser.new_context(user_agent=self.user_agent)
            except Exception as exc:  # pylint: disable=broad-except
                self._init_error = describe_error(exc)
                logger.error("Headless browser unavailable: %s", self._init_error)
                await self.close()
                raise RuntimeError(self._init_error) from exc
            return self._context

    async def check(self, url: str) -> CheckResult:
        async with self._semaphore:
            try:
                context = await self._ensure_context()
            except RuntimeError as exc:
                return CheckResult(url=url, ok=False, error=f"Browser unavailable: {exc}")

            page = await context.new_page()
            try:
                response = await page.goto(
                    url, wait_until="domcontentloaded", timeout=self.timeout * 1000
                )
            except PlaywrightTimeoutError as exc:
                return CheckResult(url=url, ok=False, error=describe_error(exc))
            except PlaywrightError as exc:
                return CheckResult(url=url, ok=False, error=describe_error(exc))
            finally:
                await page.close()

        status = response.status if response else None
        if is_success_status(status):
            return CheckResult(url=url, ok=True, status=status)
        return CheckResult(
            url=url,
            ok=False,
            status=status,
            error=f"HTTP {status}" if status is not None else "No response",
        )

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None


class BatchChecker:
    """Check many URLs with a bounded number of requests in flight."""

    def __init__(self, config: ValidationConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self._session = session or build_session(config)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, config.concurrency), thread_name_prefix="linkaudit-check"
        )
        self._throttle = HostThrottle(config.per_host_rps, config.no_throttle_hosts)
        self._browser: Optional[BrowserChecker] = None
        if config.browser_fallback:
            self._browser = BrowserChecker(
                config.timeout, config.browser_concurrency, config.browser_user_agent
            )

    def strategy_sequence(self, hint: Optional[str] = None) -> List[str]:
        """Strategies to try, starting from the one that last worked."""
        available = [s for s in STRATEGIES if s != PLAYWRIGHT or self._browser is not None]
        if hint in available:
            return available[available.index(hint):]
        return available

    async def _fetch(self, url: str, user_agent: str) -> CheckResult:
        await self._throttle.wait(url)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, probe_url, self._session, url, self.config.timeout, user_agent
        )

    async def _run_strategy(self, url: str, strategy: str) -> CheckResult:
        if strategy == PLAYWRIGHT:
            if self._browser is None:
                raise RuntimeError("Browser fallback is not enabled")
            return await self._browser.check(url)
        if strategy == FETCH_BROWSER_AGENT:
            return await self._fetch(url, self.config.browser_user_agent)
        return await self._fetch(url, self.config.user_agent)

    async def check_url(self, url: str, hint: Optional[str] = None) -> CheckResult:
        """Run the strategy sequence for one URL and reduce it to a verdict."""
        result: Optional[CheckResult] = None
        for strategy in self.strategy_sequence(hint):
            result = await self._run_strategy(url, strategy)
            result.hint = strategy
            if result.ok or result.status not in ESCALATE_STATUSES:
                break

        if result is None:
            raise RuntimeError(f"No check strategy available for {url}")
        if not result.ok and result.status in SOFT_STATUSES:
            logger.debug("Accepting %s with HTTP %s as a soft failure", url, result.status)
            return replace(
                result,
                ok=True,
                error=None,
                warning=f"HTTP {result.status} (possible bot blocking or rate limiting); verify manually",
            )
        return result

    async def check_urls(
        self,
        urls: Iterable[str],
        hints: Optional[Mapping[str, Optional[str]]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, CheckResult]:
        """Check every distinct URL; never raises for an individual failure."""
        unique = list(dict.fromkeys(urls))
        hints = hints or {}
        progress = CheckProgress(total=len(unique))
        emitter = ProgressEmitter(on_progress, self.config.progress_interval)
        emitter.emit(progress, force=True)

        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))
        results: Dict[str, CheckResult] = {}

        async def worker(url: str) -> None:
            async with semaphore:
                progress.in_progress += 1
                emitter.emit(progress)
                try:
                    result = await self.check_url(url, hints.get(url))
                except Exception as exc:  # pylint: disable=broad-except
                    logger.exception("Unexpected error checking %s", url)
                    result = CheckResult(url=url, ok=False, error=describe_error(exc))
                progress.in_progress -= 1
                progress.checked += 1
                if result.ok:
                    progress.success += 1
                else:
                    progress.failed += 1
                results[url] = result
                emitter.emit(progress, force=progress.checked == progress.total)

        await asyncio.gather(*(worker(url) for url in unique))
        return results

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
        self._session.close()
        self._executor.shutdown(wait=False)
