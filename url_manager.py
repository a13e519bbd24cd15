"""
Bulk find-and-replace of availability URLs.

Walks every title through the REST API, collects availability rows whose
``url`` contains the search string and re-submits each one with the base of
the URL rewritten. Query strings are carried over verbatim, so
``https://t.me/OldBot?start=42`` becomes ``https://t.me/NewBot?start=42``.

The run is a small state machine::

    IDLE -> RUNNING <-> PAUSED
               |           |
               v           v
          COMPLETED    CANCELLED

``pause``/``resume``/``cancel`` may be called from another thread; they take
effect before the next row. Rows already rewritten stay rewritten when a run
is cancelled.
"""

import argparse
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from catalog_client import CatalogAPIError, CatalogClient

UPDATABLE_FIELDS = ("label", "quality", "language", "size", "sourceType", "url", "region", "licenseNote")
LARGE_RUN = 1000


def replace_base_url(url: str, old: str, new: str) -> str:
    if old not in url:
        return url
    base, sep, query = url.partition("?")
    return base.replace(old, new, 1) + sep + query


def retry_with_backoff(
    operation: Callable[[], Any],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Run ``operation``, retrying only rate-limited (429) failures.

    Waits ``base_delay * 2**attempt`` seconds between attempts; the last 429
    and every other error propagate.
    """
    for attempt in range(max_attempts):
        try:
            return operation()
        except CatalogAPIError as e:
            if e.rate_limited and attempt < max_attempts - 1:
                wait = base_delay * (2 ** attempt)
                logger.warning(f"Rate limited. Retrying in {wait:.1f}s...")
                sleep(wait)
            else:
                raise


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class RewriteTarget:
    content_id: str
    content_title: str
    availability: Dict[str, Any]

    @property
    def availability_id(self) -> str:
        return self.availability["id"]

    @property
    def url(self) -> str:
        return self.availability["url"]


@dataclass
class RewriteFailure:
    content_title: str
    availability_id: str
    message: str


@dataclass
class RewriteReport:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[RewriteFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    @property
    def first_error(self) -> Optional[RewriteFailure]:
        return self.errors[0] if self.errors else None

    def summary(self) -> str:
        text = f"Updated {self.succeeded} URLs successfully."
        if self.failed:
            first = self.first_error
            text += f" {self.failed} failed. First error: {first.content_title} - {first.message}"
        if self.cancelled:
            text += f" Cancelled after {self.processed} of {self.total}."
        return text


class UrlRewriteJob:
    def __init__(
        self,
        client: CatalogClient,
        search: str,
        replace: str,
        *,
        page_size: int = 50,
        batch_size: int = 5,
        page_delay: float = 0.3,
        batch_delay: float = 0.5,
        item_delay: Optional[float] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ):
        if not search or not replace:
            raise ValueError("Both search and replace terms are required")
        if search == replace:
            raise ValueError("Search and replace terms cannot be the same")

        self.client = client
        self.search = search
        self.replace = replace
        self.page_size = page_size
        self.batch_size = batch_size
        self.page_delay = page_delay
        self.batch_delay = batch_delay
        self.item_delay = item_delay
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._on_progress = on_progress

        self.targets: List[RewriteTarget] = []
        self._state = JobState.IDLE
        self._cond = threading.Condition()

    # -----------------------------
    # Control
    # -----------------------------
    @property
    def state(self) -> JobState:
        with self._cond:
            return self._state

    def pause(self) -> bool:
        with self._cond:
            if self._state is not JobState.RUNNING:
                return False
            self._state = JobState.PAUSED
            logger.info("URL rewrite paused")
            return True

    def resume(self) -> bool:
        with self._cond:
            if self._state is not JobState.PAUSED:
                return False
            self._state = JobState.RUNNING
            self._cond.notify_all()
            logger.info("URL rewrite resumed")
            return True

    def cancel(self) -> bool:
        with self._cond:
            if self._state in (JobState.CANCELLED, JobState.COMPLETED):
                return False
            self._state = JobState.CANCELLED
            self._cond.notify_all()
            logger.info("URL rewrite cancelled")
            return True

    def _proceed(self) -> bool:
        """Block while paused; False once cancelled."""
        with self._cond:
            while self._state is JobState.PAUSED:
                self._cond.wait()
            return self._state is not JobState.CANCELLED

    def _cancelled(self) -> bool:
        return self.state is JobState.CANCELLED

    # -----------------------------
    # Scan
    # -----------------------------
    def scan(self) -> List[RewriteTarget]:
        contents: List[Dict[str, Any]] = []
        page = 1
        while not self._cancelled():
            try:
                data = self.client.list_content(page=page, limit=self.page_size)
            except CatalogAPIError as e:
                logger.error(f"Error fetching content page {page}: {e.message}")
                break
            contents.extend(data.get("contents", []))
            if page >= data.get("pages", 0):
                break
            page += 1
            self._sleep(self.page_delay)

        matches: List[RewriteTarget] = []
        for start in range(0, len(contents), self.batch_size):
            if self._cancelled():
                break
            for content in contents[start:start + self.batch_size]:
                try:
                    rows = self.client.list_availability(content["id"])
                except CatalogAPIError as e:
                    logger.error(f"Error fetching availability for {content.get('title')}: {e.message}")
                    continue
                for row in rows:
                    if row.get("url") and self.search in row["url"]:
                        matches.append(RewriteTarget(content["id"], content.get("title", ""), row))
            if start + self.batch_size < len(contents):
                self._sleep(self.batch_delay)

        logger.info(f"Scanned {len(contents)} titles, {len(matches)} URLs match '{self.search}'")
        self.targets = matches
        return matches

    def preview(self) -> List[Tuple[RewriteTarget, str]]:
        return [(t, replace_base_url(t.url, self.search, self.replace)) for t in self.targets]

    # -----------------------------
    # Run
    # -----------------------------
    def run(self, targets: Optional[List[RewriteTarget]] = None) -> RewriteReport:
        if targets is None:
            targets = self.targets
        report = RewriteReport(total=len(targets))

        with self._cond:
            if self._state is JobState.CANCELLED:
                report.cancelled = True
                return report
            if self._state is not JobState.IDLE:
                raise RuntimeError(f"URL rewrite already {self._state.value}")
            self._state = JobState.RUNNING

        delay = self.item_delay
        if delay is None:
            delay = 1.0 if len(targets) > LARGE_RUN else 0.8

        for index, target in enumerate(targets):
            if not self._proceed():
                report.cancelled = True
                break
            try:
                self._rewrite(target)
                report.succeeded += 1
            except CatalogAPIError as e:
                logger.error(f"Error updating URL for {target.content_title}: {e.message}")
                report.failed += 1
                report.errors.append(RewriteFailure(target.content_title, target.availability_id, e.message))

            if self._on_progress:
                self._on_progress(index + 1, len(targets))
            if index + 1 < len(targets):
                self._sleep(delay)

        with self._cond:
            if self._state is JobState.CANCELLED:
                report.cancelled = True
            else:
                self._state = JobState.COMPLETED
        logger.info(report.summary())
        return report

    def _rewrite(self, target: RewriteTarget) -> Dict[str, Any]:
        data = {key: target.availability[key] for key in UPDATABLE_FIELDS if key in target.availability}
        data["url"] = replace_base_url(target.url, self.search, self.replace)
        return retry_with_backoff(
            lambda: self.client.replace_availability(target.content_id, target.availability_id, data),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Find and replace availability URLs across the catalog.")
    parser.add_argument("--base-url", default="http://localhost:5000")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--search", required=True, help="substring to look for, e.g. https://t.me/OldBot")
    parser.add_argument("--replace", required=True, help="replacement for the matched part of the URL")
    parser.add_argument("--dry-run", action="store_true", help="only list the URLs that would change")
    args = parser.parse_args(argv)

    with CatalogClient(args.base_url) as client:
        client.login(args.email, args.password)
        job = UrlRewriteJob(
            client,
            args.search,
            args.replace,
            on_progress=lambda done, total: logger.info(f"{done}/{total}"),
        )
        job.scan()
        for target, new_url in job.preview():
            print(f"{target.content_title}: {target.url} -> {new_url}")
        if args.dry_run or not job.targets:
            return 0
        report = job.run()
        print(report.summary())
        return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
