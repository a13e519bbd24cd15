# tests/test_url_manager.py

import threading

import httpx
import pytest

import url_manager
from catalog_client import CatalogAPIError, CatalogClient
from url_manager import JobState, RewriteTarget, UrlRewriteJob, replace_base_url, retry_with_backoff
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD, availability_payload, content_payload

OLD = "https://t.me/OldBot"
NEW = "https://t.me/NewBot"


class FakeCatalog:
    """Records availability replacements; fails for ids listed in ``failing``."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def replace_availability(self, content_id, availability_id, data):
        self.calls.append((content_id, availability_id, data))
        if availability_id in self.failing:
            raise CatalogAPIError(404, "Availability entry not found")
        return dict(data, id=availability_id)


def _targets(count):
    return [
        RewriteTarget(f"c{i}", f"Title {i}", {"id": f"a{i}", "label": "HD", "url": f"{OLD}?start={i}"})
        for i in range(count)
    ]


def _no_sleep(_):
    pass


# ─────────────────────────────────────────────────────────────
# URL rewriting
# ─────────────────────────────────────────────────────────────

def test_replace_keeps_query_string():
    assert replace_base_url(f"{OLD}?start=42", OLD, NEW) == f"{NEW}?start=42"


def test_replace_only_touches_the_base():
    url = f"https://cdn/x.mp4?ref={OLD}"
    assert replace_base_url(url, OLD, NEW) == url
    assert replace_base_url("https://cdn/x.mp4", OLD, NEW) == "https://cdn/x.mp4"
    assert replace_base_url(f"{OLD}/{OLD}", OLD, NEW) == f"{NEW}/{OLD}"


def test_job_rejects_bad_terms():
    with pytest.raises(ValueError):
        UrlRewriteJob(FakeCatalog(), "", NEW)
    with pytest.raises(ValueError):
        UrlRewriteJob(FakeCatalog(), OLD, OLD)


# ─────────────────────────────────────────────────────────────
# Backoff
# ─────────────────────────────────────────────────────────────

def test_backoff_retries_rate_limits_with_doubling_delay():
    sleeps = []
    attempts = iter([CatalogAPIError(429, "slow down"), CatalogAPIError(429, "slow down"), "ok"])

    def operation():
        outcome = next(attempts)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert retry_with_backoff(operation, sleep=sleeps.append) == "ok"
    assert sleeps == [1.0, 2.0]


def test_backoff_gives_up_after_max_attempts():
    sleeps = []

    def operation():
        raise CatalogAPIError(429, "slow down")

    with pytest.raises(CatalogAPIError):
        retry_with_backoff(operation, max_attempts=3, sleep=sleeps.append)
    assert sleeps == [1.0, 2.0]


def test_backoff_does_not_retry_other_errors():
    sleeps = []

    def operation():
        raise CatalogAPIError(500, "boom")

    with pytest.raises(CatalogAPIError):
        retry_with_backoff(operation, sleep=sleeps.append)
    assert sleeps == []


def test_rewrite_retries_429_over_http():
    responses = iter([
        httpx.Response(429, json={"error": {"status": 429, "message": "Too many requests"}}),
        httpx.Response(200, json={"id": "a0", "url": f"{NEW}?start=0"}),
    ])
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path))
        return next(responses)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://catalog")
    sleeps = []
    job = UrlRewriteJob(CatalogClient(http, token="t"), OLD, NEW, sleep=sleeps.append)

    report = job.run(_targets(1))

    assert report.succeeded == 1 and report.failed == 0
    assert sleeps == [1.0]
    assert seen == [("PUT", "/api/content/c0/availability/a0")] * 2


# ─────────────────────────────────────────────────────────────
# Run
# ─────────────────────────────────────────────────────────────

def test_run_collects_failures_and_keeps_going():
    catalog = FakeCatalog(failing={"a1"})
    job = UrlRewriteJob(catalog, OLD, NEW, sleep=_no_sleep)

    report = job.run(_targets(3))

    assert (report.succeeded, report.failed, report.total) == (2, 1, 3)
    assert report.summary() == "Updated 2 URLs successfully. 1 failed. First error: Title 1 - Availability entry not found"
    assert job.state is JobState.COMPLETED
    assert catalog.calls[0][2] == {"label": "HD", "url": f"{NEW}?start=0"}


def test_item_delay_scales_with_run_size():
    sleeps = []
    UrlRewriteJob(FakeCatalog(), OLD, NEW, sleep=sleeps.append).run(_targets(3))
    assert sleeps == [0.8, 0.8]


def test_run_only_once():
    job = UrlRewriteJob(FakeCatalog(), OLD, NEW, sleep=_no_sleep)
    job.run(_targets(1))
    with pytest.raises(RuntimeError):
        job.run(_targets(1))


def test_pause_blocks_until_resume():
    catalog = FakeCatalog()
    paused = threading.Event()
    job = None

    def on_progress(done, total):
        if done == 1:
            job.pause()
            paused.set()

    job = UrlRewriteJob(catalog, OLD, NEW, sleep=_no_sleep, on_progress=on_progress)
    result = {}
    worker = threading.Thread(target=lambda: result.update(report=job.run(_targets(3))))
    worker.start()

    assert paused.wait(timeout=5)
    assert job.state is JobState.PAUSED
    assert len(catalog.calls) == 1
    assert job.pause() is False

    assert job.resume() is True
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert result["report"].succeeded == 3
    assert job.state is JobState.COMPLETED


def test_cancel_stops_before_next_row():
    catalog = FakeCatalog()
    job = None

    def on_progress(done, total):
        if done == 1:
            job.cancel()

    job = UrlRewriteJob(catalog, OLD, NEW, sleep=_no_sleep, on_progress=on_progress)
    report = job.run(_targets(3))

    assert report.cancelled
    assert report.succeeded == 1
    assert len(catalog.calls) == 1
    assert job.state is JobState.CANCELLED
    assert report.summary().endswith("Cancelled after 1 of 3.")
    assert job.cancel() is False


def test_cancel_while_paused_releases_the_run():
    paused = threading.Event()
    job = None

    def on_progress(done, total):
        if done == 1:
            job.pause()
            paused.set()

    job = UrlRewriteJob(FakeCatalog(), OLD, NEW, sleep=_no_sleep, on_progress=on_progress)
    result = {}
    worker = threading.Thread(target=lambda: result.update(report=job.run(_targets(3))))
    worker.start()
    assert paused.wait(timeout=5)

    job.cancel()
    worker.join(timeout=5)
    assert result["report"].cancelled
    assert result["report"].processed == 1


# ─────────────────────────────────────────────────────────────
# Against the API
# ─────────────────────────────────────────────────────────────

@pytest.fixture()
def catalog(client, admin):
    api = CatalogClient(client)
    api.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    return api


def _seed(catalog):
    ids = []
    for i in range(3):
        content = catalog.create_content(content_payload(slug=f"t-{i}", title=f"Title {i}"))
        ids.append(content["id"])
    catalog.create_availability(ids[0], availability_payload(url=f"{OLD}?start=1", sourceType="TelegramBot"))
    catalog.create_availability(ids[2], availability_payload(url=f"{OLD}?start=2", sourceType="TelegramBot", size="2GB"))
    catalog.create_availability(ids[1], availability_payload(url="https://cdn/x.mp4"))
    return ids


def test_scan_and_run_against_api(catalog):
    ids = _seed(catalog)
    sleeps = []
    job = UrlRewriteJob(catalog, OLD, NEW, page_size=2, batch_size=2, sleep=sleeps.append)

    targets = job.scan()
    assert sorted(t.content_id for t in targets) == sorted([ids[0], ids[2]])
    assert 0.3 in sleeps and 0.5 in sleeps
    assert {new for _, new in job.preview()} == {f"{NEW}?start=1", f"{NEW}?start=2"}

    report = job.run()

    assert report.succeeded == 2 and report.failed == 0
    rows = catalog.list_availability(ids[2])
    assert rows[0]["url"] == f"{NEW}?start=2"
    assert rows[0]["size"] == "2GB"
    assert catalog.list_availability(ids[1])[0]["url"] == "https://cdn/x.mp4"


def test_cli_dry_run_changes_nothing(catalog, client, monkeypatch, capsys):
    ids = _seed(catalog)
    monkeypatch.setattr(url_manager, "CatalogClient", lambda base_url: CatalogClient(client))

    code = url_manager.main([
        "--email", ADMIN_EMAIL, "--password", ADMIN_PASSWORD,
        "--search", OLD, "--replace", NEW, "--dry-run",
    ])

    assert code == 0
    out = capsys.readouterr().out
    assert f"{OLD}?start=1 -> {NEW}?start=1" in out
    assert catalog.list_availability(ids[0])[0]["url"] == f"{OLD}?start=1"
