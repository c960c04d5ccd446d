"""crawler モジュールのテスト（通信・DB はモック）."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import requests

from drawscout.crawler import batch_rows, crawl, matches_query, select_sites
from drawscout.ledger import RunLedger
from drawscout.models import CompetitionRecord, SiteConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def _site(site_id: str, adapter_key: str = "generic", tier: str = "both", rate: int = 250):
    return SiteConfig(
        id=site_id,
        name=f"Site {site_id}",
        list_url=f"https://{site_id}.example.com/list",
        link_selector="a",
        adapter_key=adapter_key,
        rate_limit_ms=rate,
        tier=tier,
    )


def _detail(prize: str) -> str:
    return f"<h1>{prize}</h1><span class='price'>£0.99</span><p>100 entries</p><p>Sold: 10</p>"


PAGES = {
    "https://a.example.com/1": _detail("Rolex"),
    "https://a.example.com/2": _detail("Audi RS3"),
    "https://c.example.com/1": _detail("Cash £10,000"),
}

LINKS = {
    "https://a.example.com/list": ["https://a.example.com/1", "https://a.example.com/2"],
    "https://c.example.com/list": ["https://c.example.com/1"],
}


def _discover(list_url, link_selector, allow=None, deny=None, max_links=60):
    if list_url not in LINKS:
        raise requests.ConnectionError(f"cannot reach {list_url}")
    return LINKS[list_url]


def _fetch(url):
    return PAGES[url]


@pytest.fixture
def network():
    with patch("drawscout.crawler.discover_links", side_effect=_discover) as discover, \
            patch("drawscout.crawler.fetch_html", side_effect=_fetch) as fetch, \
            patch("drawscout.crawler.wait_interval") as wait:
        yield discover, fetch, wait


class TestCrawl:
    """crawl のテスト."""

    @patch("drawscout.db.upsert_competitions")
    def test_one_site_listing_fails(self, mock_upsert, network):
        """3サイト中1サイトの一覧取得が失敗しても他の2サイトの結果を返すこと."""
        ledger = RunLedger(persist=False)
        sites = [_site("a"), _site("b"), _site("c")]

        records = crawl(sites, {}, ledger=ledger)

        assert [r.prize for r in records] == ["Rolex", "Audi RS3", "Cash £10,000"]
        statuses = [run.status for run in ledger.runs]
        assert statuses == ["ok", "error", "ok"]
        assert "cannot reach" in ledger.runs[1].error
        assert mock_upsert.call_count == 2

    @patch("drawscout.db.upsert_competitions")
    def test_record_fields(self, mock_upsert, network):
        records = crawl([_site("c")], {}, ledger=RunLedger(persist=False))

        record = records[0]
        assert record.entry_fee == 0.99
        assert record.total_tickets == 100
        assert record.tickets_sold == 10
        assert record.remaining_tickets == 90
        assert record.url == "https://c.example.com/1"
        assert record.scraped_at is not None
        mock_upsert.assert_called_once_with([record.to_row()])

    def test_page_failure_is_isolated(self, network):
        """詳細ページの取得失敗はスキップし、サイトは ok になること."""
        _, fetch, _ = network

        def flaky(url):
            if url.endswith("/1"):
                raise requests.Timeout("slow")
            return PAGES[url]

        fetch.side_effect = flaky
        ledger = RunLedger(persist=False)

        records = crawl([_site("a")], {}, store=False, ledger=ledger)

        assert [r.prize for r in records] == ["Audi RS3"]
        assert ledger.runs[0].status == "ok"
        assert ledger.runs[0].items_ingested == 1

    def test_failed_pages_are_logged(self, network, caplog):
        """サイト完了ログに失敗ページ数が出ること."""
        _, fetch, _ = network

        def flaky(url):
            if url.endswith("/1"):
                raise requests.Timeout("slow")
            return PAGES[url]

        fetch.side_effect = flaky

        with caplog.at_level(logging.INFO, logger="drawscout.crawler"):
            crawl([_site("a"), _site("c")], {}, store=False, ledger=RunLedger(persist=False))

        done = [r.getMessage() for r in caplog.records if "サイト完了" in r.getMessage()]
        assert done == [
            "サイト完了: Site a → 1 件 (失敗ページ: 1 件)",
            "サイト完了: Site c → 0 件 (失敗ページ: 1 件)",
        ]

    def test_page_without_prize_is_skipped(self, network):
        _, fetch, _ = network
        fetch.side_effect = lambda url: "<p>no title</p>" if url.endswith("/1") else PAGES[url]

        records = crawl([_site("a")], {}, store=False, ledger=RunLedger(persist=False))
        assert [r.prize for r in records] == ["Audi RS3"]

    def test_politeness_delay(self, network):
        """同一サイトの詳細ページ取得の間で rate_limit_ms だけ待つこと."""
        _, _, wait = network

        crawl([_site("a", rate=500)], {}, store=False, ledger=RunLedger(persist=False))

        wait.assert_called_once_with(500)

    def test_url_processed_once(self, network):
        """同じ URL は1回の実行で1度だけ処理すること."""
        discover, fetch, _ = network
        discover.side_effect = lambda *a, **kw: ["https://a.example.com/1"]

        records = crawl(
            [_site("a"), _site("c")], {}, store=False, ledger=RunLedger(persist=False)
        )

        assert len(records) == 1
        assert fetch.call_count == 1

    @patch("drawscout.db.upsert_competitions")
    def test_write_failure(self, mock_upsert, network):
        """書き込み失敗はそのサイトだけ error にし、次のサイトへ進むこと."""
        mock_upsert.side_effect = [RuntimeError("db down"), None]
        ledger = RunLedger(persist=False)

        records = crawl([_site("a"), _site("c")], {}, ledger=ledger)

        assert len(records) == 3
        assert [run.status for run in ledger.runs] == ["error", "ok"]
        assert "db down" in ledger.runs[0].error

    def test_query_filter(self, network):
        records = crawl(
            [_site("a")], {}, query="  rolex ", store=False, ledger=RunLedger(persist=False)
        )
        assert [r.prize for r in records] == ["Rolex"]

    def test_rules_by_adapter_key(self, network):
        """サイトの adapter_key に対応するルールを使うこと."""
        _, fetch, _ = network
        fetch.side_effect = lambda url: "<h1>Rolex</h1><p>Only 7 tickets</p><i class='cap'>70</i>"
        rules = {"my-new-site": {"total_selectors": [".cap"]}}

        records = crawl(
            [_site("c", adapter_key="my-new-site")], rules,
            store=False, ledger=RunLedger(persist=False),
        )

        assert records[0].total_tickets == 70

    def test_no_store(self, network):
        with patch("drawscout.db.upsert_competitions") as mock_upsert:
            crawl([_site("a")], {}, store=False, ledger=RunLedger(persist=False))
        mock_upsert.assert_not_called()


class TestSelectSites:
    """select_sites のテスト."""

    def test_tier(self):
        sites = [_site("a", tier="free"), _site("b", tier="premium"), _site("c", tier="both")]

        assert [s.id for s in select_sites(sites, "free")] == ["a", "c"]
        assert [s.id for s in select_sites(sites, "premium")] == ["b", "c"]
        assert [s.id for s in select_sites(sites, "both")] == ["a", "b", "c"]


class TestHelpers:
    """matches_query / batch_rows のテスト."""

    def _record(self, url: str, prize: str = "Rolex Submariner") -> CompetitionRecord:
        return CompetitionRecord(prize, "S", 0.99, 100, 10, 90, url)

    def test_matches_query(self):
        record = self._record("https://e.com/1")
        assert matches_query(record, "SUBMARINER")
        assert matches_query(record, "")
        assert not matches_query(record, "audi")

    def test_batch_rows_unique_by_url(self):
        rows = batch_rows([
            self._record("https://e.com/1", "old"),
            self._record("https://e.com/2"),
            self._record("https://e.com/1", "new"),
        ])
        assert [r["url"] for r in rows] == ["https://e.com/1", "https://e.com/2"]
        assert rows[0]["prize"] == "new"
