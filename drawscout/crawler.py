"""クロール本体.

処理フロー（サイトごとに逐次、詳細ページも1件ずつ）:
  1. scrape_runs に started を記録
  2. 一覧ページからリンクを収集（失敗したらサイトを error にして次へ）
  3. 各詳細ページを取得・パース（失敗したページはスキップ）
     同一サイトへの取得の間には rate_limit_ms だけ待つ
  4. サイト分のレコードを url で一括 upsert
  5. scrape_runs を ok / error で確定
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests

from drawscout import db
from drawscout.adapters import DetailParser, build_parser, load_rules
from drawscout.ledger import RunLedger
from drawscout.models import CompetitionRecord, SiteConfig
from drawscout.scraper import discover_links, fetch_html, wait_interval

logger = logging.getLogger(__name__)


@dataclass
class CrawlContext:
    """1回のクロール実行だけが持つ状態（処理済み URL と結果）."""

    query: str = ""
    store: bool = True
    seen_urls: set[str] = field(default_factory=set)
    records: list[CompetitionRecord] = field(default_factory=list)
    failed_pages: int = 0


def select_sites(sites: list[SiteConfig], tier: str = "both") -> list[SiteConfig]:
    """アクセス区分でサイトを絞る. tier="both" のサイトは常に対象."""
    if tier == "both":
        return list(sites)
    return [s for s in sites if s.tier in ("both", tier)]


def matches_query(record: CompetitionRecord, query: str) -> bool:
    """賞品名に query が含まれるか（大文字小文字を区別しない）."""
    return not query or query.casefold() in record.prize.casefold()


def crawl(
    sites: list[SiteConfig],
    rules_by_key: dict[str, dict],
    query: str = "",
    store: bool = True,
    ledger: RunLedger | None = None,
) -> list[CompetitionRecord]:
    """全サイトをクロールし、正規化したレコードを返す.

    1サイトの失敗は他のサイトに影響しない。返り値は DB への書き込み結果に
    関わらず、今回の実行で得られたレコードすべて。
    """
    ctx = CrawlContext(query=query.strip(), store=store)
    if ledger is None:
        ledger = RunLedger(persist=store)

    for site in sites:
        crawl_site(site, rules_by_key, ctx, ledger)

    return ctx.records


def crawl_site(
    site: SiteConfig,
    rules_by_key: dict[str, dict],
    ctx: CrawlContext,
    ledger: RunLedger,
) -> None:
    """1サイト分のクロール. 結果は ctx.records に追加する."""
    run = ledger.start(site)
    logger.info("サイト開始: %s (adapter=%s)", site.name, site.adapter_key)

    try:
        kind = site.adapter_kind
        raw_rules = rules_by_key.get(site.adapter_key)
        if raw_rules is None:
            raw_rules = rules_by_key.get(kind.value)
        rules = load_rules(kind, raw_rules)
        parse_detail = build_parser(kind, rules)

        links = discover_links(
            site.list_url,
            site.link_selector,
            allow=rules.link_allow,
            deny=rules.link_deny,
            max_links=rules.max_links,
        )
        logger.info("リンク数: %s → %d 件", site.name, len(links))

        site_records: list[CompetitionRecord] = []
        failed_before = ctx.failed_pages
        fetched = 0
        for url in links:
            if url in ctx.seen_urls:
                continue
            ctx.seen_urls.add(url)

            if fetched:
                wait_interval(site.rate_limit_ms)
            fetched += 1

            record = _process_detail(url, site, parse_detail, ctx)
            if record is None or not matches_query(record, ctx.query):
                continue
            site_records.append(record)

        ctx.records.extend(site_records)

        if ctx.store:
            try:
                db.upsert_competitions(batch_rows(site_records))
            except Exception as e:
                logger.error("competitions の書き込み失敗: site=%s, error=%s", site.name, e)
                ledger.finish_error(run, f"upsert failed: {e}")
                return

        ledger.finish_ok(run, len(site_records))
        logger.info("サイト完了: %s → %d 件 (失敗ページ: %d 件)",
                    site.name, len(site_records), ctx.failed_pages - failed_before)
    except Exception as e:
        logger.error("サイト処理失敗: site=%s, error=%s", site.name, e)
        ledger.finish_error(run, str(e))


def _process_detail(
    url: str, site: SiteConfig, parse_detail: DetailParser, ctx: CrawlContext
) -> CompetitionRecord | None:
    """詳細ページ1件の取得とパース. 失敗は記録してスキップする."""
    try:
        html = fetch_html(url)
    except requests.RequestException as e:
        ctx.failed_pages += 1
        logger.warning("詳細ページ取得失敗: url=%s, error=%s", url, e)
        return None

    scraped_at = datetime.now(timezone.utc).isoformat()
    try:
        record = parse_detail(html, url, site.name, scraped_at=scraped_at)
    except Exception as e:
        ctx.failed_pages += 1
        logger.warning("詳細ページのパース失敗: url=%s, error=%s", url, e)
        return None

    if record is None:
        logger.info("  スキップ（賞品名なし）: %s", url)
        return None

    logger.info(
        "  %s | fee=%s total=%s sold=%s remaining=%s",
        record.prize, record.entry_fee, record.total_tickets,
        record.tickets_sold, record.remaining_tickets,
    )
    return record


def batch_rows(records: list[CompetitionRecord]) -> list[dict]:
    """upsert 用の行リスト. 同じ url は後勝ちで1行にまとめる."""
    rows: dict[str, dict] = {}
    for record in records:
        rows[record.url] = record.to_row()
    return list(rows.values())
