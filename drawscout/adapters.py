"""アダプタ種別ごとの設定と詳細ページパーサ.

アダプタ種別は既定パターン・取得元の優先順位を選ぶだけで、
抽出ロジック自体は price / totals の共通実装を使う。
新しいサイトは rules ドキュメントを追加し、既存の種別を選ぶだけでよい。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urldefrag

from drawscout.dom import first_text, make_soup
from drawscout.models import AdapterKind, AdapterRules, CompetitionRecord
from drawscout.price import resolve_price
from drawscout.totals import (
    DCG_REMAINING_PATTERNS,
    DCG_SOLD_PATTERNS,
    DCG_TOTAL_PATTERNS,
    DEFAULT_SOURCE_ORDER,
    GENERIC_REMAINING_PATTERNS,
    GENERIC_SOLD_PATTERNS,
    GENERIC_TOTAL_PATTERNS,
    REVCOMPS_REMAINING_PATTERNS,
    REVCOMPS_SOLD_PATTERNS,
    REVCOMPS_TOTAL_PATTERNS,
    SOURCE_SCRIPTS,
    SOURCE_SELECTORS,
    SOURCE_TEXT,
    resolve_totals,
)

logger = logging.getLogger(__name__)

DetailParser = Callable[..., CompetitionRecord | None]

DEFAULT_PRIZE_SELECTORS = ("h1", "h2.product_title", ".woocommerce-loop-product__title")
PRIZE_FALLBACK_SELECTORS = ('[class*="prize"]',)


@dataclass(frozen=True)
class AdapterProfile:
    """アダプタ種別 -> 賞品セレクタ・枚数の取得順・既定ルール."""

    kind: AdapterKind
    prize_selectors: tuple[str, ...]
    totals_order: tuple[str, ...]
    defaults: AdapterRules


_GENERIC_RULES = AdapterRules(
    total_patterns=list(GENERIC_TOTAL_PATTERNS),
    sold_patterns=list(GENERIC_SOLD_PATTERNS),
    remaining_patterns=list(GENERIC_REMAINING_PATTERNS),
)

PROFILES: dict[AdapterKind, AdapterProfile] = {
    AdapterKind.GENERIC: AdapterProfile(
        kind=AdapterKind.GENERIC,
        prize_selectors=DEFAULT_PRIZE_SELECTORS,
        totals_order=DEFAULT_SOURCE_ORDER,
        defaults=_GENERIC_RULES,
    ),
    AdapterKind.REVCOMPS: AdapterProfile(
        kind=AdapterKind.REVCOMPS,
        prize_selectors=("h1.product_title", *DEFAULT_PRIZE_SELECTORS),
        totals_order=DEFAULT_SOURCE_ORDER,
        defaults=AdapterRules(
            price_anchors=["Ticket Price", "Entry Price"],
            total_patterns=list(REVCOMPS_TOTAL_PATTERNS),
            sold_patterns=list(REVCOMPS_SOLD_PATTERNS),
            remaining_patterns=list(REVCOMPS_REMAINING_PATTERNS),
            link_allow=r"/product/",
            fallback=_GENERIC_RULES,
        ),
    ),
    AdapterKind.DCG: AdapterProfile(
        kind=AdapterKind.DCG,
        prize_selectors=(".competition-title", *DEFAULT_PRIZE_SELECTORS),
        # ウィジェットが script に枚数を埋め込むため script を最優先
        totals_order=(SOURCE_SCRIPTS, SOURCE_SELECTORS, SOURCE_TEXT),
        defaults=AdapterRules(
            price_anchors=["Entry Price", "Ticket Price"],
            total_patterns=list(DCG_TOTAL_PATTERNS),
            sold_patterns=list(DCG_SOLD_PATTERNS),
            remaining_patterns=list(DCG_REMAINING_PATTERNS),
            link_allow=r"/competitions/[^/?#]+",
            fallback=_GENERIC_RULES,
        ),
    ),
}


def get_profile(kind: AdapterKind | str) -> AdapterProfile:
    if not isinstance(kind, AdapterKind):
        kind = AdapterKind.parse(kind)
    return PROFILES[kind]


def load_rules(kind: AdapterKind | str, raw: dict | None) -> AdapterRules:
    """DB の rules JSON を種別の既定値で埋めた AdapterRules にする."""
    return AdapterRules.from_dict(raw, get_profile(kind).defaults)


def canonical_url(url: str) -> str:
    """詳細ページ URL の正規形（フラグメントを除く）. upsert のキーになる."""
    return urldefrag(url.strip()).url


def build_parser(kind: AdapterKind | str, rules: AdapterRules) -> DetailParser:
    """詳細ページ HTML -> CompetitionRecord のパーサを作る.

    返す関数は (html, url, site_name, scraped_at=None) を受け取り、
    賞品名が取れなければ None を返す。
    """
    profile = get_profile(kind)
    prize_selectors = [*rules.prize_selectors, *profile.prize_selectors]

    def parse_detail(
        html: str, url: str, site_name: str, scraped_at: str | None = None
    ) -> CompetitionRecord | None:
        soup = make_soup(html)
        prize = first_text(soup, prize_selectors) or first_text(soup, PRIZE_FALLBACK_SELECTORS)
        if not prize:
            logger.debug("賞品名が見つかりません: %s", url)
            return None

        totals = resolve_totals(soup, rules, profile.totals_order)
        return CompetitionRecord(
            prize=prize,
            site_name=site_name,
            entry_fee=resolve_price(soup, rules, html),
            total_tickets=totals.total,
            tickets_sold=totals.sold,
            remaining_tickets=totals.remaining,
            url=canonical_url(url),
            scraped_at=scraped_at,
        )

    return parse_detail
