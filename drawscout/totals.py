"""チケット枚数（総数・販売数・残数）の抽出モジュール.

取得元（順序はアダプタごとに指定、既定は以下の順）:
  1. selectors: ルールのセレクタ
  2. scripts:   インライン script と data-* 属性のキー/値
                 （クライアント側ウィジェットが埋め込む枚数）
  3. text:      本文テキストへの正規表現。主パターンで総数が取れなければ
                 fallback ルールのパターンで補う

いずれかの値が取れた最初の取得元を採用し、欠けた1つは残り2つから導出する。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from bs4 import BeautifulSoup

from drawscout.dom import first_text, visible_text
from drawscout.models import AdapterRules, Totals
from drawscout.parsers import parse_count

logger = logging.getLogger(__name__)

SOURCE_SELECTORS = "selectors"
SOURCE_SCRIPTS = "scripts"
SOURCE_TEXT = "text"
DEFAULT_SOURCE_ORDER = (SOURCE_SELECTORS, SOURCE_SCRIPTS, SOURCE_TEXT)

# --- 既定パターン（generic） ---
GENERIC_TOTAL_PATTERNS = (
    r"Number of Tickets\s*:?\s*(\d[\d,]*)",
    r"Max(?:imum)? Tickets\s*:?\s*(\d[\d,]*)",
    r"Tickets Available\s*:?\s*(\d[\d,]*)\s*/\s*(\d[\d,]*)",
    r"max of\s*(\d[\d,]*)\s*tickets",
    r"(\d[\d,]*)\s*entries",
)
GENERIC_SOLD_PATTERNS = (
    r"\bSold\s*:\s*(\d[\d,]*)",
    r"Tickets?\s*sold\s*:?\s*(\d[\d,]*)",
    r"\b(\d[\d,]*)\s*(?:tickets\s*)?sold\b",
)
GENERIC_REMAINING_PATTERNS = (
    r"\bRemaining\s*:\s*(\d[\d,]*)",
    r"\b(\d[\d,]*)\s*(?:tickets\s*)?(?:remaining|left)\b",
)

# --- 既定パターン（revcomps） ---
REVCOMPS_TOTAL_PATTERNS = (r"\bPRIZE HAS A MAX OF\s*(\d[\d,]*)\s*TICKETS\b",)
REVCOMPS_SOLD_PATTERNS = (r"\bSOLD:\s*(\d[\d,]*)",)
REVCOMPS_REMAINING_PATTERNS = (r"\bREMAINING:\s*(\d[\d,]*)",)

# --- 既定パターン（dcg） ---
DCG_TOTAL_PATTERNS = (r"\bmax(?:imum)?\s*tickets?\s*:?\s*(\d[\d,]*)",)
DCG_SOLD_PATTERNS = (r"\bsold\s*:\s*(\d[\d,]*)",)
DCG_REMAINING_PATTERNS = (r"\bremaining\s*:\s*(\d[\d,]*)",)

# --- script / data-* 属性のキー ---
DEFAULT_TOTAL_KEYS = (
    "max_tickets", "maxTickets", "total_tickets", "totalTickets",
    "ticket_limit", "max_entries", "maxEntries",
)
DEFAULT_SOLD_KEYS = (
    "tickets_sold", "ticketsSold", "sold_count", "soldCount", "entries_sold", "sold",
)
DEFAULT_REMAINING_KEYS = (
    "tickets_remaining", "ticketsRemaining", "remaining_tickets", "remainingTickets",
    "tickets_left", "ticketsLeft", "remaining",
)


def resolve_totals(
    soup: BeautifulSoup,
    rules: AdapterRules,
    order: Sequence[str] = DEFAULT_SOURCE_ORDER,
) -> Totals:
    """ページからチケット枚数を取り出し、整合性を取って返す."""
    sources: dict[str, Callable[[BeautifulSoup, AdapterRules], Totals]] = {
        SOURCE_SELECTORS: from_selectors,
        SOURCE_SCRIPTS: from_scripts,
        SOURCE_TEXT: from_text,
    }
    for name in order:
        found = sources[name](soup, rules)
        if found.any_known():
            logger.debug("枚数の取得元: %s -> %s", name, found)
            return reconcile(found)
    return Totals()


def reconcile(totals: Totals) -> Totals:
    """欠けた値の導出と整合性チェック.

    - 総数は正の整数のみ有効
    - 販売数 > 総数 なら販売数・残数とも不明にする（総数は残す）
    - 3つのうち1つだけ欠けていれば残り2つから導出する
    - 残数は直接取れていなければ max(総数 - 販売数, 0)
    """
    total, sold, remaining = totals.total, totals.sold, totals.remaining
    if total is not None and total <= 0:
        total = None
    if total is not None and sold is not None and sold > total:
        logger.debug("販売数 %d が総数 %d を超えるため破棄", sold, total)
        return Totals(total=total, sold=None, remaining=None)
    if total is not None and remaining is not None and remaining > total:
        remaining = None

    if total is None and sold is not None and remaining is not None:
        total = sold + remaining or None
    elif sold is None and total is not None and remaining is not None:
        sold = total - remaining

    if total is None:
        return Totals(total=None, sold=sold, remaining=None)
    if remaining is None and sold is not None:
        remaining = max(total - sold, 0)
    return Totals(total=total, sold=sold, remaining=remaining)


def from_selectors(soup: BeautifulSoup, rules: AdapterRules) -> Totals:
    return Totals(
        total=parse_count(first_text(soup, rules.total_selectors)),
        sold=parse_count(first_text(soup, rules.sold_selectors)),
        remaining=parse_count(first_text(soup, rules.remaining_selectors)),
    )


def from_scripts(soup: BeautifulSoup, rules: AdapterRules) -> Totals:
    """script 内の `key: 123` / `"key":"123"` と data-key="123" 属性を探す."""
    scripts = [s.string or "" for s in soup.find_all("script")]
    attrs = _data_attributes(soup)

    def lookup(keys: Sequence[str]) -> int | None:
        for key in keys:
            pattern = re.compile(
                r"[\"']?\b" + re.escape(key) + r"[\"']?\s*[:=]\s*[\"']?(\d[\d,]*)",
                re.IGNORECASE,
            )
            for body in scripts:
                m = pattern.search(body)
                if m:
                    return parse_count(m.group(1))
            value = attrs.get(_normalize_key(key))
            if value is not None:
                return value
        return None

    return Totals(
        total=lookup(rules.total_keys or DEFAULT_TOTAL_KEYS),
        sold=lookup(rules.sold_keys or DEFAULT_SOLD_KEYS),
        remaining=lookup(rules.remaining_keys or DEFAULT_REMAINING_KEYS),
    )


def from_text(soup: BeautifulSoup, rules: AdapterRules) -> Totals:
    text = visible_text(soup)
    found = match_patterns(text, rules)
    if rules.fallback is not None and reconcile(found).total is None:
        backup = match_patterns(text, rules.fallback)
        found = Totals(
            total=found.total if found.total is not None else backup.total,
            sold=found.sold if found.sold is not None else backup.sold,
            remaining=found.remaining if found.remaining is not None else backup.remaining,
        )
    return found


def match_patterns(text: str, rules: AdapterRules) -> Totals:
    """総数・販売数・残数の正規表現リストを順に当てる.

    総数パターンが2グループ（"Tickets Available 120 / 500" 形式）の場合、
    1つ目を販売数、2つ目を総数とみなす。
    """
    total = sold = None
    for pattern in rules.total_patterns:
        m = re.search(pattern, text, re.IGNORECASE)
        if not m or not m.groups():
            continue
        if len(m.groups()) >= 2 and m.group(2):
            total = parse_count(m.group(2))
            sold = parse_count(m.group(1))
        else:
            total = parse_count(m.group(1))
        if total is not None:
            break

    if sold is None:
        sold = _first_count(text, rules.sold_patterns)
    remaining = _first_count(text, rules.remaining_patterns)
    return Totals(total=total, sold=sold, remaining=remaining)


def _first_count(text: str, patterns: Sequence[str]) -> int | None:
    for pattern in patterns:
        m = re.search(pattern, text, re.IGNORECASE)
        if m and m.groups():
            value = parse_count(m.group(1))
            if value is not None:
                return value
    return None


def _normalize_key(key: str) -> str:
    return key.replace("-", "").replace("_", "").lower()


def _data_attributes(soup: BeautifulSoup) -> dict[str, int]:
    """data-* 属性を正規化したキー -> 数値 の dict にする（先勝ち）."""
    found: dict[str, int] = {}
    for tag in soup.find_all(True):
        for name, value in tag.attrs.items():
            if not name.startswith("data-") or not isinstance(value, str):
                continue
            key = _normalize_key(name[5:])
            if key in found:
                continue
            count = parse_count(value) if value.strip().replace(",", "").isdigit() else None
            if count is not None:
                found[key] = count
    return found
