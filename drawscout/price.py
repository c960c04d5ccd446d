"""参加費（1口あたりの価格）の抽出モジュール.

取得戦略（候補が残った最初の段階を採用）:
  1. 構造化データ (JSON-LD Product / meta itemprop=price): 信頼済み、即採用
  2. ルールのアンカー文字列の直後 N 文字
  3. ルールのセレクタ + よくある価格コンテナ
  4. data-* 属性
  5. 本文テキスト先頭 N 文字の通貨付き数値（無ければ素の数値）

2〜5 の候補は価格ウィンドウで絞り込み、choose_price で1つに決める。
"""

from __future__ import annotations

import html as html_lib
import json
import logging
import re
from collections.abc import Iterable

from bs4 import BeautifulSoup

from drawscout.dom import element_text, select, visible_text
from drawscout.models import AdapterRules
from drawscout.parsers import parse_money

logger = logging.getLogger(__name__)

COMMON_PRICE_SELECTORS = (
    ".woocommerce-Price-amount",
    ".price",
    '[class*="price"]',
)

PRICE_ATTRIBUTES = (
    "data-price",
    "data-product-price",
    "data-ticket-price",
    "data-entry-price",
    "data-amount",
)

DEFAULT_PRICE_PATTERNS = (r"£\s*(\d[\d,]*(?:\.\d{1,2})?)",)

_STRUCTURED_META = (
    'meta[itemprop="price"]',
    'meta[property="product:price:amount"]',
)

# "49p" のようなペンス表記
_PENCE = re.compile(r"(?<![\d.£])(\d{1,2})\s?p\b")
_BARE_NUMBER = re.compile(r"(?<![\d.,])\d+(?:\.\d{1,2})?(?![\d,])")
_TAG = re.compile(r"<[^>]+>")


def resolve_price(
    soup: BeautifulSoup, rules: AdapterRules, html: str | None = None
) -> float | None:
    """ページから参加費を1つ決める. 見つからなければ None."""
    trusted = structured_price(soup)
    if trusted is not None:
        logger.debug("構造化データの価格を採用: %s", trusted)
        return trusted

    if html is None:
        html = str(soup)

    price = choose_price(_anchor_candidates(html, rules), rules)
    if price is not None:
        return price

    for selector in [*rules.price_selectors, *COMMON_PRICE_SELECTORS]:
        candidates: list[float] = []
        for el in select(soup, selector):
            text = element_text(el)
            candidates.extend(money_candidates(text, rules) or bare_candidates(text))
        price = choose_price(candidates, rules)
        if price is not None:
            return price

    price = choose_price(_attribute_candidates(soup, rules), rules)
    if price is not None:
        return price

    text = visible_text(soup)[: rules.text_scan_limit]
    price = choose_price(money_candidates(text, rules), rules)
    if price is not None:
        return price
    return choose_price(bare_candidates(text), rules)


def choose_price(candidates: Iterable[float], rules: AdapterRules) -> float | None:
    """候補から参加費らしい値を選ぶ.

    1口の価格は小さな端数付き、賞品や現金代替は大きな整数になりやすいので、
      1. 閾値未満の端数付きで最小
      2. 推奨ウィンドウ内の端数付きで最小
      3. 端数付きで最小
      4. 推奨ウィンドウ内の整数で最小
      5. 全体で最小
    の順で決める。ウィンドウ外の候補は最初に捨てる。
    """
    plausible = [v for v in candidates if v in rules.price_window]
    if not plausible:
        return None

    preferred = rules.price_preferred_window
    fractional = [v for v in plausible if not float(v).is_integer()]
    whole = [v for v in plausible if float(v).is_integer()]
    for pool in (
        [v for v in fractional if v < rules.price_low_threshold],
        [v for v in fractional if v in preferred],
        fractional,
        [v for v in whole if v in preferred],
        plausible,
    ):
        if pool:
            return min(pool)
    return None


def structured_price(soup: BeautifulSoup) -> float | None:
    """JSON-LD の Product/Offer、または商品 meta タグから価格を取る."""
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        for node in _iter_nodes(data):
            if not _is_type(node, "Product", "Offer", "AggregateOffer"):
                continue
            price = _offer_price(node)
            if price is not None:
                return price

    for selector in _STRUCTURED_META:
        tag = soup.select_one(selector)
        if tag is not None:
            price = parse_money(tag.get("content"))
            if price is not None:
                return price
    return None


def money_candidates(text: str, rules: AdapterRules) -> list[float]:
    """通貨付きの金額（£1.50, 49p）を候補として拾う."""
    found: list[float] = []
    for pattern in rules.price_patterns or DEFAULT_PRICE_PATTERNS:
        for m in re.finditer(pattern, text, re.IGNORECASE):
            raw = m.group(1) if m.groups() else m.group(0)
            value = parse_money(raw)
            if value is not None:
                found.append(value)
    for m in _PENCE.finditer(text):
        found.append(int(m.group(1)) / 100)
    return found


def bare_candidates(text: str) -> list[float]:
    """通貨記号の無い数値を拾う（最後の手段）."""
    return [float(m.group(0)) for m in _BARE_NUMBER.finditer(text)]


def _anchor_candidates(html: str, rules: AdapterRules) -> list[float]:
    found: list[float] = []
    lowered = html.lower()
    for anchor in rules.price_anchors:
        needle = anchor.lower()
        start = lowered.find(needle)
        while start != -1:
            begin = start + len(needle)
            window = html[begin : begin + rules.price_anchor_window]
            window = html_lib.unescape(_TAG.sub(" ", window))
            found.extend(money_candidates(window, rules))
            start = lowered.find(needle, begin)
    return found


def _attribute_candidates(soup: BeautifulSoup, rules: AdapterRules) -> list[float]:
    found: list[float] = []
    for name in [*PRICE_ATTRIBUTES, *rules.price_attributes]:
        for tag in soup.find_all(attrs={name: True}):
            value = parse_money(tag.get(name))
            if value is not None:
                found.append(value)
    return found


def _iter_nodes(data):
    """JSON-LD を再帰的にたどり、dict ノードを列挙する."""
    if isinstance(data, dict):
        yield data
        for value in data.values():
            if isinstance(value, (dict, list)):
                yield from _iter_nodes(value)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)


def _is_type(node: dict, *names: str) -> bool:
    t = node.get("@type")
    types = t if isinstance(t, list) else [t]
    return any(name in types for name in names)


def _offer_price(node: dict) -> float | None:
    for key in ("price", "lowPrice"):
        if node.get(key) is not None:
            price = parse_money(str(node[key]))
            if price is not None:
                return price
    offers = node.get("offers")
    for offer in offers if isinstance(offers, list) else [offers]:
        if isinstance(offer, dict):
            price = _offer_price(offer)
            if price is not None:
                return price
    return None
