"""ページ取得とリンク収集のモジュール.

- fetch_html: 1ページ取得（キャッシュなし、失敗時は requests.RequestException）
- wait_interval: サイトごとのリクエスト間隔の待機
- discover_links: 一覧ページから詳細ページ URL を集める
"""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import urljoin

import requests

from drawscout.adapters import canonical_url
from drawscout.config import ACCEPT_LANGUAGE, MAX_LINKS_PER_SITE, REQUEST_TIMEOUT, USER_AGENT
from drawscout.dom import make_soup, select

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept-Language": ACCEPT_LANGUAGE,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def fetch_html(url: str) -> str:
    """ページの HTML を取得する.

    Raises:
        requests.RequestException: 通信エラー・タイムアウト・2xx 以外
    """
    resp = requests.get(url, headers=_HEADERS, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp.text


def wait_interval(delay_ms: int | None) -> None:
    """同一サイトへの連続リクエストの間で待機する."""
    if delay_ms and delay_ms > 0:
        time.sleep(delay_ms / 1000)


def discover_links(
    list_url: str,
    link_selector: str,
    allow: str | None = None,
    deny: str | None = None,
    max_links: int = MAX_LINKS_PER_SITE,
) -> list[str]:
    """一覧ページから詳細ページの URL を集める.

    絶対 URL 化 → 重複除去 → allow で残す → deny で除く → 上限で切る。
    0件でもエラーではない。

    Raises:
        requests.RequestException: 一覧ページの取得に失敗した場合
    """
    html = fetch_html(list_url)
    return extract_links(html, list_url, link_selector, allow, deny, max_links)


def extract_links(
    html: str,
    list_url: str,
    link_selector: str,
    allow: str | None = None,
    deny: str | None = None,
    max_links: int = MAX_LINKS_PER_SITE,
) -> list[str]:
    """一覧ページ HTML からリンクを抽出する（取得済み HTML 用）."""
    soup = make_soup(html)
    links: list[str] = []
    seen: set[str] = set()
    for a in select(soup, link_selector):
        href = (a.get("href") or "").strip()
        if not href or href.startswith(("javascript:", "mailto:", "tel:", "#")):
            continue
        url = canonical_url(urljoin(list_url, href))
        if url not in seen:
            seen.add(url)
            links.append(url)

    if allow:
        allow_re = re.compile(allow, re.IGNORECASE)
        links = [u for u in links if allow_re.search(u)]
    if deny:
        deny_re = re.compile(deny, re.IGNORECASE)
        links = [u for u in links if not deny_re.search(u)]

    logger.debug("リンク抽出: %s -> %d 件", list_url, len(links))
    return links[:max_links]
