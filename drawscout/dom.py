"""BeautifulSoup まわりの小さなヘルパ."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from bs4 import BeautifulSoup, Comment, Doctype, Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_INVISIBLE_PARENTS = {"script", "style", "noscript", "template", "head", "title"}


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def select(soup: BeautifulSoup | Tag, selector: str) -> list[Tag]:
    """CSS セレクタで検索する. ルール側の不正なセレクタは空扱い."""
    if not selector or not selector.strip():
        return []
    try:
        return soup.select(selector)
    except SelectorSyntaxError as e:
        logger.warning("不正なセレクタを無視: %r (%s)", selector, e)
        return []


def element_text(el: Tag) -> str:
    return squash(el.get_text(" ", strip=True))


def first_text(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    """セレクタを順に試し、最初に見つかった空でないテキストを返す."""
    for selector in selectors:
        for el in select(soup, selector):
            text = element_text(el)
            if text:
                return text
    return ""


def visible_text(soup: BeautifulSoup) -> str:
    """script/style などを除いた本文テキスト（空白は1つに詰める）."""
    parts = []
    for s in soup.find_all(string=True):
        if isinstance(s, (Comment, Doctype)):
            continue
        if s.parent is not None and s.parent.name in _INVISIBLE_PARENTS:
            continue
        parts.append(s)
    return squash(" ".join(parts))


def squash(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()
