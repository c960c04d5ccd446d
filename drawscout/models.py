"""データモデル定義."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum

from drawscout.config import DEFAULT_RATE_LIMIT_MS, MAX_LINKS_PER_SITE

logger = logging.getLogger(__name__)


class AdapterKind(str, Enum):
    """サイトごとの既定パターン・優先順位を選ぶタグ."""

    GENERIC = "generic"
    REVCOMPS = "revcomps"
    DCG = "dcg"

    @classmethod
    def parse(cls, value: str | None) -> AdapterKind:
        """未知のキーは generic として扱う."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            logger.warning("未知の adapter_key=%r。generic として処理します", value)
            return cls.GENERIC


@dataclass
class SiteConfig:
    """クロール対象サイトの設定（sites テーブルの1行）."""

    id: str
    name: str
    list_url: str
    link_selector: str
    adapter_key: str = AdapterKind.GENERIC.value
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    tier: str = "both"  # "free" / "premium" / "both"
    enabled: bool = True

    @classmethod
    def from_row(cls, row: dict) -> SiteConfig:
        rate = row.get("rate_limit_ms")
        return cls(
            id=str(row["id"]),
            name=row["name"],
            list_url=row["list_url"],
            link_selector=row["link_selector"],
            adapter_key=row.get("adapter_key") or AdapterKind.GENERIC.value,
            rate_limit_ms=DEFAULT_RATE_LIMIT_MS if rate is None else int(rate),
            tier=row.get("tier") or "both",
            enabled=bool(row.get("enabled", True)),
        )

    @property
    def adapter_kind(self) -> AdapterKind:
        return AdapterKind.parse(self.adapter_key)


@dataclass(frozen=True)
class PriceWindow:
    """許容する価格の範囲（両端を含む）."""

    min: float
    max: float

    def __contains__(self, value: float) -> bool:
        return self.min <= value <= self.max

    @classmethod
    def from_dict(cls, raw: dict | None, default: PriceWindow) -> PriceWindow:
        if not isinstance(raw, dict):
            return default
        return cls(
            min=float(raw.get("min", default.min)),
            max=float(raw.get("max", default.max)),
        )


# 規則ドキュメントの旧キー: 値（正規表現1本）を対応するリストの先頭に足す
_LEGACY_PATTERN_KEYS = {
    "priority_total": "total_patterns",
    "sold": "sold_patterns",
    "remaining": "remaining_patterns",
}

_LIST_KEYS = (
    "prize_selectors",
    "price_selectors",
    "price_anchors",
    "price_attributes",
    "price_patterns",
    "total_selectors",
    "sold_selectors",
    "remaining_selectors",
    "total_keys",
    "sold_keys",
    "remaining_keys",
    "total_patterns",
    "sold_patterns",
    "remaining_patterns",
)

_REGEX_KEYS = (
    "price_patterns",
    "total_patterns",
    "sold_patterns",
    "remaining_patterns",
)


@dataclass
class AdapterRules:
    """adapter_rules テーブルの rules (JSON) を型付けしたもの.

    読み込み時に一度だけ既定値で埋める。未指定キーは base
    （アダプタ種別ごとの既定値）か、ここに書いた既定値になる。
    """

    # 賞品名
    prize_selectors: list[str] = field(default_factory=list)
    # 価格
    price_selectors: list[str] = field(default_factory=list)
    price_anchors: list[str] = field(default_factory=list)
    price_anchor_window: int = 200  # アンカー文字列の後ろを何文字見るか
    price_attributes: list[str] = field(default_factory=list)
    price_patterns: list[str] = field(default_factory=list)
    price_window: PriceWindow = PriceWindow(0.01, 100.0)
    price_preferred_window: PriceWindow = PriceWindow(0.10, 50.0)
    price_low_threshold: float = 1.0
    text_scan_limit: int = 20000
    # チケット枚数
    total_selectors: list[str] = field(default_factory=list)
    sold_selectors: list[str] = field(default_factory=list)
    remaining_selectors: list[str] = field(default_factory=list)
    total_keys: list[str] = field(default_factory=list)
    sold_keys: list[str] = field(default_factory=list)
    remaining_keys: list[str] = field(default_factory=list)
    total_patterns: list[str] = field(default_factory=list)
    sold_patterns: list[str] = field(default_factory=list)
    remaining_patterns: list[str] = field(default_factory=list)
    # リンク
    link_allow: str | None = None
    link_deny: str | None = None
    max_links: int = MAX_LINKS_PER_SITE
    # 主パターンで総数が取れなかったときの規則
    fallback: AdapterRules | None = None

    @classmethod
    def from_dict(cls, raw: dict | None, base: AdapterRules | None = None) -> AdapterRules:
        """JSON 由来の dict を検証し、既定値で埋めた AdapterRules を返す."""
        rules = replace(base) if base is not None else cls()
        if not raw:
            return rules
        if not isinstance(raw, dict):
            logger.warning("rules が dict ではありません: %r", type(raw).__name__)
            return rules

        known = {f.name for f in fields(cls)} | set(_LEGACY_PATTERN_KEYS)
        for key in raw:
            if key not in known:
                logger.debug("未知のルールキーを無視: %s", key)

        for key in _LIST_KEYS:
            if key in raw:
                setattr(rules, key, _as_str_list(raw[key]))

        for legacy_key, list_key in _LEGACY_PATTERN_KEYS.items():
            extra = _as_str_list(raw.get(legacy_key))
            if extra:
                setattr(rules, list_key, extra + getattr(rules, list_key))

        for key in _REGEX_KEYS:
            setattr(rules, key, _valid_patterns(getattr(rules, key), key))

        rules.price_window = PriceWindow.from_dict(raw.get("price_window"), rules.price_window)
        rules.price_preferred_window = PriceWindow.from_dict(
            raw.get("price_preferred_window"), rules.price_preferred_window
        )
        for key in ("price_anchor_window", "text_scan_limit", "max_links"):
            if raw.get(key) is not None:
                setattr(rules, key, int(raw[key]))
        if raw.get("price_low_threshold") is not None:
            rules.price_low_threshold = float(raw["price_low_threshold"])
        for key in ("link_allow", "link_deny"):
            if key in raw:
                value = raw[key] or None
                if value and not _valid_patterns([value], key):
                    value = None
                setattr(rules, key, value)

        if isinstance(raw.get("fallback"), dict):
            fallback_base = None
            if base is not None:
                fallback_base = base.fallback or replace(base, fallback=None)
            rules.fallback = cls.from_dict(raw["fallback"], fallback_base)
        return rules


def _as_str_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _valid_patterns(patterns: list[str], key: str) -> list[str]:
    valid = []
    for p in patterns:
        try:
            re.compile(p)
        except re.error as e:
            logger.warning("不正な正規表現を除外: %s=%r (%s)", key, p, e)
            continue
        valid.append(p)
    return valid


@dataclass
class Totals:
    """チケット総数・販売数・残数. 不明は None."""

    total: int | None = None
    sold: int | None = None
    remaining: int | None = None

    def any_known(self) -> bool:
        return any(v is not None for v in (self.total, self.sold, self.remaining))


@dataclass
class CompetitionRecord:
    """DB に upsert する抽選レコード（url がキー）."""

    prize: str
    site_name: str
    entry_fee: float | None
    total_tickets: int | None
    tickets_sold: int | None
    remaining_tickets: int | None
    url: str
    scraped_at: str | None = None  # ISO 8601

    def to_row(self) -> dict:
        return {
            "prize": self.prize,
            "site_name": self.site_name,
            "entry_fee": self.entry_fee,
            "total_tickets": self.total_tickets,
            "tickets_sold": self.tickets_sold,
            "remaining_tickets": self.remaining_tickets,
            "url": self.url,
            "scraped_at": self.scraped_at,
        }


@dataclass
class CrawlRun:
    """1サイト1回分のクロール実行記録."""

    site_id: str
    site_name: str
    run_id: int | str | None = None  # 台帳に行が作れなかった場合は None
    status: str = "pending"  # pending -> started -> ok | error
    items_ingested: int = 0
    error: str | None = None
    started_at: str | None = None
    finished_at: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in ("ok", "error")
