"""Supabase データベース操作モジュール.

テーブル (public スキーマ):
  - sites          クロール対象サイトの設定
  - adapter_rules  アダプタ種別ごとの rules (jsonb)
  - competitions   抽選レコード（url で upsert）
  - scrape_runs    サイト単位のクロール実行記録
"""

from __future__ import annotations

import logging
from functools import lru_cache

from supabase import Client, create_client

from drawscout.config import SUPABASE_SERVICE_KEY, SUPABASE_URL
from drawscout.models import SiteConfig

logger = logging.getLogger(__name__)

_SITE_COLUMNS = "id, name, list_url, link_selector, adapter_key, rate_limit_ms, tier, enabled"


class ConfigurationError(Exception):
    """サイト設定・ルールが読めない（クロール全体を中止する）."""


@lru_cache(maxsize=1)
def _client() -> Client:
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise ConfigurationError("SUPABASE_URL / SUPABASE_SERVICE_KEY が未設定です")
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)


def _table(name: str):
    """public スキーマのテーブルを参照する."""
    return _client().table(name)


def get_sites(enabled_only: bool = True) -> list[SiteConfig]:
    """サイト設定を取得する.

    Raises:
        ConfigurationError: 取得に失敗した場合
    """
    try:
        query = _table("sites").select(_SITE_COLUMNS)
        if enabled_only:
            query = query.eq("enabled", True)
        resp = query.execute()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"sites の取得に失敗: {e}") from e

    return [SiteConfig.from_row(row) for row in resp.data or []]


def get_adapter_rules() -> dict[str, dict]:
    """adapter_key -> rules (生の dict) を取得する.

    Raises:
        ConfigurationError: 取得に失敗した場合
    """
    try:
        resp = _table("adapter_rules").select("adapter_key, rules").execute()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"adapter_rules の取得に失敗: {e}") from e

    return {row["adapter_key"]: row.get("rules") or {} for row in resp.data or []}


def upsert_competitions(records: list[dict]) -> None:
    """抽選レコードを url をキーに一括 upsert する.

    Args:
        records: [{"prize", "site_name", "entry_fee", "total_tickets",
                   "tickets_sold", "remaining_tickets", "url", "scraped_at"}, ...]
    """
    if not records:
        return
    _table("competitions").upsert(records, on_conflict="url").execute()
    logger.info("competitions に %d 件 upsert", len(records))


def insert_run(site_id: str, started_at: str) -> int | str | None:
    """scrape_runs に started 行を作り、その id を返す."""
    resp = (
        _table("scrape_runs")
        .insert({"site_id": site_id, "status": "started", "started_at": started_at})
        .execute()
    )
    if not resp.data:
        return None
    return resp.data[0].get("id")


def update_run(run_id: int | str, fields: dict) -> None:
    """scrape_runs の行を更新する（status, items_ingested, error, finished_at）."""
    _table("scrape_runs").update(fields).eq("id", run_id).execute()


def mark_site_success(site_id: str, finished_at: str) -> None:
    """sites.last_success_at を更新する."""
    _table("sites").update({"last_success_at": finished_at}).eq("id", site_id).execute()
