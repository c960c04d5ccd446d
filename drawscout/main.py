"""抽選サイトクローラ — メインエントリーポイント.

処理フロー:
  1. DB から有効なサイト設定を取得（0件なら全サイトにフォールバック）
  2. アクセス区分でサイトを絞る
  3. adapter_rules を取得
  4. サイトごとにクロールし、competitions に upsert
  5. 取得したレコードを返す（--query 指定時は賞品名で絞り込み）
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from drawscout import db
from drawscout.config import LOG_DIR, TIERS
from drawscout.crawler import crawl, select_sites
from drawscout.models import CompetitionRecord

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"collector_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def run(query: str = "", tier: str = "both", store: bool = True) -> list[CompetitionRecord]:
    """クロールを1回実行する.

    Raises:
        db.ConfigurationError: サイト設定・ルールが取得できない場合
    """
    if tier not in TIERS:
        raise ValueError(f"tier は {TIERS} のいずれか: {tier!r}")

    logger.info("=== クロール 開始 ===")
    start_time = time.time()

    sites = db.get_sites(enabled_only=True)
    if not sites:
        logger.warning("有効なサイトがありません。全サイトを対象にします")
        sites = db.get_sites(enabled_only=False)

    sites = select_sites(sites, tier)
    if not sites:
        logger.warning("対象サイトがありません (tier=%s)。終了します。", tier)
        return []
    logger.info("対象サイト: %d 件 (tier=%s)", len(sites), tier)

    rules_by_key = db.get_adapter_rules()
    records = crawl(sites, rules_by_key, query=query, store=store)

    elapsed = time.time() - start_time
    logger.info("=== クロール 完了 ===")
    logger.info("サイト: %d 件, レコード: %d 件, 所要時間: %.1f 秒",
                len(sites), len(records), elapsed)
    return records


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="抽選サイトのクロール")
    parser.add_argument("--query", default="", help="賞品名で絞り込む文字列")
    parser.add_argument("--tier", default="both", choices=TIERS)
    parser.add_argument("--no-store", action="store_true", help="DB に書き込まない")
    parser.add_argument("--output", type=Path, help="取得結果を JSON で書き出すパス")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        records = run(query=args.query, tier=args.tier, store=not args.no_store)
    except db.ConfigurationError as e:
        logger.error("設定の取得に失敗しました: %s", e)
        return 1

    if args.output:
        rows = [r.to_row() for r in records]
        args.output.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("結果を書き出しました: %s (%d 件)", args.output, len(rows))
    return 0


if __name__ == "__main__":
    sys.exit(main())
