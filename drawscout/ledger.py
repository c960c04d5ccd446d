"""クロール実行台帳（scrape_runs）.

1サイト1回のクロールごとに started 行を作り、ok / error で1度だけ確定する。
台帳への書き込み失敗はクロール自体を止めない。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from drawscout import db
from drawscout.models import CrawlRun, SiteConfig

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunLedger:
    """CrawlRun のライフサイクル管理.

    persist=False の場合は DB に書かず、メモリ上の記録だけを残す。
    """

    def __init__(self, persist: bool = True) -> None:
        self.persist = persist
        self.runs: list[CrawlRun] = []

    def start(self, site: SiteConfig) -> CrawlRun:
        run = CrawlRun(site_id=site.id, site_name=site.name, status="started", started_at=_now())
        self.runs.append(run)
        if self.persist:
            try:
                run.run_id = db.insert_run(site.id, run.started_at)
            except Exception as e:
                logger.warning("scrape_runs の作成に失敗: site=%s, error=%s", site.name, e)
        return run

    def finish_ok(self, run: CrawlRun, items_ingested: int) -> None:
        if not self._finish(run, "ok", items_ingested=items_ingested):
            return
        if self.persist:
            try:
                db.mark_site_success(run.site_id, run.finished_at)
            except Exception as e:
                logger.warning("last_success_at の更新に失敗: site=%s, error=%s", run.site_name, e)

    def finish_error(self, run: CrawlRun, message: str, items_ingested: int = 0) -> None:
        self._finish(run, "error", items_ingested=items_ingested, error=message)

    def _finish(
        self, run: CrawlRun, status: str, items_ingested: int, error: str | None = None
    ) -> bool:
        """実行記録を確定する. 確定済みなら何もせず False を返す."""
        if run.finished:
            logger.warning("確定済みの実行記録は更新しません: site=%s, status=%s",
                           run.site_name, run.status)
            return False
        run.status = status
        run.items_ingested = items_ingested
        run.error = error
        run.finished_at = _now()
        if not self.persist or run.run_id is None:
            return True

        fields = {"status": status, "items_ingested": items_ingested, "finished_at": run.finished_at}
        if error is not None:
            fields["error"] = error
        try:
            db.update_run(run.run_id, fields)
        except Exception as e:
            logger.warning("scrape_runs の更新に失敗: site=%s, error=%s", run.site_name, e)
        return True
