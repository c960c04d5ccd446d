"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# クライアントは db モジュールで遅延生成する（パーサ単体では不要）
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY: str = os.environ.get("SUPABASE_SERVICE_KEY", "")

# --- User-Agent ---
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
ACCEPT_LANGUAGE = "en-GB,en;q=0.9"

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 15  # 秒
DEFAULT_RATE_LIMIT_MS = 250
MAX_LINKS_PER_SITE = 60

# --- アクセス区分 ---
TIERS = ("free", "premium", "both")

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)
