import logging
import os
from dataclasses import dataclass
from typing import Optional

import environ

# Pajak penjualan (10%)
TAX_RATE = 0.1

# Jumlah transaksi terakhir yang dikirim ke asisten AI
AI_HISTORY_WINDOW = 50

LOW_STOCK_THRESHOLD = 10
TOP_PRODUCTS_LIMIT = 5
TREND_DAYS = 7

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

env = environ.Env(
    DATABASE_URL=(str, 'sqlite:///kasir.db'),
    TELEGRAM_BOT_TOKEN=(str, ''),
    KASIR_GROUP_CHAT_ID=(str, ''),
    OPENAI_API_KEY=(str, ''),
    AI_MODEL=(str, 'gpt-4o-mini'),
    AI_BASE_URL=(str, ''),
    LOCAL_CACHE_PATH=(str, 'kasir_cache.json'),
    ADMIN_USERNAME=(str, 'admin'),
    ADMIN_PASSWORD=(str, 'admin123'),
    LOG_LEVEL=(str, 'INFO'),
)


@dataclass(frozen=True)
class Settings:
    database_url: str
    telegram_bot_token: str
    group_chat_id: Optional[int]
    openai_api_key: str
    ai_model: str
    ai_base_url: Optional[str]
    local_cache_path: str
    admin_username: str
    admin_password: str
    log_level: str


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Membaca konfigurasi dari environment (dan file .env bila ada)."""
    if env_file and os.path.exists(env_file):
        environ.Env.read_env(env_file)

    group_chat_id = env('KASIR_GROUP_CHAT_ID')
    return Settings(
        database_url=env('DATABASE_URL'),
        telegram_bot_token=env('TELEGRAM_BOT_TOKEN'),
        group_chat_id=int(group_chat_id) if group_chat_id else None,
        openai_api_key=env('OPENAI_API_KEY'),
        ai_model=env('AI_MODEL'),
        ai_base_url=env('AI_BASE_URL') or None,
        local_cache_path=env('LOCAL_CACHE_PATH'),
        admin_username=env('ADMIN_USERNAME'),
        admin_password=env('ADMIN_PASSWORD'),
        log_level=env('LOG_LEVEL').upper(),
    )


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level, logging.INFO))
