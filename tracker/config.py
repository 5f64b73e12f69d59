# tracker/config.py
"""
환경 변수 기반 설정

.env 파일이 있으면 먼저 읽은 뒤(python-dotenv), 환경 변수에서 값을 가져옵니다.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ValidationError


DEFAULT_LOOKAHEAD_HOURS = 3
DEFAULT_PING_MINUTES = 30

MIN_LEAD_MINUTES = 1
MAX_LEAD_MINUTES = 1440
MIN_LOOKAHEAD_HOURS = 1
MAX_LOOKAHEAD_HOURS = 168


@dataclass(frozen=True)
class Settings:
    db_path: str = 'tracker.db'
    discord_token: Optional[str] = None
    discord_api_base: str = 'https://discord.com/api/v10'
    tick_seconds: int = 60
    cleanup_grace_minutes: int = 15
    reconcile_scan_limit: int = 50
    catalog_path: Optional[str] = None
    http_timeout: float = 10.0
    log_level: str = 'INFO'


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{key} 값은 정수여야 합니다 (입력: {raw!r})")
    if value < minimum:
        raise ValidationError(f"{key} 값은 {minimum} 이상이어야 합니다 (입력: {value})")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"{key} 값은 숫자여야 합니다 (입력: {raw!r})")
    if value <= 0:
        raise ValidationError(f"{key} 값은 0보다 커야 합니다 (입력: {value})")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """
    설정 로드

    Args:
        env: 환경 변수 매핑 (기본: os.environ)
        dotenv: True면 .env 파일을 먼저 읽음

    Returns:
        Settings 인스턴스

    Raises:
        ValidationError: 숫자 값이 잘못된 경우
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    return Settings(
        db_path=env.get('TRACKER_DB_PATH') or 'tracker.db',
        discord_token=env.get('DISCORD_TOKEN') or None,
        discord_api_base=(env.get('DISCORD_API_BASE') or 'https://discord.com/api/v10').rstrip('/'),
        tick_seconds=_int(env, 'TRACKER_TICK_SECONDS', 60, minimum=1),
        cleanup_grace_minutes=_int(env, 'TRACKER_CLEANUP_GRACE_MINUTES', 15),
        reconcile_scan_limit=_int(env, 'TRACKER_RECONCILE_SCAN_LIMIT', 50, minimum=1),
        catalog_path=env.get('TRACKER_CATALOG_PATH') or None,
        http_timeout=_float(env, 'TRACKER_HTTP_TIMEOUT', 10.0),
        log_level=(env.get('TRACKER_LOG_LEVEL') or 'INFO').upper(),
    )


def configure_logging(level: str = 'INFO'):
    """실행 스크립트용 콘솔 로그 설정"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s',
    )
    # APScheduler는 매 실행마다 INFO 로그를 남기므로 한 단계 낮춤
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
