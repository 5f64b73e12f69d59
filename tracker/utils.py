import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .errors import ValidationError


_HHMM = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*$')


def now_utc() -> datetime:
    """현재 UTC 시각 (timezone-aware)"""
    return datetime.now(timezone.utc)


def to_utc(value: Union[datetime, str]) -> datetime:
    """
    datetime 또는 ISO 문자열을 UTC datetime으로 변환합니다.

    naive datetime은 어느 시간대인지 알 수 없으므로 거부합니다.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"잘못된 시간 형식입니다: {value!r}")
    if not isinstance(value, datetime):
        raise ValidationError(f"시간 값이 아닙니다: {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError("시간대 정보가 없는 시간은 사용할 수 없습니다 (UTC로 지정하세요)")
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """
    DB 저장용 UTC ISO 문자열 (밀리초 정밀도, +00:00 고정)

    형식이 고정되어 있어서 문자열 비교와 시간 비교 결과가 같습니다.
    """
    return to_utc(value).isoformat(timespec='milliseconds')


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return to_utc(value)


def parse_server_time(hhmm: str, now: Optional[datetime] = None) -> datetime:
    """
    "HH:MM" (서버 시간 = UTC)을 오늘 날짜의 UTC 시각으로 변환합니다.

    Args:
        hhmm: "21:22" 같은 문자열
        now: 기준 시각 (기본: 현재)

    Returns:
        오늘의 해당 시각. 아직 오지 않은 시각이면 어제 날짜.

    Raises:
        ValidationError: 형식이나 범위가 잘못된 경우
    """
    match = _HHMM.match(hhmm or '')
    if not match:
        raise ValidationError("시간 형식이 잘못되었습니다. UTC 기준 HH:MM 으로 입력하세요 (예: 21:22)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError("시간 형식이 잘못되었습니다. UTC 기준 HH:MM 으로 입력하세요 (예: 21:22)")

    now = to_utc(now) if now is not None else now_utc()
    parsed = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if parsed > now:
        parsed -= timedelta(days=1)
    return parsed


def fmt_utc(value: datetime) -> str:
    """서버 시간(UTC) 표시용 문자열. 예: 2024-01-01 10:00 UTC"""
    return to_utc(value).strftime('%Y-%m-%d %H:%M UTC')


def to_unix(value: datetime) -> int:
    return int(to_utc(value).timestamp())
