# tracker/notification/messages.py
"""
알림 메시지 생성/해석

채널 핑은 나중에 오래된 알림 정리 작업이 다시 읽어야 하므로
보스 이름과 윈도우 시작/끝을 정해진 형식으로 넣습니다.
시간은 Discord 타임스탬프 태그(<t:UNIX:f>)로 넣어서 각자 로컬 시간으로 보이게 합니다.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..models import EntityMetadata, TriggerKind, Window
from ..utils import fmt_utc, to_unix


PING_TITLE = '⏰ **스폰 임박: {name}**'
RESET_SUFFIX = ' *(서버 리셋 후)*'

_PING_TITLE_RE = re.compile(r'⏰ \*\*스폰 임박: (?P<name>.+?)\*\*')
_TIMESTAMP_RE = re.compile(r'<t:(?P<unix>\d+):f>')


@dataclass(frozen=True)
class PingContent:
    """채널 핑 메시지에서 읽어낸 값"""
    entity_name: str
    start_unix: int
    end_unix: int


def _ts(value: datetime, style: str = 'f') -> str:
    return f"<t:{to_unix(value)}:{style}>"


def render_window_lines(window: Window) -> List[str]:
    """
    윈도우 표시 두 줄 (로컬 시간 / 서버 시간)

    시작과 끝이 같으면 구간이 아니라 한 시점으로 표시합니다.
    """
    if window.is_single:
        return [
            f"**로컬 시간:** {_ts(window.start)}",
            f"**서버 시간(UTC):** {fmt_utc(window.start)}",
        ]
    return [
        f"**로컬 시간:** {_ts(window.start)} ~ {_ts(window.end)}",
        f"**서버 시간(UTC):** {fmt_utc(window.start)} ~ {fmt_utc(window.end)}",
    ]


def _label(meta: EntityMetadata, window: Window) -> str:
    suffix = RESET_SUFFIX if window.trigger_kind == TriggerKind.RESET else ''
    return f"**{meta.name}**{suffix}"


def render_ping(meta: EntityMetadata, window: Window, role_id: Optional[str] = None) -> str:
    """채널 핑 메시지"""
    title = PING_TITLE.format(name=meta.name)
    if window.trigger_kind == TriggerKind.RESET:
        title += RESET_SUFFIX
    lines = []
    if role_id:
        lines.append(f"<@&{role_id}>")
    lines.append(title)
    lines.append(f"{_ts(window.start, 'R')} 에 윈도우가 열립니다.")
    lines.extend(render_window_lines(window))
    return '\n'.join(lines)


def parse_ping(content: str) -> Optional[PingContent]:
    """
    채널 핑 메시지 해석

    Returns:
        PingContent 또는 None (핑 형식이 아닌 메시지)
    """
    title = _PING_TITLE_RE.search(content or '')
    if not title:
        return None
    stamps = [int(m.group('unix')) for m in _TIMESTAMP_RE.finditer(content, title.end())]
    if not stamps:
        return None
    start = stamps[0]
    end = stamps[1] if len(stamps) > 1 else start
    return PingContent(entity_name=title.group('name').strip(), start_unix=start, end_unix=end)


def ping_matches(ping: PingContent, window: Optional[Window]) -> bool:
    """메시지에 표시된 시작/끝이 현재 윈도우와 정확히 같은지"""
    if window is None:
        return False
    return ping.start_unix == to_unix(window.start) and ping.end_unix == to_unix(window.end)


def render_dashboard(entries: List[Tuple[EntityMetadata, Window]], hours: int) -> str:
    """
    대시보드 메시지 (테넌트당 하나를 계속 수정)

    같은 입력이면 항상 같은 문자열이 나오므로 내용이 그대로면 수정하지 않아도 됩니다.
    """
    lines = [f"📅 **다가오는 스폰 - 앞으로 {hours}시간**"]
    if not entries:
        lines.append(f"앞으로 {hours}시간 안에 시작하는 윈도우가 없습니다.")
        return '\n'.join(lines)

    for meta, window in entries:
        lines.append('')
        lines.append(_label(meta, window))
        lines.extend(render_window_lines(window))
    return '\n'.join(lines)


def render_user_alert(meta: EntityMetadata, window: Window, tenant_id: str) -> str:
    """개인 DM 알림"""
    lines = [
        f"⏰ **{meta.name}** 윈도우가 {_ts(window.start, 'R')} 열립니다.",
        *render_window_lines(window),
        f"(서버: {tenant_id})",
    ]
    return '\n'.join(lines)
