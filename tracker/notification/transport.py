# tracker/notification/transport.py
"""
메시지 전송 계층

스케줄러는 Transport 인터페이스만 사용하고, 실제 발송은 DiscordTransport가
Discord REST API(requests)로 처리합니다.

모든 메서드는 실패 시 TransportError를 발생시킵니다.
호출하는 쪽(틱/정리 작업)에서 TransportError만 잡아서 "시도했지만 전달 실패"로 처리합니다.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import requests

from ..errors import TransportError


logger = logging.getLogger(__name__)

T = TypeVar('T')


def _message_rows(data) -> List[Tuple[str, str, str]]:
    """메시지 목록 응답을 (메시지 ID, 작성자 ID, 내용) 리스트로"""
    if not isinstance(data, list):
        raise TypeError(f"메시지 목록이 아닙니다: {type(data).__name__}")
    return [
        (str(row['id']), str((row.get('author') or {}).get('id')), row.get('content') or '')
        for row in data
    ]


@dataclass(frozen=True)
class MessageRef:
    channel_id: str
    message_id: str


@dataclass(frozen=True)
class Message:
    ref: MessageRef
    content: str


class Transport(ABC):
    """메시지 발송 인터페이스"""

    @abstractmethod
    def send(self, channel_id: str, content: str) -> MessageRef:
        """메시지 발송 후 위치 반환"""

    @abstractmethod
    def edit(self, ref: MessageRef, content: str):
        """기존 메시지 내용 수정"""

    @abstractmethod
    def delete(self, ref: MessageRef):
        """메시지 삭제 (이미 없는 메시지는 성공으로 취급)"""

    @abstractmethod
    def fetch(self, ref: MessageRef) -> Message:
        """메시지 조회"""

    @abstractmethod
    def recent_messages(self, channel_id: str, limit: int = 50) -> List[Message]:
        """채널에서 이 봇이 보낸 최근 메시지 (최신순)"""

    @abstractmethod
    def direct_channel(self, user_id: str) -> str:
        """사용자 DM 채널 ID"""


class DiscordTransport(Transport):
    """
    Discord REST API 기반 전송

    재시도는 하지 않습니다. 실패한 발송은 다음 틱에서 중복 방지 조건을 다시 평가합니다.
    """

    def __init__(self, token: str, api_base: str = 'https://discord.com/api/v10',
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        if not token:
            raise ValueError("Discord 토큰이 필요합니다")
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bot {token}',
            'Content-Type': 'application/json',
        })
        self._user_id: Optional[str] = None
        self._dm_channels: Dict[str, str] = {}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_base}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise TransportError(f"{method} {path}: 타임아웃")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path}: {e}")

        if response.status_code >= 400:
            raise TransportError(
                f"{method} {path}: HTTP {response.status_code} {response.text[:200]}",
                status=response.status_code,
            )
        return response

    def _json(self, method: str, path: str, parse: Callable[[Any], T], **kwargs) -> T:
        """
        요청 후 응답 본문(JSON)을 parse로 변환

        2xx 응답이라도 본문이 JSON이 아니거나 기대한 필드가 없으면 TransportError
        """
        response = self._request(method, path, **kwargs)
        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"{method} {path}: 응답 형식 오류 ({e!r})", status=response.status_code)

    @property
    def user_id(self) -> str:
        if self._user_id is None:
            self._user_id = self._json('GET', '/users/@me', lambda data: str(data['id']))
        return self._user_id

    def send(self, channel_id: str, content: str) -> MessageRef:
        message_id = self._json(
            'POST', f'/channels/{channel_id}/messages', lambda data: str(data['id']),
            json={'content': content, 'allowed_mentions': {'parse': ['roles', 'users']}},
        )
        return MessageRef(channel_id=str(channel_id), message_id=message_id)

    def edit(self, ref: MessageRef, content: str):
        self._request('PATCH', f'/channels/{ref.channel_id}/messages/{ref.message_id}',
                      json={'content': content})

    def delete(self, ref: MessageRef):
        try:
            self._request('DELETE', f'/channels/{ref.channel_id}/messages/{ref.message_id}')
        except TransportError as e:
            if e.status == 404:
                logger.debug("이미 삭제된 메시지: %s", ref)
                return
            raise

    def fetch(self, ref: MessageRef) -> Message:
        content = self._json('GET', f'/channels/{ref.channel_id}/messages/{ref.message_id}',
                             lambda data: data.get('content') or '')
        return Message(ref=ref, content=content)

    def recent_messages(self, channel_id: str, limit: int = 50) -> List[Message]:
        rows = self._json('GET', f'/channels/{channel_id}/messages', _message_rows,
                          params={'limit': max(1, min(limit, 100))})
        me = self.user_id
        return [
            Message(ref=MessageRef(str(channel_id), message_id), content=content)
            for message_id, author_id, content in rows
            if author_id == me
        ]

    def direct_channel(self, user_id: str) -> str:
        if user_id not in self._dm_channels:
            self._dm_channels[user_id] = self._json(
                'POST', '/users/@me/channels', lambda data: str(data['id']),
                json={'recipient_id': user_id},
            )
        return self._dm_channels[user_id]

    def close(self):
        self.session.close()
