"""
리스폰 트래커

테넌트(서버)별로 보스 처치/서버 리셋 시점을 기록하고,
리스폰 윈도우를 계산해 채널 핑과 개인 DM 알림을 중복 없이 발송합니다.
"""

from .errors import TrackerError, ValidationError, TransportError, StorageError
from .models import TriggerKind, EntityMetadata, TenantEntityState, Window
from .window import compute_window

__all__ = [
    'TrackerError',
    'ValidationError',
    'TransportError',
    'StorageError',
    'TriggerKind',
    'EntityMetadata',
    'TenantEntityState',
    'Window',
    'compute_window',
]
