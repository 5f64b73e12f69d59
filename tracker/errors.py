# tracker/errors.py
"""
트래커 예외 정의

- ValidationError: 입력 경계에서 거부되는 값 (상태에 절대 들어가지 않음)
- TransportError: 메시지 발송/수정/삭제 실패 (스케줄러가 잡아서 로그만 남김)
- StorageError: DB 쓰기 실패 (호출자에게 그대로 전파)
"""


class TrackerError(Exception):
    """트래커 공통 예외"""


class ValidationError(TrackerError, ValueError):
    """잘못된 시간, 범위를 벗어난 알림 시간, 알 수 없는 엔티티 등"""


class TransportError(TrackerError):
    """메시지 전송 계층 실패"""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class StorageError(TrackerError):
    """저장소 쓰기 실패"""
