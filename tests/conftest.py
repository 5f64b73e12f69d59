from collections import OrderedDict, defaultdict
from datetime import datetime, timezone

import pytest

from tracker.bus import EventBus
from tracker.config import Settings
from tracker.database import TrackerDB
from tracker.errors import TransportError
from tracker.models import EntityMetadata
from tracker.notification.transport import Message, MessageRef, Transport
from tracker.service import TrackerService


TENANT = 'guild-1'
CHANNEL = 'chan-1'
T0 = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class FakeTransport(Transport):
    """메모리 기반 전송 계층 (발송/수정/삭제 기록, 실패 주입)"""

    def __init__(self):
        self.channels = defaultdict(OrderedDict)
        self.sent = []
        self.edits = []
        self.deleted = []
        self.fail_ops = set()
        self.fail_channels = set()
        self._next_id = 1000

    def _check(self, op, channel_id=None):
        if op in self.fail_ops or (channel_id is not None and channel_id in self.fail_channels):
            raise TransportError(f"{op} failed")

    def post(self, channel_id, content):
        """이전에 보낸 메시지를 흉내 (발송 기록에는 남기지 않음)"""
        self._next_id += 1
        message_id = str(self._next_id)
        self.channels[channel_id][message_id] = content
        return MessageRef(channel_id, message_id)

    def send(self, channel_id, content):
        self._check('send', channel_id)
        ref = self.post(channel_id, content)
        self.sent.append((channel_id, content))
        return ref

    def edit(self, ref, content):
        self._check('edit', ref.channel_id)
        if ref.message_id not in self.channels[ref.channel_id]:
            raise TransportError('unknown message', status=404)
        self.channels[ref.channel_id][ref.message_id] = content
        self.edits.append((ref, content))

    def delete(self, ref):
        self._check('delete', ref.channel_id)
        self.channels[ref.channel_id].pop(ref.message_id, None)
        self.deleted.append(ref)

    def fetch(self, ref):
        self._check('fetch', ref.channel_id)
        content = self.channels[ref.channel_id].get(ref.message_id)
        if content is None:
            raise TransportError('unknown message', status=404)
        return Message(ref=ref, content=content)

    def recent_messages(self, channel_id, limit=50):
        self._check('recent', channel_id)
        items = list(self.channels[channel_id].items())[::-1][:limit]
        return [Message(MessageRef(channel_id, mid), content) for mid, content in items]

    def direct_channel(self, user_id):
        self._check('direct')
        return f'dm-{user_id}'

    def sent_to(self, channel_id):
        return [content for channel, content in self.sent if channel == channel_id]


DRAKE = EntityMetadata(name='Drake', location='Dragon Lair', normal_min_hours=10, normal_max_hours=14)
GOLEM = EntityMetadata(name='Golem', location='Quarry', normal_min_hours=5, normal_max_hours=5)
WARDEN = EntityMetadata(name='Warden', location='Keep', normal_min_hours=20, normal_max_hours=24,
                        reset_min_hours=2, reset_max_hours=3)
STATUE = EntityMetadata(name='Statue', location='Plaza')


@pytest.fixture
def db(tmp_path):
    database = TrackerDB(str(tmp_path / 'test_tracker.db'))
    for meta in (DRAKE, GOLEM, WARDEN, STATUE):
        database.insert_entity(meta)
    yield database
    database.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def tenant(db):
    return db.upsert_tenant_config(TENANT, broadcast_channel_id=CHANNEL, lookahead_hours=3, ping_minutes=5)


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=str(tmp_path / 'service.db'), discord_token='test-token')


@pytest.fixture
def service(settings, db, transport, bus):
    svc = TrackerService(settings, db=db, transport=transport, bus=bus)
    yield svc
    svc.scheduler.shutdown()
