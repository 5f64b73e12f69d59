"""
데이터베이스 테스트

pytest tests/test_database.py
"""

import pytest

from tracker.database import TrackerDB, normalize_name
from tracker.errors import StorageError
from tracker.models import EntityMetadata, TriggerKind

from conftest import CHANNEL, T0, TENANT, utc


def test_normalize_name():
    assert normalize_name('  Ancient   Drake ') == 'Ancient Drake'
    assert normalize_name(None) == ''


def test_entities(db):
    assert db.get_entity('dRaKe').name == 'Drake'
    assert db.get_entity(' Drake ').location == 'Dragon Lair'
    assert db.get_entity('Nobody') is None
    assert [meta.name for meta in db.list_entities()] == ['Drake', 'Golem', 'Statue', 'Warden']

    # 같은 이름은 다시 추가되지 않음
    assert db.insert_entity(EntityMetadata(name='Drake', normal_min_hours=1, normal_max_hours=2)) is False
    assert db.get_entity('Drake').normal_min_hours == 10

    assert db.delete_entity('statue') is True
    assert db.get_entity('Statue') is None


def test_list_entity_states_includes_untouched(db):
    db.upsert_trigger(TENANT, 'Drake', T0, TriggerKind.NORMAL, 'Drake:k')
    db.upsert_trigger('guild-2', 'Golem', T0, TriggerKind.NORMAL, 'Golem:k')

    states = dict((meta.name, state) for meta, state in db.list_entity_states(TENANT))
    assert set(states) == {'Drake', 'Golem', 'Statue', 'Warden'}
    assert states['Drake'].last_trigger_at == T0
    assert states['Drake'].tenant_id == TENANT
    assert states['Golem'] is None


def test_upsert_and_clear_trigger(db):
    db.upsert_trigger(TENANT, 'Drake', T0, TriggerKind.NORMAL, 'Drake:a')
    db.upsert_trigger(TENANT, 'Drake', utc(2024, 1, 1, 5), TriggerKind.RESET, 'Drake:b')
    state = db.get_state(TENANT, 'Drake')
    assert state.trigger_kind == TriggerKind.RESET
    assert state.window_key == 'Drake:b'

    assert db.clear_trigger(TENANT, 'Drake') is True
    assert db.clear_trigger(TENANT, 'Drake') is False
    assert db.clear_trigger(TENANT, 'Golem') is False
    assert db.get_state(TENANT, 'Golem') is None


def test_upsert_triggers_single_transaction(db):
    updated = db.upsert_triggers(TENANT, [('Warden', 'Warden:x'), ('Drake', 'Drake:x')], T0, TriggerKind.RESET)
    assert updated == ['Warden', 'Drake']
    assert db.get_state(TENANT, 'Drake').window_key == 'Drake:x'


def test_tenant_config_merge(db):
    config = db.upsert_tenant_config(TENANT, broadcast_channel_id=CHANNEL)
    assert config.lookahead_hours == 3
    assert config.ping_minutes == 30

    config = db.upsert_tenant_config(TENANT, ping_minutes=10)
    assert config.broadcast_channel_id == CHANNEL
    assert config.ping_minutes == 10
    assert db.get_tenant_config(TENANT) == config

    db.set_dashboard_message(TENANT, 'msg-1')
    assert db.get_tenant_config(TENANT).dashboard_message_id == 'msg-1'
    assert db.upsert_tenant_config(TENANT, lookahead_hours=6).dashboard_message_id == 'msg-1'

    with pytest.raises(ValueError):
        db.upsert_tenant_config(TENANT, colour='blue')

    db.upsert_tenant_config('guild-0')
    assert [c.tenant_id for c in db.list_tenant_configs()] == ['guild-0', TENANT]
    assert db.get_tenant_config('missing') is None


def test_subscriptions_and_alert_subscribers(db):
    assert db.add_subscription('u1', TENANT, 'Drake') is True
    assert db.add_subscription('u1', TENANT, 'Drake') is False
    db.add_subscription('u1', TENANT, 'Golem')
    db.add_subscription('u2', TENANT, 'Drake')
    db.add_subscription('u3', TENANT, 'Drake')
    db.add_subscription('u1', 'guild-2', 'Warden')

    db.set_alert_minutes('u1', TENANT, 15)
    db.set_alert_minutes('u1', TENANT, 20)
    db.set_alert_minutes('u2', TENANT, 60)
    db.set_alert_minutes('u4', TENANT, 60)

    assert db.get_alert_minutes('u1', TENANT) == 20
    assert db.get_alert_minutes('u3', TENANT) is None
    assert db.list_subscriptions('u1', TENANT) == ['Drake', 'Golem']
    assert db.list_alert_subscribers(TENANT) == {
        'u1': (20, ['Drake', 'Golem']),
        'u2': (60, ['Drake']),
    }

    assert db.remove_subscription('u1', TENANT, 'Golem') is True
    assert db.remove_subscription('u1', TENANT, 'Golem') is False


def test_broadcast_claim_once(db):
    assert db.claim_broadcast(TENANT, 'Drake', 'Drake:a') is True
    assert db.claim_broadcast(TENANT, 'Drake', 'Drake:a') is False
    assert db.claim_broadcast(TENANT, 'Drake', 'Drake:b') is True
    assert db.claim_broadcast('guild-2', 'Drake', 'Drake:a') is True

    record = db.get_delivery(TENANT, 'Drake', 'Drake:a')
    assert not record.delivered
    assert record.message_id is None
    # 메시지가 없는 기록은 삭제 대상이 아님
    assert db.list_deliveries_due(TENANT, utc(2030, 1, 1)) == []


def test_deliveries_due_and_deleted(db):
    db.claim_broadcast(TENANT, 'Drake', 'Drake:a')
    db.record_broadcast_message(TENANT, 'Drake', 'Drake:a', CHANNEL, 'm1', utc(2024, 1, 1, 14, 15))
    db.claim_broadcast(TENANT, 'Golem', 'Golem:a')
    db.record_broadcast_message(TENANT, 'Golem', 'Golem:a', CHANNEL, 'm2', utc(2024, 1, 1, 5, 15))

    assert db.list_deliveries_due(TENANT, utc(2024, 1, 1, 5, 14)) == []
    due = db.list_deliveries_due(TENANT, utc(2024, 1, 1, 14, 15))
    assert [record.message_id for record in due] == ['m2', 'm1']
    assert due[0].delete_after == utc(2024, 1, 1, 5, 15)

    db.mark_delivery_deleted(TENANT, 'Golem', 'Golem:a')
    assert db.mark_message_deleted(CHANNEL, 'm1') == 1
    assert db.mark_message_deleted(CHANNEL, 'm1') == 0
    assert db.mark_message_deleted(CHANNEL, 'unknown') == 0
    assert db.list_deliveries_due(TENANT, utc(2024, 1, 2)) == []
    assert all(record.deleted for record in db.list_deliveries(TENANT))


def test_user_alert_claim(db):
    assert db.get_user_alert('u1', TENANT, 'Drake', 'Drake:a') is None
    assert db.claim_user_alert('u1', TENANT, 'Drake', 'Drake:a') is True
    assert db.claim_user_alert('u1', TENANT, 'Drake', 'Drake:a') is False
    assert db.get_user_alert('u1', TENANT, 'Drake', 'Drake:a') is False

    db.mark_user_alert_delivered('u1', TENANT, 'Drake', 'Drake:a')
    assert db.get_user_alert('u1', TENANT, 'Drake', 'Drake:a') is True
    assert db.claim_user_alert('u2', TENANT, 'Drake', 'Drake:a') is True


def test_statistics(db):
    db.upsert_tenant_config(TENANT, broadcast_channel_id=CHANNEL)
    db.upsert_trigger(TENANT, 'Drake', T0, TriggerKind.NORMAL, 'Drake:a')
    db.claim_broadcast(TENANT, 'Drake', 'Drake:a')
    db.record_broadcast_message(TENANT, 'Drake', 'Drake:a', CHANNEL, 'm1', T0)

    assert db.get_statistics() == {
        'tenants': 1,
        'entities': 4,
        'active_triggers': 1,
        'broadcasts_sent': 1,
        'user_alerts_sent': 0,
    }


def test_data_survives_reopen(tmp_path):
    path = str(tmp_path / 'reopen.db')
    first = TrackerDB(path)
    first.insert_entity(EntityMetadata(name='Drake', normal_min_hours=10, normal_max_hours=14))
    first.claim_broadcast(TENANT, 'Drake', 'Drake:a')
    first.close()

    second = TrackerDB(path)
    try:
        assert second.get_entity('Drake') is not None
        assert second.claim_broadcast(TENANT, 'Drake', 'Drake:a') is False
    finally:
        second.close()


def test_write_errors_become_storage_error(tmp_path):
    db = TrackerDB(str(tmp_path / 'closed.db'))
    db.close()
    with pytest.raises(StorageError):
        db.claim_broadcast(TENANT, 'Drake', 'Drake:a')
