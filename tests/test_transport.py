import pytest
import requests

from tracker.errors import TransportError
from tracker.notification.transport import DiscordTransport, MessageRef


class FakeResponse:

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = '' if payload is None else str(payload)

    def json(self):
        return self._payload


class HtmlResponse(FakeResponse):
    """프록시 오류 페이지처럼 JSON이 아닌 2xx 응답"""

    def __init__(self):
        super().__init__(200)
        self.text = '<html>bad gateway</html>'

    def json(self):
        raise ValueError('Expecting value: line 1 column 1 (char 0)')


class FakeSession:
    """requests.Session 대신 쓰는 응답 큐"""

    def __init__(self):
        self.headers = {}
        self.calls = []
        self.responses = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def discord(session):
    return DiscordTransport('secret', api_base='https://example.test/api/', session=session)


def test_requires_token():
    with pytest.raises(ValueError):
        DiscordTransport('')


def test_auth_header(discord, session):
    assert session.headers['Authorization'] == 'Bot secret'


def test_send(discord, session):
    session.queue(FakeResponse(200, {'id': 555}))
    ref = discord.send('chan-1', 'hello')
    assert ref == MessageRef('chan-1', '555')

    method, url, kwargs = session.calls[0]
    assert method == 'POST'
    assert url == 'https://example.test/api/channels/chan-1/messages'
    assert kwargs['json']['content'] == 'hello'


def test_http_error_has_status(discord, session):
    session.queue(FakeResponse(403, {'message': 'Missing Access'}))
    with pytest.raises(TransportError) as info:
        discord.edit(MessageRef('chan-1', '1'), 'x')
    assert info.value.status == 403


def test_network_errors(discord, session):
    session.queue(requests.exceptions.Timeout(), requests.exceptions.ConnectionError('down'))
    with pytest.raises(TransportError):
        discord.send('chan-1', 'x')
    with pytest.raises(TransportError) as info:
        discord.send('chan-1', 'x')
    assert info.value.status is None


def test_delete_missing_message_is_ok(discord, session):
    session.queue(FakeResponse(404, {'message': 'Unknown Message'}), FakeResponse(500))
    discord.delete(MessageRef('chan-1', '1'))
    with pytest.raises(TransportError):
        discord.delete(MessageRef('chan-1', '2'))


def test_fetch(discord, session):
    session.queue(FakeResponse(200, {'id': '1', 'content': None}))
    assert discord.fetch(MessageRef('chan-1', '1')).content == ''


def test_recent_messages_only_own(discord, session):
    session.queue(
        FakeResponse(200, [
            {'id': '3', 'content': 'mine', 'author': {'id': '42'}},
            {'id': '2', 'content': 'theirs', 'author': {'id': '7'}},
            {'id': '1', 'content': 'system'},
        ]),
        FakeResponse(200, {'id': '42'}),
        FakeResponse(200, []),
    )
    messages = discord.recent_messages('chan-1', limit=500)
    assert [m.ref.message_id for m in messages] == ['3']
    assert session.calls[0][2]['params'] == {'limit': 100}

    # 봇 ID는 한 번만 조회
    discord.recent_messages('chan-1', limit=0)
    assert session.calls[2][2]['params'] == {'limit': 1}
    assert len(session.calls) == 3


def test_direct_channel_cached(discord, session):
    session.queue(FakeResponse(200, {'id': 'dm-9'}))
    assert discord.direct_channel('user-1') == 'dm-9'
    assert discord.direct_channel('user-1') == 'dm-9'
    assert len(session.calls) == 1


def test_close(discord, session):
    discord.close()
    assert session.closed


def test_non_json_body_is_transport_error(discord, session):
    session.queue(HtmlResponse(), HtmlResponse())
    with pytest.raises(TransportError):
        discord.send('chan-1', 'hello')
    with pytest.raises(TransportError):
        discord.fetch(MessageRef('chan-1', '1'))


@pytest.mark.parametrize('payload', [{}, {'message': 'ok'}, ['not', 'a', 'message'], None])
def test_unexpected_body_shape_is_transport_error(discord, session, payload):
    session.queue(FakeResponse(200, payload))
    with pytest.raises(TransportError):
        discord.send('chan-1', 'hello')


def test_unexpected_message_list_is_transport_error(discord, session):
    session.queue(FakeResponse(200, {'messages': []}), FakeResponse(200, [{'content': 'no id'}]))
    with pytest.raises(TransportError):
        discord.recent_messages('chan-1')
    with pytest.raises(TransportError):
        discord.recent_messages('chan-1')


def test_direct_channel_bad_body_not_cached(discord, session):
    session.queue(FakeResponse(200, {}), FakeResponse(200, {'id': 'dm-9'}))
    with pytest.raises(TransportError):
        discord.direct_channel('user-1')
    assert discord.direct_channel('user-1') == 'dm-9'
