import pytest

from conftest import make_user


@pytest.fixture
def sockets(server_module, client):
    opened = []

    def connect():
        sock = server_module.socketio.test_client(server_module.app, flask_test_client=client)
        opened.append(sock)
        return sock

    yield connect
    for sock in opened:
        if sock.is_connected():
            sock.disconnect()


def _events(sock, name):
    return [e['args'][0] for e in sock.get_received() if e['name'] == name]


def test_new_story_is_broadcast(client, sockets):
    listener = sockets()
    assert listener.is_connected()
    resp = client.post('/api/news', json={'title': 'Live', 'content': 'now', 'author': 'a@uni.edu'})
    story = resp.get_json()['story']
    assert _events(listener, 'new-story') == [story]


def test_engagement_relayed_to_others(sockets):
    sender = sockets()
    other = sockets()
    sender.emit('story-engagement', {'storyId': 's1', 'likes': 3})
    assert _events(other, 'engagement-updated') == [{'storyId': 's1', 'likes': 3}]
    assert _events(sender, 'engagement-updated') == []


def test_like_emits_engagement(client, sockets):
    listener = sockets()
    story = client.post('/api/news', json={'title': 't', 'content': 'c', 'author': 'a'}).get_json()['story']
    listener.get_received()
    client.post(f"/api/news/{story['id']}/like")
    assert _events(listener, 'engagement-updated') == [{'storyId': story['id'], 'likes': 1}]


def test_direct_message_reaches_recipient_room(client, sockets):
    bob = sockets()
    bob.emit('join', {'email': 'b@uni.edu'})
    assert _events(bob, 'joined') == [{'room': 'user:b@uni.edu'}]
    eve = sockets()
    eve.emit('join', {'email': 'e@uni.edu'})
    eve.get_received()

    client.post('/api/messages', json={'sender': 'a@uni.edu', 'recipient': 'b@uni.edu', 'message': 'yo'})
    received = _events(bob, 'new-message')
    assert [m['message'] for m in received] == ['yo']
    assert _events(eve, 'new-message') == []


def test_schedule_changes_are_broadcast(client, store, sockets):
    make_user(store, 'dj@uni.edu')
    listener = sockets()
    client.post('/api/shows', json={'email': 'dj@uni.edu', 'title': 'Drive Time', 'hour': 17})
    updates = _events(listener, 'schedule-updated')
    assert len(updates) == 1
    assert updates[0]['slots'][17]['show']['title'] == 'Drive Time'


def test_trade_proposal_notifies_recipient(client, store, sockets):
    make_user(store, 'a@uni.edu', balance=5)
    make_user(store, 'b@uni.edu')
    bob = sockets()
    bob.emit('join', {'email': 'b@uni.edu'})
    bob.get_received()
    client.post('/api/trade', json={'sender': 'a@uni.edu', 'recipient': 'b@uni.edu', 'amount': 2})
    trades = _events(bob, 'trade-updated')
    assert len(trades) == 1
    assert trades[0]['status'] == 'pending'
