def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert res.get_json()['websocket'] == '/ws'


def test_health(client):
    res = client.get('/api/health')
    assert res.status_code == 200
    data = res.get_json()
    assert data['status'] == 'ok'
    assert data['sessions'] == 0
    assert data['apiValidation'] is False


def test_unknown_session_reports_restart(client):
    res = client.get('/api/sessions/NOPE/state')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'SERVER_RESTART'
    assert client.get('/api/sessions/NOPE/countdown').status_code == 404


def test_state_and_countdown_for_live_session(client, sio_client):
    sio_client.emit('message', {'type': 'create_session', 'gameCode': 'HTTP'}, namespace='/ws')

    res = client.get('/api/sessions/http/state')
    assert res.status_code == 200
    state = res.get_json()
    assert state['sessionId'] == 'HTTP'
    assert state['gamePhase'] == 'setup'
    # Spectator view carries no per-viewer fields
    assert 'you' not in state
    assert 'roster' not in state

    res = client.get('/api/sessions/HTTP/countdown')
    assert res.get_json() == {'sessionId': 'HTTP', 'gamePhase': 'setup', 'inCountdown': False}

    assert client.get('/api/health').get_json()['sessions'] == 1


def test_countdown_while_starting(client, sio_client):
    sio_client.emit('message', {'type': 'create_session', 'gameCode': 'TICK'}, namespace='/ws')
    sio_client.emit('message', {'type': 'start_game', 'countdownSeconds': 30}, namespace='/ws')

    data = client.get('/api/sessions/TICK/countdown').get_json()
    assert data['gamePhase'] == 'countdown'
    assert data['inCountdown'] is True
    assert data['context'] == 'gameStart'
    assert 0 < data['secondsRemaining'] <= 30
