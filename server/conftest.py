import os
import tempfile

# keep test runs from writing logs and data next to the code
_scratch = tempfile.mkdtemp(prefix='prof-tests-')
os.environ.setdefault('PROF_DATA_DIR', os.path.join(_scratch, 'data'))
os.environ.setdefault('PROF_LOG_FILE', os.path.join(_scratch, 'server.log'))

import pytest

from jsondb import JsonStore


def make_user(store, email, name=None, balance=None):
    user = {'name': name or email.split('@')[0], 'email': email}
    if balance is not None:
        user['profcoinBalance'] = balance
    store.save_user(user)
    return user


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / 'data')


@pytest.fixture
def server_module(store, monkeypatch):
    import flask_server
    monkeypatch.setattr(flask_server, 'store', store)
    return flask_server


@pytest.fixture
def client(server_module):
    server_module.app.config['TESTING'] = True
    return server_module.app.test_client()
