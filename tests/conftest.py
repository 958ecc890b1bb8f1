import pytest

import app as server
from engines.data_loader import connect, seed_demo_data
from engines.settings import get_settings


@pytest.fixture
def demo_conn():
    conn = connect(':memory:')
    seed_demo_data(conn)
    yield conn
    conn.close()


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv('DATABASE_PATH', str(tmp_path / 'optisys.db'))
    monkeypatch.setenv('COST_CONSTANTS_PATH', str(tmp_path / 'cost_constants.xlsx'))
    monkeypatch.setenv('SEED_DEMO_DATA', 'true')
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    get_settings.cache_clear()
    server.STATE.update(constants=None, scenarios=[], loaded=False, _load_error=None)
    yield server.app.test_client()
    get_settings.cache_clear()
