import json
from pathlib import Path

import pytest

from tcpspeed.config import Config, load_config
from tcpspeed.transfer.protocol import MB


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('TCPSPEED_HOST', 'TCPSPEED_CONNECTIONS', 'TCPSPEED_COUNT',
                 'TCPSPEED_UPLOAD_BYTES', 'TCPSPEED_LOG_LEVEL', 'TCPSPEED_LOG_FILE'):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = Config()
    assert config.upload_bytes == 40 * MB
    assert config.download_bytes == 128 * MB
    assert config.runs_for('ping') == 3
    assert config.runs_for('upload') == 1
    assert config.bytes_for('upload') == 40 * MB
    assert config.bytes_for('download') == 128 * MB


def test_explicit_count_wins():
    config = Config(count=5)
    assert config.runs_for('ping') == 5


def test_from_file_round_trip(tmp_path):
    path = tmp_path / 'config.json'
    Config(host='example.net:8080', connections=4, log_file=Path('run.log')).save(path)

    loaded = Config.from_file(path)
    assert loaded.host == 'example.net:8080'
    assert loaded.connections == 4
    assert loaded.log_file == Path('run.log')


def test_from_file_ignores_unknown_keys(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'host': 'a:1', 'colour': 'blue'}))
    assert Config.from_file(path).host == 'a:1'


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / 'nope.json') == Config()


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'host': 'file:1', 'count': 2}))
    monkeypatch.setenv('TCPSPEED_HOST', 'env:2')
    monkeypatch.setenv('TCPSPEED_CONNECTIONS', '8')

    config = load_config(path)
    assert config.host == 'env:2'
    assert config.connections == 8
    assert config.count == 2
