import json
import logging
import sys
from datetime import datetime
from decimal import Decimal

import pytest

from config.logger import JSONFormatter, configure_logging
from config.settings import Settings


@pytest.mark.parametrize('url, expected', [
    ('postgresql://user:pw@db:5432/rates', 'postgresql+asyncpg://user:pw@db:5432/rates'),
    ('postgres://user:pw@db/rates', 'postgresql+asyncpg://user:pw@db/rates'),
    ('postgresql+asyncpg://user:pw@db/rates', 'postgresql+asyncpg://user:pw@db/rates'),
    ('sqlite+aiosqlite:///./rates.db', 'sqlite+aiosqlite:///./rates.db'),
])
def test_database_url_uses_async_driver(url, expected):
    assert Settings(DATABASE_URL=url).DATABASE_URL == expected


def test_pair_is_uppercased():
    settings = Settings(COIN='eth', FIAT='eur')

    assert settings.COIN == 'ETH'
    assert settings.FIAT == 'EUR'


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv('REFRESH_INTERVAL_SECONDS', '15')
    monkeypatch.setenv('coinapi_api_key', 'secret')

    settings = Settings()

    assert settings.REFRESH_INTERVAL_SECONDS == 15
    assert settings.COINAPI_API_KEY == 'secret'


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_writes_json_file(tmp_path, restore_root_logger):
    configure_logging('DEBUG', str(tmp_path / 'logs'))

    logging.getLogger('rates.test').info('stored %s', 'BTC/USD')
    for handler in restore_root_logger.handlers:
        handler.flush()

    line = (tmp_path / 'logs' / 'rates.log').read_text(encoding='utf-8').strip().splitlines()[-1]
    entry = json.loads(line)
    assert entry['level'] == 'INFO'
    assert entry['logger'] == 'rates.test'
    assert entry['message'] == 'stored BTC/USD'
    assert restore_root_logger.level == logging.DEBUG


def test_json_formatter_includes_exception():
    try:
        raise ValueError(Decimal('1.5'))
    except ValueError:
        exc_info = sys.exc_info()

    record = logging.LogRecord(
        'rates.test', logging.ERROR, __file__, 1, 'failed at %s', (datetime(2024, 3, 1),), exc_info
    )
    entry = json.loads(JSONFormatter().format(record))

    assert entry['message'] == 'failed at 2024-03-01 00:00:00'
    assert entry['exception']['type'] == 'ValueError'
    assert entry['exception']['message'] == '1.5'
