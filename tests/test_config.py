"""Tests for settings loading."""

import pytest

from config.lib.load_settings_conf import (
    load_settings_conf,
    validate_settings,
    SettingsError,
    DEFAULTS
)

def test_defaults_without_settings_file(tmp_path):
    """Missing settings.conf falls back to the defaults."""
    settings = load_settings_conf(str(tmp_path), environ={})

    assert settings == DEFAULTS

def test_settings_file_and_environment(tmp_path):
    """The environment wins over settings.conf, which wins over the defaults."""
    (tmp_path / 'settings.conf').write_text(
        "[DEFAULT]\n"
        "api_port = 9000\n"
        "log_level = debug\n"
        "cors_origins = https://a.example, https://b.example\n"
    )

    settings = load_settings_conf(str(tmp_path), environ={'MARKET_API_PORT': '9100'})

    assert settings['api_port'] == '9100'
    assert settings['log_level'] == 'debug'
    assert settings['jwt_algorithm'] == DEFAULTS['jwt_algorithm']

def test_empty_db_url_is_missing(tmp_path):
    with pytest.raises(SettingsError) as exc:
        load_settings_conf(str(tmp_path), environ={'MARKET_DB_URL': ''})
    assert 'db_url' in str(exc.value)

def test_validate_settings_converts_values():
    settings = validate_settings(dict(
        DEFAULTS,
        log_level='warning',
        smtp_use_tls='no',
        cors_origins='https://a.example, ,https://b.example'
    ))

    assert settings['api_port'] == 8000
    assert settings['auction_sweep_interval'] == 60
    assert settings['log_level'] == 'WARNING'
    assert settings['smtp_use_tls'] is False
    assert settings['cors_origins'] == ['https://a.example', 'https://b.example']

def test_validate_settings_generates_secret():
    """An empty jwt_secret is replaced by a random one."""
    first = validate_settings(dict(DEFAULTS))
    second = validate_settings(dict(DEFAULTS))

    assert first['jwt_secret']
    assert first['jwt_secret'] != second['jwt_secret']

@pytest.mark.parametrize("key,value", [
    ('api_port', 'eighty'),
    ('api_port', '70000'),
    ('token_expiry_minutes', '0'),
    ('auction_sweep_interval', '0'),
    ('log_level', 'LOUD')
])
def test_validate_settings_rejects_invalid_values(key, value):
    with pytest.raises(SettingsError):
        validate_settings(dict(DEFAULTS, **{key: value}))
