import logging

import pytest


@pytest.fixture(autouse=True)
def _quiet_logs(caplog):
    caplog.set_level(logging.DEBUG)


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at an empty temp dir and clear MANGA_* variables"""
    import os
    for name in list(os.environ):
        if name.startswith('MANGA_'):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    settings_file = tmp_path / 'settings.json'
    monkeypatch.setenv('MANGA_SETTINGS_FILE', str(settings_file))
    return settings_file
