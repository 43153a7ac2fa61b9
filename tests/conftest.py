import datetime

import pytest

import uptools
from profile_engine import ProfileRecord

NOW = datetime.datetime(2026, 10, 18, 12, 0, 0, tzinfo=datetime.timezone.utc)


def make_profile(name, loaded=False, days_unused=0, sid=None, special=False):
    """Profile of C:\\Users\\<name>, last used days_unused days before NOW."""
    return ProfileRecord(path="C:\\Users\\" + name,
                         sid=sid or "S-1-5-21-1004336348-1177238915-682003330-%d" % (1000 + len(name)),
                         loaded=loaded,
                         last_use_time=None if loaded else NOW - datetime.timedelta(days=days_unused),
                         special=special)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config(tmp_path):
    return uptools.merge_config(uptools.DEFAULT_CONFIG, {
        'dirs': {'log_dir': str(tmp_path / "log")},
        'powershell': {'executable': 'powershell', 'timeout': 5},
    })


@pytest.fixture
def upt(config):
    return uptools.UPTools("test_uptools", config=config)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configup.yaml"
    path.write_text(
        "dirs:\n"
        "  log_dir: {}\n"
        "loglevel:\n"
        "  screen: debug\n"
        "  file: debug\n".format(tmp_path / "log")
    )
    monkeypatch.setenv(uptools.CONFIG_ENV, str(path))
    return path
