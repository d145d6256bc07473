import pytest

from carebell.config import Settings


def test_defaults_run_in_memory_with_log_transport():
    s = Settings(_env_file=None)
    assert s.STORE_BACKEND == "memory"
    assert s.NOTIFY_TRANSPORT == "log"
    assert s.MAX_FOLLOW_UP_MINUTES == 240


def test_backend_names_are_normalized_and_dsn_is_reused():
    s = Settings(_env_file=None, STORE_BACKEND=" SQL ", POSTGRES_DSN="postgresql+asyncpg://a:b@db/c")
    assert s.STORE_BACKEND == "sql"
    assert s.DATABASE_URL == "postgresql+asyncpg://a:b@db/c"


def test_inconsistent_settings_fail_fast():
    with pytest.raises(ValueError):
        Settings(_env_file=None, STORE_BACKEND="sql")
    with pytest.raises(ValueError):
        Settings(_env_file=None, NOTIFY_TRANSPORT="telegram", BOT_TOKEN="")
    with pytest.raises(ValueError):
        Settings(_env_file=None, MAX_FOLLOW_UP_MINUTES=0)
