"""
Unit Tests: Configuration

Tests:
    - Defaults and validation
    - Environment variable loading
    - Cross-section validation
"""

import os
from datetime import timedelta
from pathlib import Path

import pytest

from tierstore.core.config import (
    CursorConfig,
    ReliabilityConfig,
    TierStoreConfig,
    TieringConfig,
)
from tierstore.migration.engine import MigrationSettings
from tierstore.storage.config import (
    BackendType,
    PostgresConfig,
    RedisConfig,
    RedisMode,
    S3Config,
    StorageConfig,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(("TIERSTORE_", "REDIS_", "S3_", "PG_", "STORAGE_")):
            monkeypatch.delenv(name)
    return monkeypatch


class TestTieringConfig:
    """Tests for TieringConfig."""

    def test_defaults(self):
        config = TieringConfig()
        assert config.age_threshold == timedelta(days=90)
        assert config.age_threshold_nanos == 90 * 86_400 * 1_000_000_000
        assert config.lease_ttl_ms == 30_000

    @pytest.mark.parametrize("kwargs", [
        {"age_threshold": timedelta(0)},
        {"scan_page_size": 0},
        {"migration_parallelism": 0},
        {"migration_rate_limit": -1},
        {"job_id": ""},
        {"verify_timeout_s": 0},
        {"cycle_interval": timedelta(seconds=-1)},
        {"lease_ttl_s": 0.5},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            TieringConfig(**kwargs)


class TestReliabilityConfig:
    """Tests for ReliabilityConfig."""

    @pytest.mark.parametrize("kwargs", [
        {"retry_max_attempts": -1},
        {"retry_base_ms": 0},
        {"retry_base_ms": 500, "retry_max_delay_ms": 100},
        {"breaker_failure_threshold": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ReliabilityConfig(**kwargs)


class TestFromEnv:
    """Tests for TierStoreConfig.from_env."""

    def test_defaults(self, clean_env):
        config = TierStoreConfig.from_env().unwrap()
        assert config.tiering.age_threshold == timedelta(days=90)
        assert config.cursor.backend == "file"
        assert config.storage.hot_backend is BackendType.IN_MEMORY
        assert config.validate().is_ok()

    def test_overrides(self, clean_env):
        clean_env.setenv("TIERSTORE_AGE_THRESHOLD_DAYS", "30")
        clean_env.setenv("TIERSTORE_SCAN_PAGE_SIZE", "250")
        clean_env.setenv("TIERSTORE_JOB_ID", "nightly")
        clean_env.setenv("TIERSTORE_LOG_LEVEL", "debug")
        clean_env.setenv("TIERSTORE_LOG_JSON", "false")
        clean_env.setenv("TIERSTORE_LEASE_TTL_S", "45")
        clean_env.setenv("TIERSTORE_CURSOR_BACKEND", "memory")
        config = TierStoreConfig.from_env().unwrap()
        assert config.tiering.age_threshold == timedelta(days=30)
        assert config.tiering.scan_page_size == 250
        assert config.tiering.job_id == "nightly"
        assert config.observability.log_level == "DEBUG"
        assert config.observability.log_json is False
        assert config.cursor.backend == "memory"
        assert config.tiering.lease_ttl_ms == 45_000

    def test_production_backends(self, clean_env):
        clean_env.setenv("STORAGE_HOT_BACKEND", "redis")
        clean_env.setenv("STORAGE_COLD_BACKEND", "s3")
        clean_env.setenv("REDIS_HOST", "redis.internal")
        clean_env.setenv("REDIS_SENTINEL_HOSTS", "s1:26379,s2:26379")
        clean_env.setenv("REDIS_MODE", "sentinel")
        clean_env.setenv("S3_BUCKET", "archive-bucket")
        clean_env.setenv("TIERSTORE_CURSOR_BACKEND", "postgres")
        clean_env.setenv("PG_HOST", "pg.internal")
        config = TierStoreConfig.from_env().unwrap()
        redis = config.storage.redis_config
        assert redis.host == "redis.internal"
        assert redis.mode is RedisMode.SENTINEL
        assert redis.sentinel_hosts == (("s1", 26379), ("s2", 26379))
        assert config.storage.s3_config.bucket_name == "archive-bucket"
        assert config.cursor.postgres.host == "pg.internal"

    @pytest.mark.parametrize("name,value", [
        ("TIERSTORE_SCAN_PAGE_SIZE", "lots"),
        ("TIERSTORE_AGE_THRESHOLD_DAYS", "-5"),
        ("TIERSTORE_CURSOR_BACKEND", "etcd"),
        ("STORAGE_HOT_BACKEND", "memcached"),
        ("TIERSTORE_LEASE_TTL_S", "0.1"),
    ])
    def test_invalid_values_are_errors(self, clean_env, name, value):
        clean_env.setenv(name, value)
        result = TierStoreConfig.from_env()
        assert result.is_err()
        assert result.error.startswith("Configuration error")

    def test_s3_requires_bucket(self, clean_env):
        clean_env.setenv("STORAGE_COLD_BACKEND", "s3")
        assert TierStoreConfig.from_env().is_err()

    def test_validate_timeout_vs_interval(self):
        config = TierStoreConfig(
            tiering=TieringConfig(operation_timeout_s=10, cycle_interval=timedelta(seconds=5))
        )
        assert config.validate().is_err()


class TestBackendConfigs:
    """Tests for backend connection settings."""

    def test_redis_connection_kwargs(self):
        kwargs = RedisConfig(password="secret").get_connection_kwargs()
        assert kwargs["decode_responses"] is False
        assert kwargs["password"] == "secret"

    def test_redis_sentinel_needs_hosts(self):
        with pytest.raises(ValueError):
            RedisConfig(mode=RedisMode.SENTINEL)

    def test_s3_boto_config(self):
        config = S3Config(
            bucket_name="archive",
            endpoint_url="http://minio:9000",
            access_key_id="a",
            secret_access_key="b",
            verify_ssl=False,
        )
        boto = config.get_boto_config()
        assert boto["endpoint_url"] == "http://minio:9000"
        assert boto["aws_access_key_id"] == "a"
        assert boto["verify"] is False

    def test_s3_bucket_length(self):
        with pytest.raises(ValueError):
            S3Config(bucket_name="ab")

    def test_postgres_table_identifier(self):
        assert PostgresConfig().dsn.startswith("postgresql://tierstore:")
        with pytest.raises(ValueError):
            PostgresConfig(table="cursors; DROP TABLE x")

    def test_cursor_backend(self):
        assert CursorConfig(backend="memory").directory == Path("./data/cursors")
        with pytest.raises(ValueError):
            CursorConfig(backend="zookeeper")

    def test_development_storage(self):
        config = StorageConfig.for_development()
        assert config.cold_backend is BackendType.IN_MEMORY


class TestMigrationSettings:
    """Tests for MigrationSettings.from_config."""

    def test_from_config(self):
        config = TierStoreConfig(
            tiering=TieringConfig(scan_page_size=50, migration_parallelism=2, job_id="j")
        )
        settings = MigrationSettings.from_config(config)
        assert settings.page_size == 50
        assert settings.parallelism == 2
        assert settings.job_id == "j"
        assert settings.retry_policy.request_timeout_s == config.tiering.operation_timeout_s

    def test_invalid(self):
        with pytest.raises(ValueError):
            MigrationSettings(page_size=0)
