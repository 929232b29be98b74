from unittest.mock import patch

import pytest

from jobengine.config.settings import Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Job Engine"
    assert settings.version == "1.0.0"
    assert settings.job_default_max_attempts == 5
    assert settings.job_lease_duration_s == 60
    assert settings.job_concurrency == 1
    assert settings.job_backoff_enabled is True
    assert settings.job_types == []


def test_renew_interval_must_be_shorter_than_lease():
    """Leases would lapse between renewals otherwise."""
    with pytest.raises(ValueError, match="JOB_LEASE_RENEW_INTERVAL_S"):
        Settings(job_lease_duration_s=30, job_lease_renew_interval_s=30)


def test_renew_interval_zero_disables_check():
    settings = Settings(job_lease_duration_s=5, job_lease_renew_interval_s=0)
    assert settings.job_lease_renew_interval_s == 0


def test_production_blocks_default_tenant():
    """Test that production environment requires explicit tenants."""
    with pytest.raises(ValueError, match="DEFAULT_TENANT_ID is not allowed"):
        Settings(environment="production", default_tenant_id="dev-tenant")


def test_development_allows_default_tenant():
    settings = Settings(environment="development", default_tenant_id="dev-tenant")
    assert settings.default_tenant_id == "dev-tenant"


def test_is_sqlite():
    assert Settings(database_url="sqlite+aiosqlite:///jobs.db").is_sqlite is True
    assert (
        Settings(database_url="postgresql+asyncpg://u:p@db/jobs").is_sqlite is False
    )


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Job Engine"


@patch.dict(
    "os.environ",
    {"JOB_LEASE_DURATION_S": "120", "JOB_TYPES": '["license_pdf"]'},
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings()
    assert settings.job_lease_duration_s == 120
    assert settings.job_types == ["license_pdf"]
