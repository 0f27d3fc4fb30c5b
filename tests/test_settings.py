import socket
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from workqueue.config.settings import Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "workqueue"
    assert settings.version == "1.0.0"
    assert settings.job_default_priority == 0
    assert settings.job_max_run_time_s == 4 * 3600
    assert settings.job_read_ahead == 5
    assert settings.job_sleep_delay_s == 5.0
    assert settings.job_delay_jobs is True


def test_worker_host_falls_back_to_hostname():
    assert Settings(job_worker_host=None).worker_host == socket.gethostname()
    assert Settings(job_worker_host="db-1").worker_host == "db-1"


def test_job_settings_are_validated():
    with pytest.raises(ValidationError):
        Settings(job_max_run_time_s=0)

    with pytest.raises(ValidationError):
        Settings(job_read_ahead=0)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "workqueue"


@patch.dict(
    "os.environ",
    {"JOB_DELAY_JOBS": "false", "JOB_MAX_RUN_TIME_S": "60", "ENVIRONMENT": "production"},
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings()
    assert settings.job_delay_jobs is False
    assert settings.job_max_run_time_s == 60
    assert settings.environment == "production"
