import pytest
from moto import mock_aws

from bia_deploy.settings import DeploySettings, get_settings
from tests.consts import (
    TEST_CLUSTER_NAME,
    TEST_CONTAINER_NAME,
    TEST_REGION,
    TEST_REPOSITORY,
    TEST_SERVICE_NAME,
    TEST_TASK_FAMILY,
)

pytest_plugins = ["tests.fixtures.aws_fixtures"]


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture
def settings(tmp_path) -> DeploySettings:
    return DeploySettings(
        aws_region=TEST_REGION,
        cluster_name=TEST_CLUSTER_NAME,
        service_name=TEST_SERVICE_NAME,
        task_family=TEST_TASK_FAMILY,
        container_name=TEST_CONTAINER_NAME,
        ecr_repository=TEST_REPOSITORY,
        build_context=str(tmp_path),
        state_dir=str(tmp_path / "state"),
        frontend_dir=None,
        waiter_delay=1,
        convergence_timeout=5,
        assume_yes=True,
    )


@pytest.fixture
def no_aws_credentials(aws_credentials, monkeypatch, tmp_path):
    """Nothing botocore could resolve credentials from."""
    for name in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SECURITY_TOKEN",
                 "AWS_SESSION_TOKEN", "AWS_WEB_IDENTITY_TOKEN_FILE",
                 "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI", "AWS_CONTAINER_CREDENTIALS_FULL_URI"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "missing-credentials"))
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "missing-config"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
