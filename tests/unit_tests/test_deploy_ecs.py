import subprocess

import pytest

from bia_deploy import image_builder
from bia_deploy.aws import deploy_ecs
from bia_deploy.aws.deploy_ecs import ECSDeployment
from bia_deploy.aws.deployment_state import LastBuildMarker, ReleaseState
from bia_deploy.aws.utils import AWSClientManager
from bia_deploy.aws.ecs_task_definitions import render_task_definition
from bia_deploy.exceptions import (
    ConvergenceError,
    ConvergenceTimeout,
    MissingBuildError,
    OperationCancelled,
    PreconditionError,
    UpdateRejected,
    VersionNotFound,
)
from tests.consts import TEST_PREVIOUS_VERSION, TEST_REGISTRY, TEST_VERSION
from tests.fixtures.aws_fixtures import push_image, template_task_definition


class FakeGitDocker:
    """Answers git queries for one commit; docker/npm runs succeed."""

    def __init__(self, version=TEST_VERSION, dirty=False):
        self.version = version
        self.dirty = dirty
        self.runs = []

    def query(self, command, cwd=None):
        args = command[1:]
        if args[:2] == ["rev-parse", "--git-dir"]:
            out = ".git"
        elif args[0] == "rev-parse":
            out = self.version
        elif args[0] == "log":
            out = "Add health check\x00Bia Dev\x002024-05-01 10:00:00 +0000"
        elif args[0] == "status":
            out = " M app.js" if self.dirty else ""
        else:
            raise AssertionError(f"unexpected query {command}")
        return subprocess.CompletedProcess(command, 0, out + "\n", "")

    def run(self, command, cwd=None, env=None, input=None):
        self.runs.append(command)
        return subprocess.CompletedProcess(command, 0, "", "")


@pytest.fixture(autouse=True)
def tools_installed(monkeypatch):
    monkeypatch.setattr(image_builder, "require_tool", lambda tool: f"/usr/bin/{tool}")
    monkeypatch.setattr(deploy_ecs, "require_tool", lambda tool: f"/usr/bin/{tool}")


@pytest.fixture
def runner():
    return FakeGitDocker()


@pytest.fixture
def deployment(mocked_aws, settings, runner, ecs_service, ecr_repository):
    return ECSDeployment(settings, clients=AWSClientManager(settings), runner=runner)


def current_container(ecs_client, settings):
    service = ecs_client.describe_services(
        cluster=settings.cluster_name, services=[settings.service_name]
    )["services"][0]
    task_definition = ecs_client.describe_task_definition(
        taskDefinition=service["taskDefinition"]
    )["taskDefinition"]
    return task_definition, task_definition["containerDefinitions"][0]


def test_deploy_scenario(deployment, runner, settings, ecs_client, ecr_client):
    attempt = deployment.deploy()
    push_image(ecr_client, TEST_VERSION)  # what docker push would have done

    assert attempt.state == ReleaseState.STABLE
    expected_image = f"{TEST_REGISTRY}/bia:{TEST_VERSION}"
    assert ["docker", "push", expected_image] in runner.runs

    task_definition, container = current_container(ecs_client, settings)
    assert task_definition["taskDefinitionArn"] == attempt.task_definition_arn
    assert container["image"] == expected_image
    assert {"name": "DEPLOY_VERSION", "value": TEST_VERSION} in container["environment"]

    assert LastBuildMarker(settings.last_build_path).read() == TEST_VERSION
    assert deployment.recent_deploys()[0].version == TEST_VERSION
    assert TEST_VERSION in [image.tag for image in deployment.list_versions()]


def test_rollback_unknown_version_changes_nothing(deployment, settings, ecs_client, ecs_service):
    with pytest.raises(VersionNotFound):
        deployment.rollback("deadbee")

    revisions = ecs_client.list_task_definitions(familyPrefix=settings.task_family)["taskDefinitionArns"]
    assert len(revisions) == 1
    task_definition, _ = current_container(ecs_client, settings)
    assert task_definition["taskDefinitionArn"] == ecs_service["taskDefinition"]
    assert deployment.recent_deploys() == []


def test_rollback_to_previous_version(deployment, settings, ecs_client):
    deployment.deploy()
    attempt = deployment.rollback(TEST_PREVIOUS_VERSION)

    assert attempt.state == ReleaseState.STABLE
    _, container = current_container(ecs_client, settings)
    assert container["image"].endswith(f":{TEST_PREVIOUS_VERSION}")
    assert [r.action for r in deployment.recent_deploys()] == ["rollback", "deploy"]


def test_rollback_to_active_version_keeps_revision(deployment, settings, ecs_client, ecr_client):
    first = deployment.deploy()
    push_image(ecr_client, TEST_VERSION)

    second = deployment.rollback(TEST_VERSION)

    assert second.task_definition_arn == first.task_definition_arn
    revisions = ecs_client.list_task_definitions(familyPrefix=settings.task_family)["taskDefinitionArns"]
    assert len(revisions) == 2


def test_update_twice_uses_same_revision(deployment):
    deployment.build()
    first = deployment.update()
    second = deployment.update()
    assert first.task_definition_arn == second.task_definition_arn


def test_update_without_build(deployment):
    with pytest.raises(MissingBuildError):
        deployment.update()


def test_declined_confirmation_cancels(mocked_aws, settings, ecs_service, ecr_repository):
    settings = settings.with_overrides(assume_yes=False)
    deployment = ECSDeployment(settings, runner=FakeGitDocker(dirty=True), confirm=lambda message: False)

    with pytest.raises(OperationCancelled):
        deployment.deploy()
    assert LastBuildMarker(settings.last_build_path).read() is None


def test_dry_run_deploy_mutates_nothing(mocked_aws, settings, ecs_client, ecs_service, ecr_repository):
    settings = settings.with_overrides(dry_run=True)
    runner = FakeGitDocker()
    deployment = ECSDeployment(settings, runner=runner)

    attempt = deployment.deploy()

    assert attempt.state == ReleaseState.SPECIFICATION_GENERATED
    revisions = ecs_client.list_task_definitions(familyPrefix=settings.task_family)["taskDefinitionArns"]
    assert len(revisions) == 1
    assert LastBuildMarker(settings.last_build_path).read() is None
    assert deployment.recent_deploys() == []


def test_rollback_to_running_version_ignores_newer_revision(deployment, settings, ecs_client, ecs_service):
    # a release that registered revision 2 and then failed to converge
    stray = render_task_definition(
        template_task_definition(), f"{TEST_REGISTRY}/bia:{TEST_VERSION}", TEST_VERSION, "bia"
    )
    ecs_client.register_task_definition(**stray)

    attempt = deployment.rollback(TEST_PREVIOUS_VERSION)

    assert attempt.task_definition_arn == ecs_service["taskDefinition"]
    task_definition, _ = current_container(ecs_client, settings)
    assert task_definition["taskDefinitionArn"] == ecs_service["taskDefinition"]
    revisions = ecs_client.list_task_definitions(familyPrefix=settings.task_family)["taskDefinitionArns"]
    assert len(revisions) == 2


def fail_with(error):
    def fail(*args, **kwargs):
        raise error
    return fail


def test_rejected_update_ends_rejected(deployment, monkeypatch):
    deployment.build()
    monkeypatch.setattr(deployment.updater, "update", fail_with(UpdateRejected("service is draining")))

    with pytest.raises(UpdateRejected):
        deployment.update()

    assert deployment.last_attempt.history == [
        ReleaseState.IDLE, ReleaseState.SPECIFICATION_GENERATED, ReleaseState.REJECTED,
    ]
    assert deployment.last_attempt.error_message == "service is draining"
    assert deployment.recent_deploys() == []


def test_convergence_timeout_ends_timed_out(deployment, monkeypatch):
    deployment.build()
    monkeypatch.setattr(deployment.updater, "wait_until_stable",
                        fail_with(ConvergenceTimeout("did not stabilize in time")))

    with pytest.raises(ConvergenceTimeout):
        deployment.update(timeout=30)

    assert deployment.last_attempt.state == ReleaseState.TIMED_OUT
    assert deployment.last_attempt.history[-2] == ReleaseState.CONVERGENCE_REQUESTED
    assert deployment.recent_deploys() == []


def test_convergence_failure_ends_rejected(deployment, monkeypatch):
    deployment.build()
    monkeypatch.setattr(deployment.updater, "wait_until_stable",
                        fail_with(ConvergenceError("service became INACTIVE")))

    with pytest.raises(ConvergenceError):
        deployment.update()

    assert deployment.last_attempt.state == ReleaseState.REJECTED
    assert deployment.recent_deploys() == []


def test_push_uses_last_build_marker(deployment, runner, settings):
    LastBuildMarker(settings.last_build_path).write(TEST_PREVIOUS_VERSION)

    image = deployment.push()

    assert image.tag == TEST_PREVIOUS_VERSION
    assert ["docker", "push", f"{TEST_REGISTRY}/bia:{TEST_PREVIOUS_VERSION}"] in runner.runs


def test_push_without_marker_uses_current_commit(deployment, runner):
    image = deployment.push()

    assert image.tag == TEST_VERSION
    assert ["docker", "push", f"{TEST_REGISTRY}/bia:{TEST_VERSION}"] in runner.runs


def test_rollback_without_credentials(no_aws_credentials, settings):
    deployment = ECSDeployment(settings, runner=FakeGitDocker())
    with pytest.raises(PreconditionError):
        deployment.rollback(TEST_PREVIOUS_VERSION)
