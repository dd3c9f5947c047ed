"""
ECS/ECR fixtures on top of mocked_aws: a cluster, a service running the
template task definition, and an ECR repository with pushed versions.
"""
import json

import boto3
import pytest

from tests.consts import (
    TEST_CLUSTER_NAME,
    TEST_CONTAINER_NAME,
    TEST_INITIAL_IMAGE,
    TEST_PREVIOUS_VERSION,
    TEST_REGION,
    TEST_REPOSITORY,
    TEST_SERVICE_NAME,
    TEST_TASK_FAMILY,
)


def template_task_definition():
    return {
        "family": TEST_TASK_FAMILY,
        "networkMode": "bridge",
        "requiresCompatibilities": ["EC2"],
        "containerDefinitions": [
            {
                "name": TEST_CONTAINER_NAME,
                "image": TEST_INITIAL_IMAGE,
                "memory": 512,
                "essential": True,
                "portMappings": [{"containerPort": 8080, "hostPort": 80, "protocol": "tcp"}],
                "environment": [
                    {"name": "DB_HOST", "value": "bia-db.internal"},
                    {"name": "DEPLOY_VERSION", "value": TEST_PREVIOUS_VERSION},
                    {"name": "DB_PORT", "value": "5432"},
                ],
            }
        ],
    }


def push_image(ecr_client, tag: str):
    """Register a tagged image without docker."""
    manifest = {
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {"digest": f"sha256:{tag:0<64}"[:71], "size": 100,
                   "mediaType": "application/vnd.docker.container.image.v1+json"},
        "layers": [],
    }
    ecr_client.put_image(
        repositoryName=TEST_REPOSITORY,
        imageManifest=json.dumps(manifest),
        imageTag=tag,
    )


@pytest.fixture
def ecs_client(mocked_aws):
    return boto3.client("ecs", region_name=TEST_REGION)


@pytest.fixture
def ecr_client(mocked_aws):
    return boto3.client("ecr", region_name=TEST_REGION)


@pytest.fixture
def task_definition(ecs_client):
    """Revision 1 of the family, the template for every release."""
    response = ecs_client.register_task_definition(**template_task_definition())
    return response["taskDefinition"]


@pytest.fixture
def ecs_service(ecs_client, task_definition):
    """Service with no desired tasks so it is stable right away."""
    ecs_client.create_cluster(clusterName=TEST_CLUSTER_NAME)
    response = ecs_client.create_service(
        cluster=TEST_CLUSTER_NAME,
        serviceName=TEST_SERVICE_NAME,
        taskDefinition=task_definition["taskDefinitionArn"],
        desiredCount=0,
    )
    return response["service"]


@pytest.fixture
def ecr_repository(ecr_client):
    ecr_client.create_repository(repositoryName=TEST_REPOSITORY)
    push_image(ecr_client, TEST_PREVIOUS_VERSION)
    return TEST_REPOSITORY
