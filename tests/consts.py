TEST_REGION = "us-east-1"
TEST_ACCOUNT_ID = "123456789012"
TEST_CLUSTER_NAME = "cluster-bia"
TEST_SERVICE_NAME = "service-bia"
TEST_TASK_FAMILY = "task-def-bia"
TEST_CONTAINER_NAME = "bia"
TEST_REPOSITORY = "bia"
TEST_REGISTRY = f"{TEST_ACCOUNT_ID}.dkr.ecr.{TEST_REGION}.amazonaws.com"
TEST_VERSION = "9891703"
TEST_PREVIOUS_VERSION = "a1b2c3d"
TEST_INITIAL_IMAGE = f"{TEST_REGISTRY}/{TEST_REPOSITORY}:{TEST_PREVIOUS_VERSION}"
