"""AWS side of the deploy workflow: ECR images, ECS task definitions and services."""
