# cli.py
import logging
import sys
from typing import Optional

import click

from bia_deploy.aws.deploy_ecs import ECSDeployment
from bia_deploy.exceptions import DeployError, OperationCancelled
from bia_deploy.settings import DeploySettings, get_settings
from bia_deploy.utils.console import setup_logging

logger = logging.getLogger(__name__)


class DeployContext:
    """Settings resolved from global options, shared by every command."""

    def __init__(self, settings: DeploySettings):
        self.settings = settings
        self._deployment: Optional[ECSDeployment] = None

    @property
    def deployment(self) -> ECSDeployment:
        if self._deployment is None:
            confirm = None if self.settings.assume_yes else _confirm
            self._deployment = ECSDeployment(self.settings, confirm=confirm)
        return self._deployment


pass_context = click.make_pass_decorator(DeployContext)


def _confirm(message: str) -> bool:
    return click.confirm(message, default=False)


def run_step(step, *args, **kwargs):
    """Run a workflow step, mapping deploy errors to exit status."""
    try:
        return step(*args, **kwargs)
    except OperationCancelled as e:
        logger.info(str(e))
        sys.exit(0)
    except DeployError as e:
        logger.error(str(e))
        sys.exit(1)


@click.group()
@click.option('--region', '-r', help='AWS region')
@click.option('--cluster', '-c', help='ECS cluster name')
@click.option('--service', '-s', help='ECS service name')
@click.option('--task-family', '-t', help='Task definition family')
@click.option('--ecr-repo', '-e', help='ECR repository name or URI')
@click.option('--container-name', '-n', help='Primary container name')
@click.option('--dry-run', is_flag=True, help='Log mutating steps without executing them')
@click.option('--yes', '-y', 'assume_yes', is_flag=True, help='Skip confirmations')
@click.option('--verbose', is_flag=True, help='Debug logging')
@click.pass_context
def cli(ctx, region, cluster, service, task_family, ecr_repo, container_name,
        dry_run, assume_yes, verbose):
    """Build, deploy and roll back versions of the BIA application on ECS."""
    try:
        settings = get_settings().with_overrides(
            aws_region=region,
            cluster_name=cluster,
            service_name=service,
            task_family=task_family,
            ecr_repository=ecr_repo,
            container_name=container_name,
            dry_run=dry_run or None,
            assume_yes=assume_yes or None,
            log_level='DEBUG' if verbose else None,
        )
    except ValueError as e:
        raise click.UsageError(str(e))

    setup_logging(settings.log_level)
    if settings.dry_run:
        logger.warning("Dry run: mutating steps are only logged")
    ctx.obj = DeployContext(settings)


@cli.command()
@pass_context
def build(ctx: DeployContext):
    """Build the image for the current commit"""
    deployment = ctx.deployment
    run_step(deployment.check_prerequisites)
    run_step(deployment.build)


@cli.command()
@pass_context
def push(ctx: DeployContext):
    """Push the last built image to ECR"""
    deployment = ctx.deployment
    run_step(deployment.check_prerequisites)
    run_step(deployment.push)


@cli.command()
@click.option('--force-new-deployment', is_flag=True,
              help='Restart tasks on the current task definition')
@click.option('--timeout', type=click.IntRange(min=1), help='Seconds to wait for a stable service')
@pass_context
def update(ctx: DeployContext, force_new_deployment: bool, timeout: Optional[int]):
    """Release the last built version to the service"""
    run_step(ctx.deployment.update, timeout, force_new_deployment)


@cli.command()
@click.option('--timeout', type=click.IntRange(min=1), help='Seconds to wait for a stable service')
@pass_context
def deploy(ctx: DeployContext, timeout: Optional[int]):
    """Build, push and release the current commit"""
    run_step(ctx.deployment.deploy, timeout)


@cli.command()
@click.argument('version', required=False)
@click.option('--version', '-v', 'version_option', help='Version to roll back to')
@click.option('--timeout', type=click.IntRange(min=1), help='Seconds to wait for a stable service')
@pass_context
def rollback(ctx: DeployContext, version: Optional[str], version_option: Optional[str],
             timeout: Optional[int]):
    """Roll the service back to a previously pushed VERSION"""
    version = version or version_option
    if not version:
        raise click.UsageError("Specify the version for rollback (see 'list')")
    run_step(ctx.deployment.rollback, version, timeout)


@cli.command(name='list')
@click.option('--limit', type=click.IntRange(min=1), help='Number of versions to show')
@pass_context
def list_versions(ctx: DeployContext, limit: Optional[int]):
    """List the most recent versions in ECR"""
    images = run_step(ctx.deployment.list_versions, limit)
    if not images:
        click.echo("No versions found")
        return

    click.echo(f"{'VERSION':<12} {'PUSHED AT':<26} {'SIZE (MB)':>10}")
    for image in images:
        pushed_at = image.pushed_at.strftime('%Y-%m-%d %H:%M:%S %Z') if image.pushed_at else '-'
        click.echo(f"{image.tag:<12} {pushed_at:<26} {image.size_mb:>10.1f}")


@cli.command()
@click.option('--limit', type=click.IntRange(min=1), help='Number of records to show')
@pass_context
def history(ctx: DeployContext, limit: Optional[int]):
    """Show the local deploy history, newest first"""
    records = ctx.deployment.recent_deploys(limit)
    if not records:
        click.echo("No deploys recorded")
        return
    for record in records:
        click.echo(f"{record.deployed_at}  {record.action:<8} {record.version:<12} {record.task_definition_arn}")


@cli.command()
@pass_context
def show_config(ctx: DeployContext):
    """Show current configuration"""
    click.echo("Current Configuration:")
    for name, value in ctx.settings.describe().items():
        click.echo(f"  {name}: {value}")


@cli.command(name='help')
@click.pass_context
def help_command(ctx):
    """Show this message"""
    click.echo(ctx.parent.get_help())


def main():
    cli()


if __name__ == "__main__":
    main()
