"""
Provider gateway - thin wrapper over the ECS and STS APIs.

Translates domain operations (list clusters, describe services, scale,
redeploy, exec) into boto3 calls. No caching and no retries beyond the
botocore defaults; every API failure surfaces as a GatewayError.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Any, Iterator, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ecsview import config
from ecsview.models import (
    DeploymentStatus,
    ServiceRecord,
    TaskContainerRef,
    status_from_deployments,
)

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when a call against the orchestration API fails."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def batched(items: Sequence[str], size: int = config.DESCRIBE_BATCH_SIZE) -> Iterator[list[str]]:
    """Yield consecutive chunks of *items*, each at most *size* long."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def cluster_short_name(cluster: str) -> str:
    """Return the bare cluster name from an ARN (or the input unchanged)."""
    return cluster.rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class EcsGateway:
    """
    Domain operations over a single boto3 session.

    Args:
        session: Pre-built boto3 session (tests pass one with stubbed clients)
        profile: Named AWS profile used as the environment scope
        region: AWS region override
        metrics: Optional metrics source with ``service_metrics(cluster, name)``
    """

    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        metrics: Any = None,
    ) -> None:
        session_kwargs: dict[str, str] = {}
        if profile:
            session_kwargs["profile_name"] = profile
        if region:
            session_kwargs["region_name"] = region

        try:
            self._session = session or boto3.Session(**session_kwargs)
            self._ecs = self._session.client("ecs")
            self._sts = self._session.client("sts")
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Unable to create AWS clients: {e}") from e

        self.profile = profile
        self.region = region or self._session.region_name
        self.metrics = metrics

    @property
    def session(self) -> boto3.Session:
        return self._session

    # -- identity -----------------------------------------------------------

    def verify_identity(self) -> dict[str, str]:
        """Confirm credentials resolve to an AWS identity."""
        try:
            identity = self._sts.get_caller_identity()
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Unable to resolve AWS identity: {e}") from e
        logger.info(f"Authenticated as {identity.get('Arn')}")
        return {"account": identity.get("Account", ""), "arn": identity.get("Arn", "")}

    # -- listing ------------------------------------------------------------

    def _paginate(self, operation: str, key: str, **kwargs: Any) -> list[str]:
        items: list[str] = []
        try:
            paginator = self._ecs.get_paginator(operation)
            for page in paginator.paginate(**kwargs):
                items.extend(page.get(key, []))
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"{operation} failed: {e}") from e
        return items

    def list_clusters(self) -> list[str]:
        clusters = self._paginate("list_clusters", "clusterArns")
        logger.debug(f"Found {len(clusters)} clusters")
        return clusters

    def list_services(self, cluster: str) -> list[str]:
        return self._paginate("list_services", "serviceArns", cluster=cluster)

    def list_tasks(self, cluster: str, service: str) -> list[str]:
        return self._paginate(
            "list_tasks", "taskArns",
            cluster=cluster, serviceName=service, desiredStatus="RUNNING",
        )

    # -- describe -----------------------------------------------------------

    def describe_services(self, cluster: str, service_ids: Sequence[str]) -> list[ServiceRecord]:
        """
        Describe services in batches of at most DESCRIBE_BATCH_SIZE ids.

        Batches run sequentially and their results are concatenated in batch
        order. A failing batch is logged and skipped; the others still run.

        Args:
            cluster: Cluster ARN or name
            service_ids: Service ARNs or names in that cluster

        Returns:
            One ServiceRecord per described service, tagged with *cluster*
        """
        records: list[ServiceRecord] = []
        for batch in batched(service_ids):
            try:
                response = self._ecs.describe_services(cluster=cluster, services=batch)
            except (BotoCoreError, ClientError) as e:
                logger.warning(
                    f"Error describing {len(batch)} services in cluster {cluster}: {e}"
                )
                continue
            for failure in response.get("failures", []):
                logger.debug(f"describe_services failure in {cluster}: {failure}")
            for payload in response.get("services", []):
                records.append(self._enrich(ServiceRecord.from_api(cluster, payload)))
        return records

    def describe_service(self, cluster: str, service: str) -> ServiceRecord:
        """Describe a single service; raises GatewayError if it is missing."""
        payload = self._describe_one(cluster, service)
        if payload is None:
            raise GatewayError(f"Service {service} not found in cluster {cluster}")
        return self._enrich(ServiceRecord.from_api(cluster, payload))

    def deployment_status(self, cluster: str, service: str) -> str:
        """Mapped status of the primary deployment, "Unknown" if the service is missing."""
        payload = self._describe_one(cluster, service)
        if payload is None:
            return DeploymentStatus.UNKNOWN
        return status_from_deployments(payload.get("deployments") or [])

    def _describe_one(self, cluster: str, service: str) -> Optional[dict[str, Any]]:
        try:
            response = self._ecs.describe_services(cluster=cluster, services=[service])
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Error describing service {service}: {e}") from e
        services = response.get("services", [])
        return services[0] if services else None

    def _enrich(self, record: ServiceRecord) -> ServiceRecord:
        """Attach CPU/memory utilization; any metrics failure zeroes both."""
        if self.metrics is None:
            return record
        try:
            cpu, memory = self.metrics.service_metrics(record.cluster, record.name)
        except Exception as e:
            logger.debug(f"Metrics unavailable for {record.name}: {e}")
            cpu, memory = 0.0, 0.0
        return record.model_copy(update={"cpu_utilization": cpu, "memory_utilization": memory})

    # -- mutations ----------------------------------------------------------

    def update_desired_count(self, cluster: str, service: str, count: int) -> None:
        if count < 0:
            raise GatewayError(f"Desired count must be non-negative, got {count}")
        try:
            self._ecs.update_service(cluster=cluster, service=service, desiredCount=count)
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(
                f"Failed to update service {service} in cluster {cluster}: {e}"
            ) from e
        logger.info(f"Set desired count of {service} to {count}")

    def force_redeploy(self, cluster: str, service: str) -> None:
        try:
            self._ecs.update_service(cluster=cluster, service=service, forceNewDeployment=True)
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Failed to restart service {service}: {e}") from e
        logger.info(f"Forced new deployment of {service}")

    # -- tasks & exec -------------------------------------------------------

    def describe_task_containers(self, cluster: str, task: str) -> list[str]:
        try:
            response = self._ecs.describe_tasks(cluster=cluster, tasks=[task])
        except (BotoCoreError, ClientError) as e:
            raise GatewayError(f"Error describing task {task}: {e}") from e
        names: list[str] = []
        for described in response.get("tasks", []):
            names.extend(c["name"] for c in described.get("containers", []) if c.get("name"))
        return names

    def find_shell_target(self, cluster: str, service: str) -> TaskContainerRef:
        """Pick the first container of the first running task of *service*."""
        tasks = self.list_tasks(cluster, service)
        if not tasks:
            raise GatewayError(f"No running tasks found for service {service}")
        containers = self.describe_task_containers(cluster, tasks[0])
        if not containers:
            raise GatewayError(f"No containers found in task {tasks[0]}")
        return TaskContainerRef(cluster=cluster, task=tasks[0], container=containers[0])

    def exec_command_args(
        self,
        ref: TaskContainerRef,
        command: str = config.DEFAULT_SHELL_COMMAND,
    ) -> list[str]:
        args = [
            config.AWS_CLI, "ecs", "execute-command",
            "--cluster", ref.cluster,
            "--task", ref.task,
            "--container", ref.container,
            "--interactive",
            "--command", command,
        ]
        if self.profile:
            args += ["--profile", self.profile]
        if self.region:
            args += ["--region", self.region]
        return args

    def exec_interactive_shell(
        self,
        ref: TaskContainerRef,
        command: str = config.DEFAULT_SHELL_COMMAND,
    ) -> int:
        """
        Attach the current terminal to a shell inside *ref*'s container.

        Blocks until the remote session ends. The caller must release the
        terminal (e.g. suspend its UI) before calling.

        Returns:
            Exit code of the execute-command session

        Raises:
            GatewayError: If the AWS CLI is not installed
        """
        if shutil.which(config.AWS_CLI) is None:
            raise GatewayError(
                f"'{config.AWS_CLI}' not found on PATH; the AWS CLI and the "
                "Session Manager plugin are required to open a shell"
            )
        args = self.exec_command_args(ref, command)
        logger.info(f"Opening shell in {ref.container} ({ref.task})")
        completed = subprocess.run(args, check=False)
        return completed.returncode

