"""Shared Pydantic models for ecsview.

The gateway, aggregator and presenter all import from here so that
ServiceRecord and Snapshot have a single definition.  Every model is frozen:
a changed service is represented by a new record inside a new snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Deployment status strings
# ---------------------------------------------------------------------------

class DeploymentStatus:
    """Display strings for a service's primary deployment."""
    STABLE = "Stable"
    FAILED = "Deployment Failed"
    UNKNOWN = "Unknown"
    DEPLOYING = "Deploying ({running}/{desired})"


def map_deployment_status(
    rollout_state: Optional[str],
    running: int,
    desired: int,
    raw_status: str,
) -> str:
    """
    Map a deployment's rollout state to a display string.

    - IN_PROGRESS -> "Deploying (running/desired)"
    - COMPLETED with running == desired -> "Stable"
    - FAILED -> "Deployment Failed"
    - anything else (including COMPLETED with running != desired) -> raw_status
    """
    if rollout_state == "IN_PROGRESS":
        return DeploymentStatus.DEPLOYING.format(running=running, desired=desired)
    if rollout_state == "COMPLETED" and running == desired:
        return DeploymentStatus.STABLE
    if rollout_state == "FAILED":
        return DeploymentStatus.FAILED
    return raw_status


def status_from_deployments(deployments: Sequence[dict[str, Any]]) -> str:
    """Apply map_deployment_status to the first deployment, or "Unknown"."""
    if not deployments:
        return DeploymentStatus.UNKNOWN
    deployment = deployments[0]
    return map_deployment_status(
        deployment.get("rolloutState"),
        int(deployment.get("runningCount", 0) or 0),
        int(deployment.get("desiredCount", 0) or 0),
        deployment.get("status", ""),
    )


# ---------------------------------------------------------------------------
# ServiceRecord - one per ECS service
# ---------------------------------------------------------------------------

class ServiceRecord(BaseModel):
    """Point-in-time state of a single ECS service."""
    model_config = ConfigDict(frozen=True)

    cluster: str = Field(..., description="Owning cluster ARN or name")
    name: str = Field(..., description="Service name, unique within the cluster")
    running_count: int = Field(default=0, ge=0)
    desired_count: int = Field(default=0, ge=0)
    pending_count: int = Field(default=0, ge=0)
    status: str = Field(default="", description="Provider status, e.g. ACTIVE | DRAINING | INACTIVE")
    deployment_status: str = DeploymentStatus.UNKNOWN
    cpu_utilization: float = Field(default=0.0, ge=0.0)
    memory_utilization: float = Field(default=0.0, ge=0.0)

    @property
    def key(self) -> tuple[str, str]:
        return (self.cluster, self.name)

    @classmethod
    def from_api(cls, cluster: str, payload: dict[str, Any]) -> "ServiceRecord":
        """Build a record from one entry of a ``describe_services`` response."""
        running = int(payload.get("runningCount", 0) or 0)
        desired = int(payload.get("desiredCount", 0) or 0)
        return cls(
            cluster=cluster,
            name=payload.get("serviceName", ""),
            running_count=running,
            desired_count=desired,
            pending_count=int(payload.get("pendingCount", 0) or 0),
            status=payload.get("status", ""),
            deployment_status=status_from_deployments(payload.get("deployments") or []),
        )


# ---------------------------------------------------------------------------
# Snapshot - immutable collection published by the aggregator
# ---------------------------------------------------------------------------

class Snapshot(BaseModel):
    """All known services at one point in time."""
    model_config = ConfigDict(frozen=True)

    services: tuple[ServiceRecord, ...] = ()
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.services)

    def get(self, cluster: str, name: str) -> Optional[ServiceRecord]:
        for record in self.services:
            if record.key == (cluster, name):
                return record
        return None

    def replace(self, record: ServiceRecord) -> "Snapshot":
        """Return a new snapshot with the record sharing *record*'s key substituted.

        The original snapshot is left untouched.  If no record matches, the
        snapshot is returned unchanged.
        """
        services = tuple(
            record if existing.key == record.key else existing
            for existing in self.services
        )
        return Snapshot(services=services, fetched_at=self.fetched_at)


# ---------------------------------------------------------------------------
# Shell target & mutation reports
# ---------------------------------------------------------------------------

class TaskContainerRef(BaseModel):
    """A container inside a running task, used as an exec target."""
    model_config = ConfigDict(frozen=True)

    cluster: str
    task: str
    container: str


class RestartReport(BaseModel):
    """Outcome of a restart-all fan-out."""
    model_config = ConfigDict(frozen=True)

    attempted: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed
