"""
Shared fixtures for ecsview tests.

Fake boto3 clients wired into a real EcsGateway; no AWS account required.
"""

from unittest.mock import MagicMock

import pytest

from ecsview.gateway import EcsGateway
from ecsview.tests.fakes import service_payload


@pytest.fixture
def ecs_client() -> MagicMock:
    """ECS client whose describe_services echoes every requested service."""
    client = MagicMock()
    client.describe_services.side_effect = lambda cluster, services: {
        "services": [service_payload(s) for s in services],
        "failures": [],
    }
    return client


@pytest.fixture
def sts_client() -> MagicMock:
    client = MagicMock()
    client.get_caller_identity.return_value = {
        "Account": "123456789012",
        "Arn": "arn:aws:iam::123456789012:user/dev",
    }
    return client


@pytest.fixture
def gateway(ecs_client: MagicMock, sts_client: MagicMock) -> EcsGateway:
    session = MagicMock()
    session.region_name = "eu-west-1"
    session.client.side_effect = lambda name: {"ecs": ecs_client, "sts": sts_client}[name]
    return EcsGateway(session=session)
