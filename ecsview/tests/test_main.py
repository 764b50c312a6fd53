"""
Tests for main.py - CLI surface and fatal startup errors.
"""

from unittest.mock import MagicMock

from typer.testing import CliRunner

from ecsview import __version__, main
from ecsview.gateway import GatewayError

runner = CliRunner()


def test_version_command():
    result = runner.invoke(main.app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_identity_failure_is_fatal(monkeypatch):
    """Test that startup exits non-zero when credentials do not resolve."""
    gateway = MagicMock()
    gateway.verify_identity.side_effect = GatewayError("no credentials")
    monkeypatch.setattr(main, "EcsGateway", lambda **kwargs: gateway)
    monkeypatch.setattr(main, "_setup_logging", lambda verbose, log_file: None)
    launched = MagicMock()
    monkeypatch.setattr(main, "EcsViewApp", launched)

    result = runner.invoke(main.app, ["--no-metrics"])

    assert result.exit_code == 1
    assert "no credentials" in result.output
    launched.assert_not_called()


def test_initial_fetch_failure_is_fatal(monkeypatch):
    gateway = MagicMock()
    gateway.verify_identity.return_value = {"account": "1", "arn": "arn:aws:iam::1:user/dev"}
    gateway.list_clusters.side_effect = GatewayError("list_clusters failed")
    monkeypatch.setattr(main, "EcsGateway", lambda **kwargs: gateway)
    monkeypatch.setattr(main, "_setup_logging", lambda verbose, log_file: None)
    launched = MagicMock()
    monkeypatch.setattr(main, "EcsViewApp", launched)

    result = runner.invoke(main.app, ["--no-metrics"])

    assert result.exit_code == 1
    launched.assert_not_called()


def test_launches_ui_with_initial_snapshot(monkeypatch):
    gateway = MagicMock()
    gateway.verify_identity.return_value = {"account": "1", "arn": "arn:aws:iam::1:user/dev"}
    gateway.list_clusters.return_value = ["c1"]
    gateway.list_services.return_value = ["api"]
    gateway.describe_services.return_value = []
    monkeypatch.setattr(main, "EcsGateway", lambda **kwargs: gateway)
    monkeypatch.setattr(main, "_setup_logging", lambda verbose, log_file: None)
    launched = MagicMock()
    monkeypatch.setattr(main, "EcsViewApp", launched)

    result = runner.invoke(main.app, ["--no-metrics", "--interval", "5"])

    assert result.exit_code == 0, result.output
    launched.assert_called_once()
    assert launched.call_args.kwargs["interval"] == 5
    launched.return_value.run.assert_called_once()
