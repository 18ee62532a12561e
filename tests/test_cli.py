"""Tests for the command line interface."""

import json
import signal
import threading
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from conftest import client_error
from cloudplane.cli.main import cancel_on_interrupt, cli, create_engine
from cloudplane.config.parser import Config
from cloudplane.engine import (
    DriftItem,
    DriftType,
    ExecutionResult,
    ExecutionStatus,
    LifecycleEngine,
    ResourceExecutionResult,
)
from cloudplane.resources.base import ChangeType, ProvisionPlan, Resource
from cloudplane.utils.errors import ProvisioningError, WaitCancelledError, WaitTimeoutError

CONFIG = """
provider:
  region: us-west-2
  timeouts:
    AWS::KMS::ReplicaKey:
      delete: 900

resources:
  - id: latency
    type: AWS::NetworkMonitor::Monitor
    properties:
      MonitorName: latency

data:
  - id: s3
    type: AWS::EC2::PrefixList
    properties:
      Name: com.amazonaws.us-west-2.s3
"""

MONITOR = Resource(id="latency", type="AWS::NetworkMonitor::Monitor", physical_id="latency",
                   properties={"MonitorName": "latency"})


@pytest.fixture(autouse=True)
def setup_logging():
    with patch("cloudplane.cli.main.setup_logging") as mock:
        yield mock


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "cloudplane.yaml"
    path.write_text(CONFIG)
    return str(path)


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.plan.return_value = [ProvisionPlan(resource=MONITOR, change_type=ChangeType.CREATE, current_state=None)]
    engine.apply.return_value = ExecutionResult(results=[
        ResourceExecutionResult("latency", ChangeType.CREATE, ExecutionStatus.SUCCESS, resource=MONITOR),
    ])
    with patch("cloudplane.cli.main.create_engine", return_value=engine):
        yield engine


@pytest.fixture
def run(config_path, tmp_path):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(
            cli,
            ["--config", config_path, "--state", str(tmp_path / "state.json"), *args],
            obj={},
            **kwargs
        )
    return invoke


class TestPlan:
    def test_plan_prints_summary(self, run, engine):
        result = run("plan")

        assert result.exit_code == 0
        assert "latency" in result.output
        assert "Plan: 1 to create, 0 to update, 0 to replace, 0 to delete." in result.output
        engine.apply.assert_not_called()

    def test_missing_config(self, tmp_path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "plan"], obj={})

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("provider:\n  region: us-west-2\nresources:\n  - id: x\n    type: AWS::EC2::Vpc\n")

        result = CliRunner().invoke(cli, ["--config", str(path), "plan"], obj={})

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output
        assert "Unsupported resource type" in result.output

    def test_provider_error_exits(self, run, engine):
        engine.plan.side_effect = WaitTimeoutError("timeout while waiting for state to become 'ACTIVE'")

        result = run("plan")

        assert result.exit_code == 1
        assert "timeout while waiting" in result.output

    def test_aws_error_is_mapped(self, run, engine):
        engine.plan.side_effect = client_error("AccessDeniedException", "not allowed", "ListMonitors")

        result = run("plan")

        assert result.exit_code == 1
        assert "Access denied" in result.output

    def test_log_level_passed_through(self, config_path, setup_logging, engine):
        CliRunner().invoke(cli, ["--log-level", "debug", "--config", config_path, "plan"], obj={})
        setup_logging.assert_called_once_with("debug")


class TestApply:
    def test_auto_approve(self, run, engine):
        result = run("apply", "--auto-approve")

        assert result.exit_code == 0
        engine.apply.assert_called_once_with(engine.plan.return_value)
        assert "Apply successful" in result.output

    def test_declined(self, run, engine):
        result = run("apply", input="n\n")

        assert result.exit_code == 0
        assert "Apply cancelled" in result.output
        engine.apply.assert_not_called()

    def test_confirmed(self, run, engine):
        result = run("apply", input="y\n")

        assert result.exit_code == 0
        engine.apply.assert_called_once()

    def test_nothing_to_do(self, run, engine):
        engine.plan.return_value = [
            ProvisionPlan(resource=MONITOR, change_type=ChangeType.NO_CHANGE, current_state=MONITOR),
        ]

        result = run("apply", "--auto-approve")

        assert "No changes. Infrastructure is up-to-date." in result.output
        engine.apply.assert_not_called()

    def test_failed_resource_exits(self, run, engine):
        engine.apply.return_value = ExecutionResult(results=[
            ResourceExecutionResult("latency", ChangeType.CREATE, ExecutionStatus.FAILED,
                                    error=ProvisioningError("creating Network Monitor [latency]")),
        ])

        result = run("apply", "--auto-approve")

        assert result.exit_code == 1
        assert "Failed Resources" in result.output
        assert "creating Network Monitor [latency]" in result.output

    def test_cancelled_resource_exits(self, run, engine):
        engine.apply.return_value = ExecutionResult(results=[
            ResourceExecutionResult("latency", ChangeType.CREATE, ExecutionStatus.CANCELLED,
                                    error=WaitCancelledError("waiting for Network Monitor (latency): cancelled")),
        ])

        result = run("apply", "--auto-approve")

        assert result.exit_code == 1
        assert "Apply interrupted" in result.output
        assert "Cancelled: 1" in result.output
        assert "Cancelled Resources" in result.output
        assert "Failed Resources" not in result.output

    def test_interrupt_during_apply_cancels_engine(self, run, engine):
        engine.cancel_event = threading.Event()

        def interrupted_apply(plans):
            signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
            return ExecutionResult()

        engine.apply.side_effect = interrupted_apply

        result = run("apply", "--auto-approve")

        assert engine.cancel_event.is_set()
        assert "Cancelling after the current operation" in result.output

    def test_timeout_for_operation_without_wait(self, run, engine, config_path):
        text = CONFIG.replace("AWS::KMS::ReplicaKey:\n      delete: 900",
                              "AWS::SSOAdmin::ApplicationAssignment:\n      create: 60")
        with open(config_path, "w") as f:
            f.write(text)

        result = run("apply", "--auto-approve")

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output
        engine.plan.assert_not_called()


class TestCancelOnInterrupt:
    def test_first_interrupt_sets_event(self):
        event = threading.Event()
        previous = signal.getsignal(signal.SIGINT)

        with cancel_on_interrupt(event):
            handler = signal.getsignal(signal.SIGINT)
            handler(signal.SIGINT, None)
            assert event.is_set()
            with pytest.raises(KeyboardInterrupt):
                handler(signal.SIGINT, None)

        assert signal.getsignal(signal.SIGINT) is previous

    def test_handler_restored_after_error(self):
        previous = signal.getsignal(signal.SIGINT)

        with pytest.raises(RuntimeError):
            with cancel_on_interrupt(threading.Event()):
                raise RuntimeError("boom")

        assert signal.getsignal(signal.SIGINT) is previous


class TestDestroy:
    def test_destroy_all(self, run, engine):
        engine.state.list_resources.return_value = [MONITOR]
        engine.destroy.return_value = ExecutionResult()

        result = run("destroy", "-y")

        assert result.exit_code == 0
        engine.destroy.assert_called_once_with(None)
        assert "Destroy successful" in result.output

    def test_destroy_selected(self, run, engine):
        engine.destroy.return_value = ExecutionResult()

        run("destroy", "latency", "--yes")

        engine.destroy.assert_called_once_with(["latency"])

    def test_nothing_managed(self, run, engine):
        engine.state.list_resources.return_value = []

        result = run("destroy", "-y")

        assert "No managed resources to destroy" in result.output
        engine.destroy.assert_not_called()


class TestOtherCommands:
    def test_import(self, run, engine):
        engine.import_resource.return_value = MONITOR

        result = run("import", "AWS::NetworkMonitor::Monitor", "latency", "--as", "latency")

        assert result.exit_code == 0
        engine.import_resource.assert_called_once_with("AWS::NetworkMonitor::Monitor", "latency", "latency")
        assert "Imported" in result.output

    def test_refresh(self, run, engine):
        engine.refresh.return_value = [MONITOR]

        result = run("refresh")

        assert "Refreshed 1 resource(s)" in result.output

    def test_drift_exit_code(self, run, engine):
        engine.detect_drift.return_value = [
            DriftItem("latency", "AWS::NetworkMonitor::Monitor", DriftType.MODIFIED,
                      ["AggregationPeriod: expected 60, actual 30"]),
        ]

        result = run("drift", "--exit-code")

        assert result.exit_code == 2
        assert "latency" in result.output

    def test_no_drift(self, run, engine):
        engine.detect_drift.return_value = []

        result = run("drift", "--exit-code")

        assert result.exit_code == 0
        assert "No drift detected" in result.output

    def test_data_json(self, run, engine):
        engine.read_data.return_value = {
            "s3": Resource(id="s3", type="AWS::EC2::PrefixList", physical_id="pl-63a5400a",
                           properties={"PrefixListId": "pl-63a5400a", "CidrBlocks": ["52.92.16.0/20"]}),
        }

        result = run("data", "--json")

        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "s3": {"PrefixListId": "pl-63a5400a", "CidrBlocks": ["52.92.16.0/20"]},
        }


class TestCreateEngine:
    def test_wires_handlers_and_overrides(self, config_path, tmp_path):
        cfg = Config(config_path).load()
        ctx = MagicMock()
        ctx.obj = {"region": "eu-west-1", "profile": None, "state_path": str(tmp_path / "state.json")}

        engine = create_engine(ctx, cfg)

        assert isinstance(engine, LifecycleEngine)
        assert engine.region == "eu-west-1"
        assert set(engine.handlers) == {
            "AWS::NetworkMonitor::Monitor",
            "AWS::KMS::ReplicaKey",
            "AWS::SSOAdmin::ApplicationAssignment",
        }
        assert engine.handlers["AWS::KMS::ReplicaKey"].timeouts.delete == 900
        assert "AWS::EC2::PrefixList" in engine.data_sources
