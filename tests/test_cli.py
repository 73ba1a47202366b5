"""
CLI tests
"""
import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from reminder_flows.cli import cli


EXAMPLE_FLOW = Path(__file__).parent.parent / "examples" / "reminder_flow.yaml"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env(tmp_path):
    return {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path}/cli.db",
        "REMINDER_WORKER_ID": "cli-test",
        "LOG_LEVEL": "WARNING",
    }


@pytest.fixture
def flow_file(tmp_path, follow_up_document):
    path = tmp_path / "flow.json"
    path.write_text(json.dumps(follow_up_document))
    return path


def test_validate_example_flow(runner):
    result = runner.invoke(cli, ["validate", str(EXAMPLE_FLOW)])

    assert result.exit_code == 0
    assert "is valid: 7 steps, 7 connections" in result.output


def test_validate_invalid_flow(runner, tmp_path, follow_up_document):
    follow_up_document["connections"] = []
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(follow_up_document))

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Invalid flow" in result.output


def test_load_trigger_and_list(runner, env, flow_file):
    result = runner.invoke(cli, ["load", str(flow_file)], env=env)
    assert result.exit_code == 0, result.output
    assert "version 1" in result.output

    result = runner.invoke(
        cli, ["trigger", "application_created", "loan-42", "--payload", '{"source": "cli"}'], env=env
    )
    assert result.exit_code == 0, result.output
    assert "flow=flow-follow-up" in result.output
    assert "step=wait_3d" in result.output

    result = runner.invoke(cli, ["trigger", "application_created", "loan-42"], env=env)
    assert "No executions created" in result.output

    result = runner.invoke(cli, ["executions", "--entity-id", "loan-42"], env=env)
    assert result.exit_code == 0, result.output
    assert "active" in result.output
    assert "wait_3d" in result.output


def test_load_again_creates_new_version(runner, env, flow_file):
    runner.invoke(cli, ["load", str(flow_file)], env=env)

    result = runner.invoke(cli, ["load", str(flow_file)], env=env)

    assert "version 2" in result.output


def test_trigger_rejects_bad_payload(runner, env):
    result = runner.invoke(cli, ["trigger", "manual", "loan-1", "--payload", "{nope"], env=env)

    assert result.exit_code != 0
    assert "payload is not valid JSON" in result.output


def test_worker_once(runner, env):
    result = runner.invoke(cli, ["worker", "--once"], env=env)

    assert result.exit_code == 0, result.output
    assert "Advanced 0 executions" in result.output


def test_executions_empty(runner, env):
    result = runner.invoke(cli, ["executions"], env=env)

    assert "No executions found" in result.output
