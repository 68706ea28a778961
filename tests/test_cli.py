"""
Tests for the command-line interface.
"""

import json

import pytest
from click.testing import CliRunner

from awsreaper import token
from awsreaper.cli import main
from awsreaper.token import JobType


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("REAPER_TOKEN_SECRET", raising=False)
    monkeypatch.delenv("REAPER_CONFIG", raising=False)
    return CliRunner()


class TestTokenCommands:
    """Test token make and token verify."""

    def test_make_and_verify(self, runner):
        made = runner.invoke(main, ["token", "make", "delay", "us-east-1", "i-1",
                                    "--duration", "72h", "--secret", "s3cret"])
        assert made.exit_code == 0, made.output

        text = made.output.strip()
        assert token.untokenize("s3cret", text).action is JobType.DELAY

        verified = runner.invoke(main, ["token", "verify", text, "--secret", "s3cret"])
        assert verified.exit_code == 0, verified.output
        data = json.loads(verified.output)
        assert data["action"] == "delay"
        assert data["id"] == "i-1"
        assert data["params"] == {"duration": "72h"}

    def test_secret_from_env(self, runner):
        result = runner.invoke(main, ["token", "make", "terminate", "us-east-1", "i-1"],
                               env={"REAPER_TOKEN_SECRET": "from-env"})

        assert result.exit_code == 0, result.output
        assert token.untokenize("from-env", result.output.strip()).id == "i-1"

    def test_delay_needs_duration(self, runner):
        result = runner.invoke(main, ["token", "make", "delay", "us-east-1", "i-1", "--secret", "s3cret"])
        assert result.exit_code == 2

    def test_schedule_needs_both_expressions(self, runner):
        result = runner.invoke(main, ["token", "make", "schedule", "us-east-1", "asg-1",
                                      "--scale-down", "0 18 * * *", "--secret", "s3cret"])
        assert result.exit_code == 2

    def test_verify_rejects_wrong_secret(self, runner):
        text = token.tokenize("s3cret", token.new_terminate_job("us-east-1", "i-1"))

        result = runner.invoke(main, ["token", "verify", text, "--secret", "other"])

        assert result.exit_code == 1


class TestStateShow:
    """Test state show."""

    def test_show(self, runner, tmp_path):
        path = tmp_path / "reaper.state"
        path.write_text("us-east-1,i-1,FIRST|1700000000|1700003600\nnot a line\n\n")

        result = runner.invoke(main, ["state", "show", str(path)])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert "us-east-1\ti-1\tFIRST\t2023-11-14T22:13:20+00:00\t2023-11-14T23:13:20+00:00" in lines
        assert any(line.startswith("line 2:") for line in lines)
