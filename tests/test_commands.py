"""Tests for the n8n CLI runner, with subprocess mocked out."""

import subprocess
from unittest import mock

import pytest

from n8n_manager.commands import N8NCommandRunner
from n8n_manager.exceptions import N8NCommandError


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@mock.patch("n8n_manager.commands.subprocess.run")
def test_local_export(run):
    """A local runner calls the n8n binary directly."""
    run.return_value = completed(stdout="ok")
    N8NCommandRunner().export_workflows("/tmp/out.json")
    assert run.call_args[0][0] == ["n8n", "export:workflow", "--all", "--output=/tmp/out.json"]


@mock.patch("n8n_manager.commands.subprocess.run")
def test_container_export_copies_and_cleans_up(run):
    """Container exports go through a temp file that is removed afterwards."""
    run.return_value = completed()
    N8NCommandRunner(container="n8n").export_workflows("/tmp/out.json")

    commands = [call[0][0] for call in run.call_args_list]
    assert commands[0][:4] == ["docker", "exec", "n8n", "n8n"]
    remote = commands[0][-1].split("=", 1)[1]
    assert commands[1] == ["docker", "cp", f"n8n:{remote}", "/tmp/out.json"]
    assert commands[2] == ["docker", "exec", "n8n", "rm", "-rf", remote]


@mock.patch("n8n_manager.commands.subprocess.run")
def test_cleanup_runs_after_failure(run):
    """The container temp path is removed even when the copy fails."""
    run.side_effect = [completed(), completed(returncode=1, stderr="no such file"), completed()]
    with pytest.raises(N8NCommandError) as info:
        N8NCommandRunner(container="n8n").export_credentials("/tmp/creds.json", decrypted=True)
    assert info.value.returncode == 1
    assert "--decrypted" in run.call_args_list[0][0][0]
    assert run.call_args_list[-1][0][0][3:5] == ["rm", "-rf"]


@mock.patch("n8n_manager.commands.subprocess.run")
def test_directory_import_uses_separate(run, tmp_path):
    """Importing a directory passes --separate."""
    run.return_value = completed(stdout="Successfully imported 2 workflows.")
    output = N8NCommandRunner().import_workflows(str(tmp_path))
    assert "--separate" in run.call_args[0][0]
    assert output.startswith("Successfully")


@mock.patch("n8n_manager.commands.subprocess.run")
def test_dry_run_skips_imports(run, tmp_path):
    """Mutating commands are only logged in a dry run."""
    runner = N8NCommandRunner(dry_run=True)
    assert runner.import_workflows(str(tmp_path)) == ""
    assert N8NCommandRunner(container="n8n", dry_run=True).import_credentials(str(tmp_path)) == ""
    run.assert_not_called()


@mock.patch("n8n_manager.commands.subprocess.run")
def test_reachability(run):
    """A missing binary or a failing version check means unreachable."""
    run.side_effect = FileNotFoundError("n8n")
    assert not N8NCommandRunner().is_reachable()

    run.side_effect = None
    run.return_value = completed(stdout="1.90.0")
    assert N8NCommandRunner().is_reachable()
