"""Tests for the backup pipeline."""

import json
import os

from n8n_manager.pipelines import BackupPipeline
from n8n_manager.pipelines.backup import unique_filename_stem
from n8n_manager.reconcile.manifest import MAPPING_FILENAME

ALPHA_ID = "AAAAAAAAAAAAAAAA"
BETA_ID = "BBBBBBBBBBBBBBBB"
GAMMA_ID = "CCCCCCCCCCCCCCCC"


def seed(server):
    server.projects.append({"id": "team1", "name": "Marketing", "type": "team"})
    server.folders["f1"] = {"id": "f1", "name": "Clients", "parentFolderId": None, "projectId": "proj-personal"}
    server.folders["f2"] = {"id": "f2", "name": "Acme Corp", "parentFolderId": "f1", "projectId": "proj-personal"}
    server.import_workflow({"id": ALPHA_ID, "name": "Alpha"})
    server.workflows[ALPHA_ID]["parentFolderId"] = "f2"
    server.import_workflow({"id": BETA_ID, "name": "Beta"})
    server.import_workflow({"id": GAMMA_ID, "name": "Gamma"})
    server.workflows[GAMMA_ID]["homeProject"] = {"id": "team1"}


def files_below(root):
    found = []
    for dirpath, _, filenames in os.walk(str(root)):
        for filename in filenames:
            found.append(os.path.relpath(os.path.join(dirpath, filename), str(root)).replace(os.sep, "/"))
    return sorted(found)


def run_backup(client, runner, make_config, root, **config):
    return BackupPipeline(client, make_config(**config), runner).backup(backup_dir=str(root))


def test_backup_mirrors_projects_and_folders(server, client, runner, make_config, tmp_path):
    """Files are laid out by project and folder, next to the folder mapping."""
    seed(server)
    result = run_backup(client, runner, make_config, tmp_path / "backup")

    assert files_below(tmp_path / "backup") == [
        MAPPING_FILENAME,
        "Marketing/Gamma.json",
        "Personal/Beta.json",
        "Personal/Clients/Acme_Corp/Alpha.json",
    ]
    assert result.details["new"] == 3
    assert result.success

    with open(str(tmp_path / "backup" / MAPPING_FILENAME)) as f:
        mapping = json.load(f)
    alpha = mapping["workflowsById"][ALPHA_ID]
    assert alpha["relativePath"] == "Personal/Clients/Acme_Corp"
    assert alpha["displayPath"] == "Personal/Clients/Acme Corp"
    assert alpha["folders"] == [{"name": "Clients", "slug": "Clients"}, {"name": "Acme Corp", "slug": "Acme_Corp"}]
    assert mapping["workflowsById"][GAMMA_ID]["project"] == {"id": "team1", "name": "Marketing", "slug": "Marketing"}
    assert [item["name"] for item in mapping["workflows"]] == ["Alpha", "Beta", "Gamma"]


def test_second_backup_reports_unchanged(server, client, runner, make_config, tmp_path):
    """Re-running without remote changes rewrites nothing."""
    seed(server)
    run_backup(client, runner, make_config, tmp_path / "backup")

    result = run_backup(client, runner, make_config, tmp_path / "backup")

    assert (result.details["new"], result.details["updated"], result.details["unchanged"]) == (0, 0, 3)


def test_changed_moved_and_deleted_workflows(server, client, runner, make_config, tmp_path):
    """Edits update files, moves relocate them and deletions remove them."""
    seed(server)
    root = tmp_path / "backup"
    run_backup(client, runner, make_config, root)

    server.workflows[BETA_ID]["nodes"] = [{"type": "n8n-nodes-base.start"}]
    server.workflows[GAMMA_ID]["homeProject"] = {"id": "proj-personal"}
    del server.workflows[ALPHA_ID]

    result = run_backup(client, runner, make_config, root)

    assert files_below(root) == [MAPPING_FILENAME, "Personal/Beta.json", "Personal/Gamma.json"]
    assert result.details["updated"] == 2
    assert result.details["deleted"] == 1
    assert result.details["removed_directories"] == 3


def test_name_collisions_get_suffixes(server, client, runner, make_config, tmp_path):
    """Same-named workflows in one folder get numbered filenames, stable across runs."""
    server.import_workflow({"name": "Same"})
    server.import_workflow({"name": "Same"})
    root = tmp_path / "backup"

    run_backup(client, runner, make_config, root)
    first = files_below(root)
    run_backup(client, runner, make_config, root)

    assert first == [MAPPING_FILENAME, "Personal/Same (2).json", "Personal/Same.json"]
    assert files_below(root) == first


def test_flat_layout(server, client, runner, make_config, tmp_path):
    """Without folder structure every workflow lands in the root."""
    seed(server)
    run_backup(client, runner, make_config, tmp_path / "backup", folder_structure=False)
    assert files_below(tmp_path / "backup") == [MAPPING_FILENAME, "Alpha.json", "Beta.json", "Gamma.json"]


def test_credentials_backup(server, client, runner, make_config, tmp_path, caplog):
    """Credentials go to the credentials folder, with a warning when decrypted."""
    result = run_backup(
        client, runner, make_config, tmp_path / "backup",
        workflows="disabled", credentials="local", credentials_encrypted=False,
    )

    path = tmp_path / "backup" / ".credentials" / "credentials.json"
    assert result.details["credentials_file"] == str(path)
    with open(str(path)) as f:
        assert json.load(f)[0]["decrypted"] is True
    assert "decrypted" in caplog.text


def test_nothing_enabled(client, runner, make_config, tmp_path):
    """With both storage modes disabled the backup is a no-op."""
    result = run_backup(client, runner, make_config, tmp_path / "backup", workflows=0, credentials=0)
    assert "nothing to back up" in result.message


def test_unique_filename_stem():
    """Suffixes start at two and respect the length limit."""
    assert unique_filename_stem("Flow", set()) == "Flow"
    assert unique_filename_stem("Flow", {"flow"}) == "Flow (2)"
    assert unique_filename_stem("Flow", {"flow", "flow (2)"}) == "Flow (3)"
    long_stem = "x" * 152
    assert len(unique_filename_stem(long_stem, {long_stem})) == 152
