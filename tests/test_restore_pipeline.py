"""End-to-end restore tests against the in-memory n8n."""

import glob
import json
import os

import pytest

from fakes import FakeClient, FakeN8NServer, FakeRunner, write_workflow
from n8n_manager.exceptions import N8NCommandError, N8NValidationError
from n8n_manager.pipelines import BackupPipeline, RestorePipeline

ALPHA_ID = "AAAAAAAAAAAAAAAA"


def write_backup(root):
    write_workflow(root, "Personal/Clients/Acme/alpha.json", "Alpha", workflow_id=ALPHA_ID)
    write_workflow(root, "Personal/beta.json", "Beta")
    write_workflow(root, "Personal/Other/gamma.json", "Gamma", workflow_id="wf-legacy-1")


def restore(client, make_config, runner, source, **config):
    return RestorePipeline(client, make_config(**config), runner).restore(source_dir=str(source))


def test_restore_places_workflows_in_their_folders(server, client, runner, make_config, tmp_path):
    """Workflows end up in the folder chain their files were in."""
    write_backup(tmp_path / "backup")

    result = restore(client, make_config, runner, tmp_path / "backup")

    ids = server.ids_by_name()
    assert ids["Alpha"] == [ALPHA_ID]
    assert server.folder_chain(ALPHA_ID) == ["Clients", "Acme"]
    assert server.folder_chain(ids["Gamma"][0]) == ["Other"]
    assert server.folder_chain(ids["Beta"][0]) == []
    assert result.details["created"] == 3
    assert result.details["folders_created"] == 3
    assert result.details["unchanged"] == 0
    assert result.details["snapshot_source"] == "api"
    assert result.success


def test_restore_twice_is_idempotent(server, client, runner, make_config, tmp_path):
    """A second restore of the same backup creates nothing and moves nothing."""
    write_backup(tmp_path / "backup")
    restore(client, make_config, runner, tmp_path / "backup")
    workflows_before = sorted(server.workflows)
    folders_before = sorted(server.folders)
    assigns_before = len(server.assign_calls)

    result = restore(client, make_config, runner, tmp_path / "backup")

    assert sorted(server.workflows) == workflows_before
    assert sorted(server.folders) == folders_before
    assert len(server.assign_calls) == assigns_before
    assert result.details["created"] == 0
    assert result.details["updated"] == 3
    assert result.details["unchanged"] == 3
    assert result.details["folders_created"] == 0
    assert result.details["unresolved"] == 0
    assert all(len(ids) == 1 for ids in server.ids_by_name().values())


def test_invalid_ids_get_fresh_ones(server, client, runner, make_config, tmp_path):
    """A legacy id is dropped and the workflow imports under a new one."""
    write_backup(tmp_path / "backup")

    result = restore(client, make_config, runner, tmp_path / "backup")

    gamma_id = server.ids_by_name()["Gamma"][0]
    assert gamma_id != "wf-legacy-1"
    entry = next(item for item in result.resources["workflows"].values() if item["name"] == "Gamma")
    assert entry["sanitizedIdNote"] == "sanitized-invalid-format"
    assert entry["actualImportedId"] == gamma_id


def test_same_id_in_two_folders_yields_two_workflows(server, client, runner, make_config, tmp_path):
    """Two files sharing an id across folders both survive the restore."""
    root = tmp_path / "backup"
    write_workflow(root, "Personal/A/one.json", "One", workflow_id=ALPHA_ID)
    write_workflow(root, "Personal/B/two.json", "Two", workflow_id=ALPHA_ID)

    restore(client, make_config, runner, root)

    ids = server.ids_by_name()
    assert ids["One"] == [ALPHA_ID]
    assert ids["Two"] != [ALPHA_ID]
    assert server.folder_chain(ids["Two"][0]) == ["B"]


def test_new_workflow_reusing_an_id_does_not_overwrite(server, client, runner, make_config, tmp_path):
    """A new file that carries an existing workflow's id is imported as new."""
    root = tmp_path / "backup"
    write_workflow(root, "Personal/Clients/alpha.json", "Alpha", workflow_id=ALPHA_ID)
    restore(client, make_config, runner, root)

    write_workflow(root, "Personal/Clients/y.json", "Y", workflow_id=ALPHA_ID)
    result = restore(client, make_config, runner, root)

    ids = server.ids_by_name()
    assert ids["Alpha"] == [ALPHA_ID]
    assert len(ids["Y"]) == 1 and ids["Y"][0] != ALPHA_ID
    assert server.folder_chain(ids["Y"][0]) == ["Clients"]
    assert result.details["created"] == 1


def test_shared_instance_marker_restores_idempotently(server, client, runner, make_config, tmp_path):
    """Workflows exported from the same instance are not duplicated on a second restore."""
    root = tmp_path / "backup"
    write_workflow(root, "Personal/A/alpha.json", "Alpha", meta={"instanceId": "inst-1"})
    write_workflow(root, "Personal/B/beta.json", "Beta", meta={"instanceId": "inst-1"})
    restore(client, make_config, runner, root)
    first = server.ids_by_name()

    result = restore(client, make_config, runner, root)

    assert server.ids_by_name() == first
    assert server.folder_chain(first["Beta"][0]) == ["B"]
    assert result.details["created"] == 0
    assert result.details["updated"] == 2


def test_backup_then_restore_into_empty_instance(server, client, runner, make_config, tmp_path):
    """A backup restores into a fresh instance with the same folder names."""
    server.folders["f1"] = {"id": "f1", "name": "Clients", "parentFolderId": None, "projectId": "proj-personal"}
    server.folders["f2"] = {"id": "f2", "name": "Acme Corp", "parentFolderId": "f1", "projectId": "proj-personal"}
    server.import_workflow({"id": ALPHA_ID, "name": "Alpha"})
    server.workflows[ALPHA_ID]["parentFolderId"] = "f2"
    BackupPipeline(client, make_config(), runner).backup(backup_dir=str(tmp_path / "backup"))

    target = FakeN8NServer()
    restore(FakeClient(target), make_config, FakeRunner(target), tmp_path / "backup")

    assert target.folder_chain(ALPHA_ID) == ["Clients", "Acme Corp"]


def test_dry_run_changes_nothing(server, client, runner, make_config, tmp_path):
    """A dry run stages but does not import or create folders."""
    write_backup(tmp_path / "backup")

    result = restore(client, make_config, runner, tmp_path / "backup", dry_run=True)

    assert runner.imports == []
    assert server.workflows == {}
    assert server.folder_creates == []
    assert result.details["staged"] == 3


def test_keep_manifest(server, client, runner, make_config, tmp_path):
    """The manifest can be kept next to the backup."""
    write_backup(tmp_path / "backup")

    result = restore(client, make_config, runner, tmp_path / "backup", keep_manifest=True)

    kept = glob.glob(str(tmp_path / "backup" / ".n8n-restore-manifest-*.ndjson"))
    assert kept == [result.details["manifest"]]
    with open(kept[0]) as f:
        lines = [json.loads(line) for line in f if line.strip()]
    assert {line["name"] for line in lines} == {"Alpha", "Beta", "Gamma"}
    assert all(line["idReconciled"] for line in lines)


def test_credentials_are_imported_when_enabled(server, client, runner, make_config, tmp_path):
    """Credentials files in the credentials folder are imported one by one."""
    root = tmp_path / "backup"
    write_backup(root)
    write_workflow(root, ".credentials/credentials.json", "creds")

    result = restore(client, make_config, runner, root, credentials="local")

    assert runner.credential_imports == [os.path.join(str(root), ".credentials", "credentials.json")]
    assert result.details["credentials_imported"] == 1


def test_fatal_conditions(server, client, make_config, tmp_path):
    """A missing backup or an unreachable CLI stops the restore."""
    with pytest.raises(N8NValidationError):
        restore(client, make_config, FakeRunner(server), tmp_path / "missing")

    write_backup(tmp_path / "backup")
    with pytest.raises(N8NCommandError):
        restore(client, make_config, FakeRunner(server, reachable=False), tmp_path / "backup")


def test_existing_folder_elsewhere_is_repositioned(server, client, runner, make_config, tmp_path):
    """A restore moves a same-named folder into the backup's hierarchy instead of duplicating it."""
    server.folders["f-acme"] = {"id": "f-acme", "name": "Acme", "parentFolderId": None, "projectId": "proj-personal"}
    write_workflow(tmp_path / "backup", "Personal/Clients/Acme/alpha.json", "Alpha", workflow_id=ALPHA_ID)

    result = restore(client, make_config, runner, tmp_path / "backup")

    assert sorted(folder["name"] for folder in server.folders.values()) == ["Acme", "Clients"]
    assert server.folder_chain(ALPHA_ID) == ["Clients", "Acme"]
    assert result.details["folders_created"] == 1
    assert result.details["folders_repositioned"] == 1
    assert "1 folder(s) repositioned" in result.message
