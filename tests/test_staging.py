"""Tests for the staging normalizer."""

import json
import os

import pytest

from fakes import PERSONAL_PROJECT_ID, write_workflow
from n8n_manager.exceptions import N8NValidationError
from n8n_manager.reconcile.manifest import MAPPING_FILENAME, ManifestStore, PriorMapping
from n8n_manager.reconcile.snapshot import SOURCE_API, Snapshot
from n8n_manager.reconcile.staging import (
    StagingNormalizer,
    StagingOptions,
    discover_workflow_files,
    sanitize_workflow,
)
from n8n_manager.reconcile.state import RemoteStateCache

ALPHA_ID = "AAAAAAAAAAAAAAAA"
OTHER_ID = "BBBBBBBBBBBBBBBB"
PROJECTS = [{"id": PERSONAL_PROJECT_ID, "name": "Owner", "type": "personal"}]


def make_cache(folders=None, workflows=None):
    return RemoteStateCache().load(projects=PROJECTS, folders=folders or [], workflows=workflows or [])


def alpha_in(folder_name):
    """Cache and snapshot holding workflow Alpha inside one top-level folder."""
    cache = make_cache(
        folders=[{"id": "f1", "name": folder_name, "projectId": PERSONAL_PROJECT_ID}],
        workflows=[{"id": ALPHA_ID, "name": "Alpha", "parentFolderId": "f1", "homeProject": {"id": PERSONAL_PROJECT_ID}}],
    )
    snapshot = Snapshot.from_payload([{"id": ALPHA_ID, "name": "Alpha"}], SOURCE_API)
    return cache, snapshot


def stage(tmp_path, cache=None, snapshot=None, mapping=None, **options):
    normalizer = StagingNormalizer(
        cache or make_cache(),
        snapshot or Snapshot(),
        mapping=mapping,
        options=StagingOptions(**options),
    )
    manifest = ManifestStore(str(tmp_path / "manifest.ndjson"))
    result = normalizer.stage_directory(str(tmp_path / "backup"), str(tmp_path / "staging"), manifest)
    return result, {entry.relative_path: entry for entry in manifest}


def staged_document(tmp_path, entry):
    with open(os.path.join(str(tmp_path / "staging"), entry.filename)) as f:
        return json.load(f)


def test_invalid_id_is_stripped(tmp_path):
    """Ids that are not sixteen alphanumerics are removed before import."""
    write_workflow(tmp_path / "backup", "Personal/flow.json", "Flow", workflow_id="wf-1")
    _, entries = stage(tmp_path)
    entry = entries["Personal/flow.json"]
    assert entry.id == ""
    assert entry.original_workflow_id == "wf-1"
    assert entry.sanitized_id_note == "sanitized-invalid-format"
    assert "id" not in staged_document(tmp_path, entry)


def test_same_id_in_two_folders_keeps_only_the_first(tmp_path):
    """A second folder claiming an already staged id imports as new."""
    write_workflow(tmp_path / "backup", "Personal/A/one.json", "One", workflow_id=ALPHA_ID)
    write_workflow(tmp_path / "backup", "Personal/B/two.json", "Two", workflow_id=ALPHA_ID)
    _, entries = stage(tmp_path)
    assert entries["Personal/A/one.json"].id == ALPHA_ID
    assert entries["Personal/B/two.json"].id == ""
    assert entries["Personal/B/two.json"].sanitized_id_note == "staged-duplicate-conflict"


def test_same_id_in_one_folder_is_kept(tmp_path):
    """Files in the same folder may share an id."""
    write_workflow(tmp_path / "backup", "Personal/A/one.json", "One", workflow_id=ALPHA_ID)
    write_workflow(tmp_path / "backup", "Personal/A/two.json", "Two", workflow_id=ALPHA_ID)
    _, entries = stage(tmp_path)
    assert entries["Personal/A/one.json"].id == ALPHA_ID
    assert entries["Personal/A/two.json"].id == ALPHA_ID


def test_name_match_in_another_folder_clears_id(tmp_path):
    """A same-named workflow elsewhere on the server is not this workflow."""
    cache, snapshot = alpha_in("Other")
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha", workflow_id=OTHER_ID)
    _, entries = stage(tmp_path, cache, snapshot)
    entry = entries["Personal/Clients/alpha.json"]
    assert entry.id == ""
    assert entry.sanitized_id_note == "folder-name-mismatch"
    assert not entry.id_aligned_by_name_match
    assert entry.name_match_workflow_id == ALPHA_ID


def test_name_match_in_same_folder_aligns_id(tmp_path):
    """A same-named workflow in the target folder lends its id."""
    cache, snapshot = alpha_in("Clients")
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha")
    _, entries = stage(tmp_path, cache, snapshot)
    entry = entries["Personal/Clients/alpha.json"]
    assert entry.id == ALPHA_ID
    assert entry.id_aligned_by_name_match
    assert entry.id_resolution_source == "name-match"
    assert staged_document(tmp_path, entry)["id"] == ALPHA_ID


def test_matching_own_id_is_not_a_conflict(tmp_path):
    """Restoring a workflow onto itself keeps its id."""
    cache, snapshot = alpha_in("Clients")
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha", workflow_id=ALPHA_ID)
    _, entries = stage(tmp_path, cache, snapshot)
    entry = entries["Personal/Clients/alpha.json"]
    assert entry.id == ALPHA_ID
    assert entry.sanitized_id_note == ""


def test_foreign_id_collision_is_cleared(tmp_path):
    """An id that belongs to a differently named remote workflow is not reused."""
    cache, snapshot = alpha_in("Clients")
    write_workflow(tmp_path / "backup", "Personal/Clients/gamma.json", "Gamma", workflow_id=ALPHA_ID)
    _, entries = stage(tmp_path, cache, snapshot)
    entry = entries["Personal/Clients/gamma.json"]
    assert entry.id == ""
    assert entry.sanitized_id_note == "id-conflict"
    assert entry.duplicate_match_type == "id"


def test_no_overwrite_always_imports_new(tmp_path):
    """With no-overwrite every id is dropped and preserve is ignored."""
    write_workflow(tmp_path / "backup", "Personal/flow.json", "Flow", workflow_id=ALPHA_ID)
    _, entries = stage(tmp_path, no_overwrite=True, preserve_ids=True)
    entry = entries["Personal/flow.json"]
    assert entry.id == ""
    assert entry.sanitized_id_note == "no-overwrite"
    assert entry.no_overwrite and not entry.preserve_ids


def test_preserve_ids_forces_existing_id(tmp_path):
    """Preserve mode stages the matched workflow's id instead of the file's."""
    cache, snapshot = alpha_in("Clients")
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha", workflow_id=OTHER_ID)
    _, entries = stage(tmp_path, cache, snapshot, preserve_ids=True)
    entry = entries["Personal/Clients/alpha.json"]
    assert entry.id == ALPHA_ID
    assert entry.existing_workflow_id == ALPHA_ID
    assert not entry.id_aligned_by_name_match


def test_prior_mapping_path_match(tmp_path):
    """The previous backup's mapping identifies a workflow by folder and name."""
    mapping_file = tmp_path / "mapping.json"
    mapping_file.write_text(json.dumps({"workflows": [
        {"id": ALPHA_ID, "name": "Alpha", "relativePath": "Personal/Clients"},
    ]}))
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha")
    _, entries = stage(tmp_path, mapping=PriorMapping.load(str(mapping_file)))
    entry = entries["Personal/Clients/alpha.json"]
    assert entry.duplicate_match_type == "path"
    assert entry.id == ALPHA_ID
    assert entry.existing_storage_path == "Personal/Clients"


def test_unlocated_name_match_is_counted(tmp_path):
    """Name matches without any folder information are allowed and counted."""
    snapshot = Snapshot.from_payload([{"id": ALPHA_ID, "name": "Alpha"}], SOURCE_API)
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha")
    result, entries = stage(tmp_path, snapshot=snapshot)
    assert result.permissive_name_matches == 1
    assert entries["Personal/Clients/alpha.json"].id == ALPHA_ID


def test_unlocated_name_match_can_be_refused(tmp_path):
    """Strict mode imports unlocated name matches as new workflows."""
    snapshot = Snapshot.from_payload([{"id": ALPHA_ID, "name": "Alpha"}], SOURCE_API)
    write_workflow(tmp_path / "backup", "Personal/Clients/alpha.json", "Alpha")
    result, entries = stage(tmp_path, snapshot=snapshot, allow_unlocated_name_match=False)
    assert result.permissive_name_matches == 0
    assert entries["Personal/Clients/alpha.json"].id == ""


def test_target_context_is_recorded(tmp_path):
    """Each entry records the folder chain it should be placed in."""
    write_workflow(tmp_path / "backup", "Personal/Clients/Acme Corp/flow.json", "Flow")
    _, entries = stage(tmp_path)
    entry = entries["Personal/Clients/Acme Corp/flow.json"]
    assert entry.storage_path == "Personal/Clients/Acme Corp"
    assert entry.target_project_slug == "personal"
    assert entry.target_folder_names == ["Clients", "Acme Corp"]
    assert entry.target_folder_slugs == ["Clients", "Acme_Corp"]


def test_filenames_are_deduplicated_in_staging(tmp_path):
    """Files with the same name from different folders do not overwrite each other."""
    write_workflow(tmp_path / "backup", "Personal/A/flow.json", "Flow A")
    write_workflow(tmp_path / "backup", "Personal/B/flow.json", "Flow B")
    _, entries = stage(tmp_path)
    assert entries["Personal/A/flow.json"].filename == "flow.json"
    assert entries["Personal/B/flow.json"].filename == "flow_1.json"
    assert staged_document(tmp_path, entries["Personal/B/flow.json"])["name"] == "Flow B"


def test_unreadable_files_are_skipped(tmp_path):
    """Bad files are reported; a backup with nothing stageable is an error."""
    backup = tmp_path / "backup"
    write_workflow(backup, "Personal/good.json", "Good")
    (backup / "Personal" / "bad.json").write_text("{")
    result, entries = stage(tmp_path)
    assert result.staged == 1
    assert [item["path"] for item in result.skipped] == ["Personal/bad.json"]

    os.remove(str(backup / "Personal" / "good.json"))
    with pytest.raises(N8NValidationError):
        stage(tmp_path)


def test_discovery_skips_non_workflow_files(tmp_path):
    """Credentials, archives, git data and the folder mapping are not workflows."""
    root = tmp_path / "backup"
    write_workflow(root, "Personal/flow.json", "Flow")
    write_workflow(root, "credentials.json", "creds")
    write_workflow(root, ".credentials/credentials.json", "creds")
    write_workflow(root, "archive/old.json", "Old")
    write_workflow(root, ".git/x.json", "Git")
    write_workflow(root, MAPPING_FILENAME, "Mapping")
    (root / "notes.txt").write_text("hello")
    found = discover_workflow_files(str(root))
    assert [relative for _, relative in found] == ["Personal/flow.json"]


def test_sanitize_workflow():
    """active becomes a strict boolean and tags become unique name objects."""
    data = sanitize_workflow({"active": "true", "tags": ["a", {"name": "a"}, {"id": "7"}, {"label": " b "}, None]})
    assert data["active"] is False
    assert data["tags"] == [{"name": "a"}, {"name": "tag-7"}, {"name": "b"}]
    assert sanitize_workflow({"active": True})["tags"] == []


def test_name_tie_in_target_folder_prefers_newest(tmp_path):
    """Same-named workflows in one folder resolve to the newest, whatever the listing order."""
    cache = make_cache(
        folders=[{"id": "f1", "name": "Reports", "projectId": PERSONAL_PROJECT_ID}],
        workflows=[
            {"id": ALPHA_ID, "name": "Report", "parentFolderId": "f1", "homeProject": {"id": PERSONAL_PROJECT_ID}},
            {"id": OTHER_ID, "name": "Report", "parentFolderId": "f1", "homeProject": {"id": PERSONAL_PROJECT_ID}},
        ],
    )
    rows = [
        {"id": ALPHA_ID, "name": "Report", "updatedAt": "2024-05-01T10:00:00.000Z"},
        {"id": OTHER_ID, "name": "Report", "updatedAt": "2024-06-01T10:00:00.000Z"},
    ]
    for index, order in enumerate([rows, rows[::-1]]):
        root = tmp_path / f"run{index}"
        write_workflow(root / "backup", "Personal/Reports/report.json", "Report")
        _, entries = stage(root, cache, Snapshot.from_payload(order, SOURCE_API))
        entry = entries["Personal/Reports/report.json"]
        assert entry.id == OTHER_ID
        assert "newest updatedAt" in entry.match_note


def test_shared_instance_marker_resolves_by_folder(tmp_path):
    """Workflows sharing an instance marker each match the one in their own folder."""
    cache = make_cache(
        folders=[
            {"id": "fa", "name": "A", "projectId": PERSONAL_PROJECT_ID},
            {"id": "fb", "name": "B", "projectId": PERSONAL_PROJECT_ID},
        ],
        workflows=[
            {"id": ALPHA_ID, "name": "Alpha", "parentFolderId": "fa", "homeProject": {"id": PERSONAL_PROJECT_ID}},
            {"id": OTHER_ID, "name": "Beta", "parentFolderId": "fb", "homeProject": {"id": PERSONAL_PROJECT_ID}},
        ],
    )
    snapshot = Snapshot.from_payload([
        {"id": ALPHA_ID, "name": "Alpha", "meta": {"instanceId": "inst-1"}},
        {"id": OTHER_ID, "name": "Beta", "meta": {"instanceId": "inst-1"}},
    ], SOURCE_API)
    write_workflow(tmp_path / "backup", "Personal/B/beta.json", "Beta", meta={"instanceId": "inst-1"})
    _, entries = stage(tmp_path, cache, snapshot)
    entry = entries["Personal/B/beta.json"]
    assert entry.id == OTHER_ID
    assert entry.existing_workflow_id == OTHER_ID
    assert entry.sanitized_id_note == ""
