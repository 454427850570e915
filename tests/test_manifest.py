"""Tests for target layout, the manifest store and the prior folder mapping."""

import json

from n8n_manager.reconcile.layout import compute_target_context, split_relative_dir
from n8n_manager.reconcile.manifest import ManifestEntry, ManifestStore, MappingRecord, PriorMapping
from n8n_manager.schemas import MatchType


def test_target_context_drops_project_segment():
    """The leading project directory is not a folder."""
    context = compute_target_context("Personal/Clients/Acme Corp")
    assert context.project_slug == "personal"
    assert context.folder_slugs == ["Clients", "Acme_Corp"]
    assert context.folder_names == ["Clients", "Acme Corp"]
    assert context.display_path == "Clients / Acme Corp"
    assert context.folder_slug_path == "Clients/Acme_Corp"


def test_target_context_with_project_and_base_path():
    """A configured base path is prepended once, even if the backup already has it."""
    context = compute_target_context("Marketing/Imported/Campaigns", project_name="Marketing", base_path="Imported")
    assert context.project_slug == "Marketing"
    assert context.folder_slugs == ["Imported", "Campaigns"]

    root = compute_target_context("", project_name="Marketing", base_path="Imported/2024")
    assert root.folder_slugs == ["Imported", "2024"]


def test_split_relative_dir():
    """Separators and whitespace are normalized."""
    assert split_relative_dir(" A\\B //  C ") == ["A", "B", "C"]
    assert split_relative_dir(None) == []


def test_manifest_entry_round_trip_keeps_unknown_fields():
    """Empty values are omitted and unknown fields survive a round trip."""
    entry = ManifestEntry(filename="alpha.json", id="AAAAAAAAAAAAAAAA", storage_path="Personal/Clients")
    data = entry.to_dict()
    assert data == {
        "filename": "alpha.json",
        "id": "AAAAAAAAAAAAAAAA",
        "storagePath": "Personal/Clients",
        "preserveIds": False,
        "noOverwrite": False,
        "idAlignedByNameMatch": False,
    }

    data["futureField"] = 1
    data["actualImportedId"] = None
    loaded = ManifestEntry.from_dict(data)
    assert loaded.extra == {"futureField": 1}
    assert loaded.actual_imported_id is None
    assert loaded.to_dict()["futureField"] == 1


def test_manifest_store_upsert_flush_and_load(tmp_path):
    """Entries are keyed by folder and file, persisted as NDJSON and reloaded."""
    path = tmp_path / "manifest.ndjson"
    store = ManifestStore(str(path))
    store.upsert(ManifestEntry(filename="a.json", storage_path="P", name="A"))
    store.upsert(ManifestEntry(filename="b.json", storage_path="P", name="B"))
    store.upsert(ManifestEntry(filename="a.json", storage_path="P", name="A2"))
    store.flush()

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["name"] == "A2"

    with open(path, "a") as f:
        f.write("\nnot json\n[1]\n")
    loaded = ManifestStore.load(str(path))
    assert [entry.name for entry in loaded] == ["A2", "B"]
    assert loaded.get("P", "b.json").name == "B"

    copy = loaded.copy_to(str(tmp_path / "kept.ndjson"))
    assert (tmp_path / "kept.ndjson").read_text() == path.read_text()
    assert copy.endswith("kept.ndjson")


def write_mapping(tmp_path, workflows):
    path = tmp_path / ".n8n-folder-structure.json"
    path.write_text(json.dumps({"workflows": workflows}))
    return str(path)


def test_prior_mapping_lookup_by_path_and_name(tmp_path):
    """Same folder and name wins, newest updatedAt breaks ties."""
    path = write_mapping(tmp_path, [
        {"id": "A1", "name": "Alpha", "relativePath": "Personal/Clients", "updatedAt": "2024-01-01T00:00:00Z"},
        {"id": "A2", "name": "alpha", "relativePath": "personal/clients", "updatedAt": "2024-06-01T00:00:00Z"},
        {"id": "B1", "name": "Beta", "relativePath": "Personal/Other"},
        {"id": "C1", "name": "Gamma", "relativePath": "Personal/X"},
        {"id": "C2", "name": "Gamma", "relativePath": "Personal/Y"},
    ])
    mapping = PriorMapping.load(path)
    assert len(mapping) == 5

    record, match_type, note = mapping.lookup("Personal/Clients", "Alpha")
    assert (record.id, match_type) == ("A2", MatchType.PATH_NEWEST)
    assert "newest" in note

    record, match_type, _ = mapping.lookup("Personal/Elsewhere", "Beta")
    assert (record.id, match_type) == ("B1", MatchType.NAME)

    assert mapping.lookup("Personal/Z", "Gamma") == (None, MatchType.NONE, "")
    assert mapping.find_by_id("C2").relative_path == "Personal/Y"
    assert [r.id for r in mapping.in_path("PERSONAL/clients/")] == ["A1", "A2"]


def test_prior_mapping_tolerates_bad_files(tmp_path):
    """Missing or malformed mapping files give an empty mapping."""
    assert len(PriorMapping.load(str(tmp_path / "missing.json"))) == 0
    bad = tmp_path / "bad.json"
    bad.write_text("{")
    assert len(PriorMapping.load(str(bad))) == 0


def test_mapping_record_sort_key_prefers_parsable_dates():
    """Records without a timestamp sort before dated ones."""
    undated = MappingRecord(id="x")
    dated = MappingRecord(id="y", updated_at="2023-05-01")
    assert max([undated, dated], key=MappingRecord.sort_key) is dated
