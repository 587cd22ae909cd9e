"""Integration tests for external artifacts kept in an external cache."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from core.config import QuiverConfig
from sdk.client import QuiverClient


def _client(workspace: Path) -> QuiverClient:
    config = replace(QuiverConfig.from_env(), workspace_root=workspace, cache_dir=None)
    return QuiverClient(config)


def test_external_directory_is_restored_without_local_cache(tmp_path) -> None:
    """External data should round-trip through its external cache only."""
    workspace = tmp_path / "project"
    workspace.mkdir()
    shared = tmp_path / "shared" / "features"
    (shared / "2024").mkdir(parents=True)
    (shared / "2024" / "part-0.csv").write_text("id,value\n1,2\n", encoding="utf-8")
    (shared / "schema.json").write_text("{}", encoding="utf-8")
    client = _client(workspace)
    client.set_external_cache(str(tmp_path / "shared-cache"))
    client.add_remote("storage", str(tmp_path / "remote"))

    artifact = client.add(str(shared), external=True)
    (shared / "2024" / "part-0.csv").unlink()
    state_after_delete = client.status()[0].state
    restored = client.checkout()
    pushed = client.push()

    assert (
        artifact.file_count == 2
        and artifact.checksum_type == "sha256"
        and state_after_delete == "modified"
        and [item.path for item in restored] == [str(shared.resolve())]
        and (shared / "2024" / "part-0.csv").read_text(encoding="utf-8") == "id,value\n1,2\n"
        and pushed.transferred == ()
        and list(client.cache.iter_checksums()) == []
    )
