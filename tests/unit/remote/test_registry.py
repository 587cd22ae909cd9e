"""Unit tests for remote and external cache registry."""

from __future__ import annotations

import pytest

from core.errors import QuiverConfigError
from remote.registry import RemoteRegistry


def _registry(tmp_path) -> RemoteRegistry:
    return RemoteRegistry(tmp_path / ".quiver", tmp_path)


def test_first_remote_becomes_default(tmp_path) -> None:
    """The first remote should be the default until another is chosen."""
    registry = _registry(tmp_path)
    registry.add_remote("origin", "s3://bucket/store")
    registry.add_remote("backup", str(tmp_path / "backup"))

    resolved = registry.resolve()

    assert resolved.url == "s3://bucket/store" and [
        remote.is_default for remote in registry.list_remotes()
    ] == [False, True]


def test_add_remote_rejects_duplicate_name(tmp_path) -> None:
    """Remote names should be unique."""
    registry = _registry(tmp_path)
    registry.add_remote("origin", "s3://bucket/store")

    with pytest.raises(QuiverConfigError):
        registry.add_remote("origin", "s3://bucket/other")

    assert len(registry.list_remotes()) == 1


def test_external_cache_cannot_overlap_remote(tmp_path) -> None:
    """External caches must not live inside a push/pull remote."""
    registry = _registry(tmp_path)
    registry.add_remote("origin", "s3://bucket/store")

    with pytest.raises(QuiverConfigError):
        registry.set_external_cache("s3://bucket/store/external")

    assert registry.external_caches() == {}


def test_remote_cannot_contain_external_cache(tmp_path) -> None:
    """Remotes must not enclose an existing external cache."""
    registry = _registry(tmp_path)
    registry.set_external_cache("s3://bucket/store/cache")

    with pytest.raises(QuiverConfigError):
        registry.add_remote("origin", "s3://bucket/store")

    assert registry.list_remotes() == []


def test_external_caches_are_keyed_by_scheme(tmp_path) -> None:
    """Each storage scheme should hold one external cache."""
    registry = _registry(tmp_path)
    registry.set_external_cache("s3://bucket/cache")
    registry.set_external_cache(str(tmp_path / "local-cache"))

    assert registry.external_caches() == {
        "s3": "s3://bucket/cache",
        "local": str((tmp_path / "local-cache").resolve()),
    } and registry.external_cache_for("ssh") is None


def test_remove_default_remote_promotes_next(tmp_path) -> None:
    """Removing the default should fall back to the next remote by name."""
    registry = _registry(tmp_path)
    registry.add_remote("origin", "s3://bucket/store")
    registry.add_remote("backup", "s3://other/store")

    registry.remove_remote("origin")

    assert registry.default_remote() == "backup" and registry.resolve().url == "s3://other/store"


def test_resolve_without_remotes_raises(tmp_path) -> None:
    """Resolving with no remotes should explain how to add one."""
    registry = _registry(tmp_path)

    with pytest.raises(QuiverConfigError):
        registry.resolve()

    assert registry.default_remote() is None


def test_bucket_root_remote_conflicts_with_cache_in_same_bucket(tmp_path) -> None:
    """A whole-bucket remote should be accepted and contain every cache in it."""
    registry = _registry(tmp_path)
    registry.add_remote("origin", "s3://bucket")

    with pytest.raises(QuiverConfigError):
        registry.set_external_cache("s3://bucket/external")

    assert registry.resolve().url == "s3://bucket"
