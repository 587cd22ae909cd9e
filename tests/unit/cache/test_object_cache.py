"""Unit tests for the content-addressed object cache."""

from __future__ import annotations

import pytest

from cache.object_cache import ContentCache
from core.errors import QuiverCacheError


def _make_dataset(root) -> None:
    (root / "nested").mkdir(parents=True)
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "nested" / "b.txt").write_text("beta", encoding="utf-8")


def test_save_file_shards_object_by_checksum(tmp_path) -> None:
    """Cached files should live under <hh>/<rest>."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "model.bin"
    source.write_bytes(b"weights")

    checksum = cache.save_file(source)

    assert cache.object_path(checksum) == tmp_path / "cache" / checksum[:2] / checksum[2:]


def test_save_directory_round_trips_through_checkout(tmp_path) -> None:
    """Checking out a cached directory should restore every file."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "data"
    _make_dataset(source)
    checksum, _ = cache.save_directory(source)
    target = tmp_path / "restored"

    cache.checkout(checksum, target)

    assert (target / "nested" / "b.txt").read_text(encoding="utf-8") == "beta"


def test_directory_checkout_prunes_untracked_files(tmp_path) -> None:
    """Checkout should remove files that are not part of the manifest."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "data"
    _make_dataset(source)
    checksum, _ = cache.save_directory(source)
    (source / "extra.txt").write_text("stale", encoding="utf-8")

    cache.checkout(checksum, source)

    assert not (source / "extra.txt").exists()


def test_contains_requires_every_directory_entry(tmp_path) -> None:
    """A directory is only cached when all of its entries are cached."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "data"
    _make_dataset(source)
    checksum, entries = cache.save_directory(source)
    cache.remove(entries[0].checksum)

    assert not cache.contains(checksum)


def test_verify_detects_corrupted_object(tmp_path) -> None:
    """Verification should fail after cached content changes."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "file.txt"
    source.write_text("original", encoding="utf-8")
    checksum = cache.save_file(source)
    cache.object_path(checksum).write_text("tampered", encoding="utf-8")

    assert not cache.verify(checksum)


def test_collect_garbage_keeps_directory_entries(tmp_path) -> None:
    """GC should keep entries referenced by used directory manifests."""
    cache = ContentCache(tmp_path / "cache")
    source = tmp_path / "data"
    _make_dataset(source)
    checksum, entries = cache.save_directory(source)
    orphan = tmp_path / "orphan.txt"
    orphan.write_text("unused", encoding="utf-8")
    orphan_checksum = cache.save_file(orphan)

    removed = cache.collect_garbage({checksum})

    assert removed == (orphan_checksum,) and all(
        cache.object_path(entry.checksum).is_file() for entry in entries
    )


def test_checkout_raises_for_missing_object(tmp_path) -> None:
    """Checkout should fail when an object is not cached."""
    cache = ContentCache(tmp_path / "cache")

    with pytest.raises(QuiverCacheError):
        cache.checkout("ab" + "0" * 62, tmp_path / "out.txt")

    assert not (tmp_path / "out.txt").exists()
