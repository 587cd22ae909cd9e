"""Unit tests for storage location parsing."""

from __future__ import annotations

import pytest

from core.errors import QuiverRemoteError
from core.locations import is_external, location_scheme_key, parse_location


def test_parse_s3_location_splits_bucket_and_key() -> None:
    """S3 URLs should expose bucket and key separately."""
    location = parse_location("s3://bucket/data/train.csv")

    assert (location.scheme, location.netloc, location.path) == ("s3", "bucket", "data/train.csv")


def test_parse_ssh_location_keeps_user_host_and_port() -> None:
    """SSH URLs should expose user, host and port."""
    location = parse_location("ssh://alice@example.com:2222/srv/data")

    assert (location.user, location.host, location.port, location.path) == (
        "alice",
        "example.com",
        2222,
        "/srv/data",
    )


def test_parse_relative_path_resolves_against_base_dir(tmp_path) -> None:
    """Relative paths should resolve against the provided base directory."""
    location = parse_location("data/file.txt", base_dir=tmp_path)

    assert location.local_path == (tmp_path / "data" / "file.txt").resolve()


def test_parse_location_rejects_unknown_scheme() -> None:
    """Unsupported schemes should fail with a remote error."""
    with pytest.raises(QuiverRemoteError):
        parse_location("ftp://host/data")

    assert True


def test_parse_s3_location_requires_bucket() -> None:
    """S3 URLs without a bucket should be rejected."""
    with pytest.raises(QuiverRemoteError):
        parse_location("s3:///data/train.csv")

    assert True


def test_parse_s3_bucket_root_joins_keys_without_leading_slash() -> None:
    """A bare bucket should be a usable root for remotes and caches."""
    root = parse_location("s3://bucket")
    child = root.join("ab", "cdef")

    assert (
        root.url == "s3://bucket"
        and child.path == "ab/cdef"
        and child.url == "s3://bucket/ab/cdef"
        and root.contains(child)
        and child.relative_to(root) == "ab/cdef"
    )


def test_is_external_detects_paths_outside_workspace(tmp_path) -> None:
    """Paths outside the workspace and remote URLs should be external."""
    workspace = tmp_path / "ws"
    workspace.mkdir()

    assert (
        is_external(parse_location(str(tmp_path / "other")), workspace)
        and is_external(parse_location("s3://bucket/key"), workspace)
        and not is_external(parse_location("data", base_dir=workspace), workspace)
    )


def test_contains_matches_children_only_on_same_host() -> None:
    """Containment should require the same scheme and netloc."""
    root = parse_location("s3://bucket/cache")

    assert (
        root.contains(parse_location("s3://bucket/cache/ab/cd"))
        and not root.contains(parse_location("s3://bucket/cache-other/ab"))
        and not root.contains(parse_location("s3://other/cache/ab"))
    )


def test_location_scheme_key_groups_paths_as_local() -> None:
    """Plain paths and file URLs should share the local scheme."""
    assert (
        location_scheme_key("/mnt/data"),
        location_scheme_key("file:///mnt/data"),
        location_scheme_key("hdfs://nn/data"),
    ) == ("local", "local", "hdfs")
