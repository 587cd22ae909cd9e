"""Unit tests for YAML helpers."""

from __future__ import annotations

import pytest

from core.errors import QuiverPipelineError
from core.yaml_io import dump_yaml_file, load_yaml_file, parse_yaml_scalar


def test_dump_and_load_preserve_key_order(tmp_path) -> None:
    """Dumped YAML should keep insertion order of keys."""
    yaml_path = tmp_path / "nested" / "file.yaml"
    dump_yaml_file(yaml_path, {"z": 1, "a": {"b": 2}})

    text = yaml_path.read_text(encoding="utf-8")

    assert text.index("z:") < text.index("a:") and load_yaml_file(yaml_path) == {
        "z": 1,
        "a": {"b": 2},
    }


def test_load_yaml_file_raises_typed_error_for_bad_syntax(tmp_path) -> None:
    """Malformed YAML should raise the requested domain error."""
    yaml_path = tmp_path / "bad.yaml"
    yaml_path.write_text("stages: [unclosed", encoding="utf-8")

    with pytest.raises(QuiverPipelineError):
        load_yaml_file(yaml_path, error_type=QuiverPipelineError)

    assert True


def test_parse_yaml_scalar_types_values() -> None:
    """Scalars should follow YAML typing rules."""
    assert (parse_yaml_scalar("0.1"), parse_yaml_scalar("3"), parse_yaml_scalar("adam")) == (
        0.1,
        3,
        "adam",
    )
