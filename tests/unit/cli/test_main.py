"""Unit tests for CLI command handling."""

from __future__ import annotations

import shlex
import sys

from cli.main import main
from core.yaml_io import dump_yaml_file


def test_cli_add_and_status_print_artifacts(tmp_path, capsys) -> None:
    """CLI add should print the checksum and status the state."""
    (tmp_path / "data.csv").write_text("a\n1\n", encoding="utf-8")

    add_code = main(["--workspace", str(tmp_path), "add", "data.csv"])
    add_output = capsys.readouterr().out.strip()
    status_code = main(["--workspace", str(tmp_path), "status"])
    status_output = capsys.readouterr().out.strip()

    assert add_code == 0 and status_code == 0 and add_output.startswith("data.csv\t") and (
        status_output == "data.csv\tunchanged"
    )


def test_cli_remote_add_and_list(tmp_path, capsys) -> None:
    """Remote list should mark the default remote."""
    main(["--workspace", str(tmp_path), "remote", "add", "origin", "s3://bucket/store"])
    capsys.readouterr()

    exit_code = main(["--workspace", str(tmp_path), "remote", "list"])
    output = capsys.readouterr().out.strip()

    assert exit_code == 0 and output == "origin\ts3://bucket/store\tdefault"


def test_cli_cache_external_sets_and_lists(tmp_path, capsys) -> None:
    """External caches should be listed by scheme."""
    main(["--workspace", str(tmp_path), "cache", "external", "s3://bucket/external"])
    capsys.readouterr()

    exit_code = main(["--workspace", str(tmp_path), "cache", "external"])
    output = capsys.readouterr().out.strip()

    assert exit_code == 0 and output == "s3\ts3://bucket/external"


def test_cli_push_and_pull_use_local_remote(tmp_path, capsys) -> None:
    """Push then pull should report transferred and skipped counts."""
    workspace = tmp_path / "ws"
    workspace.mkdir()
    (workspace / "data.csv").write_text("a\n1\n", encoding="utf-8")
    main(["--workspace", str(workspace), "add", "data.csv"])
    main(["--workspace", str(workspace), "remote", "add", "origin", str(tmp_path / "remote")])
    capsys.readouterr()

    push_code = main(["--workspace", str(workspace), "push"])
    push_output = capsys.readouterr().out.split()
    pull_code = main(["--workspace", str(workspace), "pull", "-r", "origin"])
    pull_output = capsys.readouterr().out.split()

    assert (push_code, pull_code) == (0, 0) and push_output == [
        "transferred=1",
        "skipped=0",
    ] and pull_output == ["transferred=0", "skipped=1"]


def test_cli_errors_return_non_zero(tmp_path, capsys) -> None:
    """Domain errors should print to stderr and exit with 1."""
    exit_code = main(["--workspace", str(tmp_path), "push"])
    error_output = capsys.readouterr().err

    assert exit_code == 1 and error_output.startswith("error: ")


def test_cli_repro_reports_stage_actions(tmp_path, capsys) -> None:
    """Repro should print each stage with its state and action."""
    dump_yaml_file(
        tmp_path / "quiver.yaml",
        {
            "stages": {
                "write": {
                    "cmd": f"{shlex.quote(sys.executable)} -c "
                    "'open(\"out.txt\", \"w\").write(\"done\")'",
                    "outs": ["out.txt"],
                }
            }
        },
    )

    first_code = main(["--workspace", str(tmp_path), "repro"])
    first_output = capsys.readouterr().out.strip()
    second_code = main(["--workspace", str(tmp_path), "repro"])
    second_output = capsys.readouterr().out.strip()

    assert (first_code, second_code) == (0, 0) and first_output == "write\tnever_run\tran" and (
        second_output == "write\tup_to_date\tskipped"
    )


def test_cli_gc_prints_removed_count(tmp_path, capsys) -> None:
    """Cache gc should report how many objects were removed."""
    (tmp_path / "data.csv").write_text("a\n1\n", encoding="utf-8")
    main(["--workspace", str(tmp_path), "add", "data.csv"])
    (tmp_path / "data.csv.qv").unlink()
    capsys.readouterr()

    exit_code = main(["--workspace", str(tmp_path), "gc"])
    output = capsys.readouterr().out.strip()

    assert exit_code == 0 and output == "removed=1"
