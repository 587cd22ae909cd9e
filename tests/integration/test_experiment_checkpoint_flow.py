"""Integration tests for the checkpointed experiment workflow."""

from __future__ import annotations

import shlex
import shutil
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from core.config import QuiverConfig
from core.yaml_io import dump_yaml_file
from sdk.client import QuiverClient

SRC_DIR = Path(__file__).resolve().parents[2] / "src"
TRAIN_SCRIPT = """
import json
import pathlib

import yaml

from quiver import make_checkpoint

epochs = int(yaml.safe_load(pathlib.Path("params.yaml").read_text())["epochs"])
model = pathlib.Path("model")
model.mkdir(exist_ok=True)
weights = model / "weights.txt"
step = int(weights.read_text()) if weights.exists() else 0
for _ in range(epochs):
    step += 1
    weights.write_text(str(step))
    (model / "config.json").write_text(json.dumps({"step": step}))
    pathlib.Path("metrics.json").write_text(json.dumps({"train": {"loss": 1.0 / step}}))
    make_checkpoint()
"""


def _client(workspace: Path) -> QuiverClient:
    config = replace(
        QuiverConfig.from_env(),
        workspace_root=workspace,
        cache_dir=None,
        checkpoint_poll_seconds=0.05,
    )
    return QuiverClient(config)


def test_experiment_flow_survives_cache_loss(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Run, resume, promote, push, lose the cache, pull and apply a checkpoint."""
    monkeypatch.setenv("PYTHONPATH", str(SRC_DIR))
    workspace = tmp_path / "project"
    workspace.mkdir()
    (workspace / "train.py").write_text(TRAIN_SCRIPT, encoding="utf-8")
    (workspace / "params.yaml").write_text("epochs: 2\n", encoding="utf-8")
    dump_yaml_file(
        workspace / "quiver.yaml",
        {
            "stages": {
                "train": {
                    "cmd": f"{shlex.quote(sys.executable)} train.py",
                    "deps": ["train.py"],
                    "params": ["epochs"],
                    "outs": [{"model": {"checkpoint": True}}],
                    "metrics": [{"metrics.json": {"cache": False}}],
                }
            }
        },
    )
    client = _client(workspace)
    client.add_remote("storage", str(tmp_path / "remote"))

    client.run_experiment(name="baseline")
    resumed = client.run_experiment(resume="baseline", params={"epochs": 1})
    client.run_experiment(name="discarded", reset=True)
    client.branch_experiment("baseline", "best")
    removed = client.gc_experiments()
    client.gc_cache()
    client.push()
    shutil.rmtree(client.cache.root)
    restored_client = _client(workspace)
    restored_client.pull()
    first = restored_client.show_experiment("best")[-1]
    restored_client.apply_checkpoint(first.short_id)

    assert (
        resumed.checkpoint_count == 3
        and removed == ["discarded"]
        and [item.name for item in restored_client.list_experiments()] == ["baseline"]
        and (workspace / "model" / "weights.txt").read_text(encoding="utf-8") == "1"
        and first.metrics == {"train.loss": 1.0}
    )
