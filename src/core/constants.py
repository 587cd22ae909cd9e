"""Core constants used across Quiver modules.

This module centralizes file names, layout names, and defaults.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

STATE_DIR_NAME = ".quiver"
CACHE_DIR_NAME = "cache"
OBJECTS_DIR_NAME = "objects"
REFS_DIR_NAME = "refs"
EXPERIMENT_REFS_DIR_NAME = "exps"
BRANCH_REFS_DIR_NAME = "branches"
RUNS_DIR_NAME = "runs"
TMP_DIR_NAME = "tmp"
RUN_INDEX_FILE_NAME = "index.json"
RUN_STATE_FILE_NAME = "state.json"
REMOTES_FILE_NAME = "remotes.json"
APPLIED_CHECKPOINT_FILE_NAME = "applied_checkpoint"
CHECKPOINT_SIGNAL_FILE_NAME = "CHECKPOINT"
TRACKER_FILE_SUFFIX = ".qv"
PIPELINE_FILE_NAME = "quiver.yaml"
LOCK_FILE_NAME = "quiver.lock"
DEFAULT_PARAMS_FILE_NAME = "params.yaml"
HASH_ALGORITHM = "sha256"
DIRECTORY_CHECKSUM_SUFFIX = ".dir"
HASH_CHUNK_SIZE = 1024 * 1024
SHORT_ID_LENGTH = 7
EXPERIMENT_NAME_PREFIX = "exp"
DEFAULT_CHECKPOINT_POLL_SECONDS = 0.2
DEFAULT_CHECKPOINT_TIMEOUT_SECONDS = 3600.0
ENV_WORKSPACE = "QUIVER_WORKSPACE"
ENV_SIGNAL_DIR = "QUIVER_SIGNAL_DIR"
ENV_CHECKPOINT_POLL_SECONDS = "QUIVER_CHECKPOINT_POLL_SECONDS"
ENV_CHECKPOINT_TIMEOUT_SECONDS = "QUIVER_CHECKPOINT_TIMEOUT_SECONDS"
LOCAL_SCHEME = "local"
SUPPORTED_SCHEMES = ("local", "s3", "ssh", "hdfs", "webhdfs")
DEFAULT_WEBHDFS_TIMEOUT_SECONDS = 60.0
