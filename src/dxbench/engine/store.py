from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from dxbench.config.constants import DEFAULT_DATA_DIR, VALID_COMMANDS
from dxbench.engine.records import SoloBenchmark, dumps, loads
from dxbench.errors import ArtifactError
from dxbench.util.logging import log_structured_event
from dxbench.workload.holder import other_instance

_STORE_LOG = logging.getLogger("dxbench.engine.store")
ARTIFACT_MODE = 0o666


def resolve_data_dir(data_dir=None) -> Path:
    return Path(os.path.expanduser(str(data_dir or DEFAULT_DATA_DIR)))


def artifact_path(data_dir, name: str) -> Path:
    return resolve_data_dir(data_dir) / name


def is_first_run(data_dir, name: str) -> bool:
    return not artifact_path(data_dir, name).exists()


def write_artifact(data_dir, name: str, bench: SoloBenchmark) -> Path:
    """Persist ``bench`` under ``data_dir/name``; readers never see a partial file."""
    directory = resolve_data_dir(data_dir)
    target = directory / name
    payload = dumps(bench)
    tmp_path = None
    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, ARTIFACT_MODE)
        os.replace(tmp_path, target)
        tmp_path = None
    except OSError as exc:
        raise ArtifactError(f"could not write benchmark artifact {str(target)!r}", exc) from exc
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
    log_structured_event(
        _STORE_LOG,
        logging.INFO,
        "artifact_written",
        path=str(target),
        command=bench.command,
        instance=bench.instance,
        bytes=len(payload),
    )
    return target


def read_artifact(data_dir, name: str, *, command: str, instance: str) -> SoloBenchmark:
    """Load a first-run artifact for replay against ``instance``.

    The artifact must come from the same command and from the other instance.
    """
    if command not in VALID_COMMANDS:
        raise ArtifactError(f"unknown command {command!r}")
    expected = other_instance(instance)
    path = artifact_path(data_dir, name)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ArtifactError(f"could not read benchmark artifact {str(path)!r}", exc) from exc
    try:
        bench = loads(raw)
    except ArtifactError as exc:
        raise ArtifactError(f"could not parse benchmark artifact {str(path)!r}", exc) from exc
    if bench.command != command:
        raise ArtifactError(
            f"running {command}, but the previous result at {str(path)!r} shows command {bench.command}"
        )
    if bench.instance != expected:
        raise ArtifactError(
            f"running {command} on instance {instance}, but the previous result at {str(path)!r} "
            f"was already recorded on {bench.instance}"
        )
    log_structured_event(
        _STORE_LOG,
        logging.INFO,
        "artifact_read",
        path=str(path),
        command=bench.command,
        instance=bench.instance,
        benchmarks=bench.num_benchmarks,
    )
    return bench


def delete_artifact(data_dir, name: str) -> None:
    path = artifact_path(data_dir, name)
    try:
        path.unlink()
    except OSError as exc:
        log_structured_event(_STORE_LOG, logging.ERROR, "artifact_delete_failed", path=str(path), error=str(exc))
        raise ArtifactError(
            f"everything ran successfully, but the previous result file {str(path)!r} could not be deleted",
            exc,
        ) from exc
    log_structured_event(_STORE_LOG, logging.INFO, "artifact_deleted", path=str(path))
