"""Named dense-matrix records stored as JSON/YAML artifacts, ``.npz`` or HDF5."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import h5py
import numpy as np
import yaml

from xsecforge.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "0.1.0"

Records = Dict[str, np.ndarray]

_JSON_SUFFIXES = {".json"}
_YAML_SUFFIXES = {".yml", ".yaml"}
_NPZ_SUFFIXES = {".npz"}
_HDF5_SUFFIXES = {".h5", ".hdf5"}


def _schema_id(name: str) -> Dict[str, str]:
    return {"schema_name": f"xsecforge.{name}", "schema_version": SCHEMA_VERSION}


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _write_text(path: Path, payload: str) -> None:
    path.write_text(payload, encoding="utf-8")


def write_artifact(path: Path, payload: Dict[str, Any]) -> None:
    """Write artifact data as JSON or YAML depending on extension."""
    if path.suffix.lower() in _YAML_SUFFIXES:
        _write_text(path, yaml.safe_dump(payload, sort_keys=False))
    else:
        _write_text(path, json.dumps(payload, indent=2))


def read_artifact(path: Path) -> Dict[str, Any]:
    """Read artifact data from JSON or YAML."""
    if path.suffix.lower() in _YAML_SUFFIXES:
        return yaml.safe_load(_read_text(path))
    return json.loads(_read_text(path))


def _as_record(values: Any) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 0:
        arr = arr.reshape(1, 1)
    elif arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    return arr


def write_records(
    path: Path,
    records: Mapping[str, np.ndarray],
    *,
    schema: str,
    metadata: Optional[Mapping[str, Any]] = None,
) -> None:
    """Write named matrices; vectors are stored as N x 1 columns."""
    path = Path(path)
    suffix = path.suffix.lower()
    columns = {name: _as_record(values) for name, values in records.items()}
    meta = dict(metadata or {})

    if suffix in _JSON_SUFFIXES | _YAML_SUFFIXES:
        payload = {
            "schema": _schema_id(schema),
            "records": {name: arr.tolist() for name, arr in columns.items()},
            "metadata": meta,
        }
        write_artifact(path, payload)
    elif suffix in _NPZ_SUFFIXES:
        np.savez(path, **columns, metadata=np.array(json.dumps({"schema": _schema_id(schema), **meta})))
    elif suffix in _HDF5_SUFFIXES:
        with h5py.File(path, "w") as f:
            f.attrs["schema"] = json.dumps(_schema_id(schema))
            for key, value in meta.items():
                f.attrs[key] = json.dumps(value)
            for name, arr in columns.items():
                f.create_dataset(name, data=arr)
    else:
        raise ConfigurationError(f"Unsupported matrix file format '{path.suffix}'", path=path)
    logger.info(f"Wrote {len(columns)} record(s) to {path}")


def read_records(path: Path) -> Tuple[Records, Dict[str, Any]]:
    """Read named matrices and metadata written by :func:`write_records`.

    JSON and YAML files may also hold the records at top level without the
    ``records`` wrapper.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Matrix file not found: {path}")
    suffix = path.suffix.lower()

    if suffix in _JSON_SUFFIXES | _YAML_SUFFIXES:
        payload = read_artifact(path)
        if not isinstance(payload, dict):
            raise ConfigurationError("Matrix artifact must be a mapping of named records", path=path)
        raw = payload.get("records", {k: v for k, v in payload.items() if k not in ("schema", "metadata")})
        records = {name: _as_record(values) for name, values in raw.items()}
        metadata = dict(payload.get("metadata") or {})
    elif suffix in _NPZ_SUFFIXES:
        with np.load(path, allow_pickle=False) as archive:
            records = {name: np.asarray(archive[name], dtype=float) for name in archive.files if name != "metadata"}
            metadata = json.loads(str(archive["metadata"])) if "metadata" in archive.files else {}
        metadata.pop("schema", None)
    elif suffix in _HDF5_SUFFIXES:
        with h5py.File(path, "r") as f:
            records = {name: np.asarray(f[name][()], dtype=float) for name in f.keys()}
            metadata = {key: json.loads(value) for key, value in f.attrs.items() if key != "schema"}
    else:
        raise ConfigurationError(f"Unsupported matrix file format '{path.suffix}'", path=path)
    return records, metadata


def require_records(records: Mapping[str, np.ndarray], names, path: Path) -> None:
    missing = [name for name in names if name not in records]
    if missing:
        raise ConfigurationError(f"Missing required records: {', '.join(missing)}", path=path)
