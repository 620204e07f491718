"""
Local catalog snapshots.

A populated catalog is written to ``<snapshot_dir>/<workspace>.json`` so the
next process can start answering queries without waiting for a full
metadata fetch.  Files are written to a temp file first and moved into
place, so a reader never sees a half-written snapshot.
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from afmbridge.catalog.catalog import Catalog
from afmbridge.catalog.entry import CatalogEntry
from afmbridge.core.config import get_settings
from afmbridge.core.errors import SnapshotCorrupted, SnapshotNotFound
from afmbridge.core.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_FORMAT = "afmbridge-catalog"
SNAPSHOT_VERSION = 1


def snapshot_path(workspace: str, directory: str | Path | None = None) -> Path:
    base = Path(directory) if directory is not None else Path(get_settings().snapshot_dir)
    return base.expanduser() / f"{workspace}.json"


def serialize_catalog(workspace: str, catalog: Catalog, directory: str | Path | None = None) -> Path:
    """Write *catalog* to its snapshot file and return the path."""
    path = snapshot_path(workspace, directory)
    path.parent.mkdir(parents=True, exist_ok=True)
    document: dict[str, Any] = {
        "format": SNAPSHOT_FORMAT,
        "version": SNAPSHOT_VERSION,
        "workspace": workspace,
        "afm": [e.to_dict() for e in catalog.afm_entries()],
        "maql": [e.to_dict() for e in catalog.maql_entries()],
    }

    fd, tmp_name = tempfile.mkstemp(prefix=f".{workspace}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Catalog snapshot written ws=%s path=%s", workspace, path)
    return path


def deserialize_catalog(workspace: str, directory: str | Path | None = None) -> Catalog:
    """Load a populated catalog from its snapshot file."""
    path = snapshot_path(workspace, directory)
    if not path.exists():
        raise SnapshotNotFound(f"No catalog snapshot for workspace '{workspace}' at {path}.")

    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, ValueError) as exc:
        raise SnapshotCorrupted(f"Can't read catalog snapshot {path}: {exc}") from exc

    if not isinstance(document, dict) or document.get("format") != SNAPSHOT_FORMAT:
        raise SnapshotCorrupted(f"{path} is not a catalog snapshot.")
    if document.get("version") != SNAPSHOT_VERSION:
        raise SnapshotCorrupted(
            f"Unsupported snapshot version {document.get('version')!r} in {path}."
        )
    if document.get("workspace") != workspace:
        raise SnapshotCorrupted(
            f"Snapshot {path} belongs to workspace '{document.get('workspace')}'."
        )

    try:
        afm = [CatalogEntry.from_dict(raw) for raw in document["afm"]]
        maql = [CatalogEntry.from_dict(raw) for raw in document["maql"]]
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotCorrupted(f"Malformed entry in catalog snapshot {path}: {exc}") from exc

    logger.info("Catalog snapshot restored ws=%s afm=%d maql=%d", workspace, len(afm), len(maql))
    return Catalog.from_entries(workspace, afm, maql)
