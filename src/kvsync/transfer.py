"""Export and import of local entries as JSON files.

The file format is a JSON array of ``[key, value]`` pairs, both strings.
Imports are ordinary local writes: they go through
``SyncEngine.set_value`` so imported synced keys are queued for upload
like any other change.  Engine bookkeeping keys are never exported and
are rejected on import.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel

from .storage.kvs import is_internal_key

if TYPE_CHECKING:
    from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class ImportSummary(BaseModel):
    """Counts reported after an import.

    Attributes:
        imported: Entries written to the local store.
        queued: Imported entries queued for upload (synced keys only).
        skipped: Entries ignored because they name reserved keys.
    """

    imported: int = 0
    queued: int = 0
    skipped: list[str] = []

    model_config = {"frozen": True}


def export_entries(
    engine: SyncEngine, path: Path, keys: list[str] | None = None
) -> int:
    """Write local entries to *path* atomically.

    Args:
        engine: Engine whose store is exported.
        path: Destination file.
        keys: Keys to export; defaults to every user key.

    Returns:
        Number of entries written.
    """
    selected = keys if keys is not None else engine.local_keys()
    entries: list[list[str]] = []
    for key in selected:
        if is_internal_key(key):
            continue
        value = engine.get_value(key)
        if value is not None:
            entries.append([key, value])

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(entries, fh, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise

    logger.info("Exported %d entries to %s", len(entries), path)
    return len(entries)


def read_entries(path: Path) -> list[tuple[str, str]]:
    """Parse an export file.

    Raises:
        ValueError: The file is not a non-empty array of string pairs.
    """
    with open(path, encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except ValueError as e:
            raise ValueError(f"{path} is not valid JSON: {e}") from e

    if not isinstance(data, list) or not data:
        raise ValueError(
            f"{path} is not an export file: expected a non-empty array of [key, value] pairs"
        )
    entries: list[tuple[str, str]] = []
    for index, item in enumerate(data):
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not all(isinstance(part, str) for part in item)
            or not item[0]
        ):
            raise ValueError(
                f"{path}: entry {index} is not a [key, value] pair of strings"
            )
        entries.append((item[0], item[1]))
    return entries


def import_entries(engine: SyncEngine, path: Path) -> ImportSummary:
    """Write every entry of *path* through the engine.

    The whole file is validated before anything is written.
    """
    entries = read_entries(path)
    imported = 0
    queued = 0
    skipped: list[str] = []
    for key, value in entries:
        if is_internal_key(key):
            logger.warning("Skipping reserved key %s in import", key)
            skipped.append(key)
            continue
        if engine.set_value(key, value):
            queued += 1
        imported += 1

    logger.info(
        "Imported %d entries from %s (%d queued for upload)",
        imported,
        path,
        queued,
    )
    return ImportSummary(imported=imported, queued=queued, skipped=skipped)
