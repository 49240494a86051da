from __future__ import annotations

import uuid
from datetime import UTC, datetime
from pathlib import Path

import polars as pl


class AtomicSnapshotWriter:
    """Write diagnostic parquet snapshots of the record collection.

    Files land under `root_dir` via a temp file plus rename, so a reader never
    sees a half-written snapshot. Nothing here is read back by the pipeline.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir

    def snapshot_path(self, name: str, taken_at: datetime) -> Path:
        stamp = taken_at.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")
        return self._root_dir / f"{name}-{stamp}.parquet"

    def write_snapshot(self, frame: pl.DataFrame, name: str = "tokens", taken_at: datetime | None = None) -> Path:
        final_path = self.snapshot_path(name, taken_at or datetime.now(tz=UTC))
        final_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_dir = self._root_dir / ".tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = tmp_dir / f"{uuid.uuid4().hex}.parquet"

        frame.write_parquet(tmp_path, compression="zstd", statistics=True)
        tmp_path.replace(final_path)
        return final_path
