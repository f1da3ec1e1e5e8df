from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from core.settings import STAGING_DIRNAME, STAGING_SUFFIX
from cdr_extraction.domain import ExtractionWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputLayout:
    """Filesystem layout for extraction output.

    Layout:
      output_root/
        _tmp/                               -> Staging area for the run being accumulated
          <prefix>_<start>_<end>.tsv
        <prefix>_<start>_<end>.tsv.gz       -> Published artifacts

    File names carry the window bounds, so runs for different windows never collide.
    """

    output_root: Path
    file_prefix: str = "cdr"
    staging_dirname: str = STAGING_DIRNAME

    # ----------------------------
    # Paths
    # ----------------------------
    @property
    def staging_root(self) -> Path:
        return self.output_root / self.staging_dirname

    def get_base_name_for(self, window: ExtractionWindow) -> str:
        return f"{self.file_prefix}_{window.start}_{window.end}{STAGING_SUFFIX}"

    def get_staging_path_for(self, window: ExtractionWindow) -> Path:
        return self.staging_root / self.get_base_name_for(window)

    def get_segment_path_for(self, staging_path: Path, table_name: str) -> Path:
        """Scratch file holding one table's rows until that table's query has fully succeeded."""
        return staging_path.with_name(f"{staging_path.name}.{table_name}.part")

    # ----------------------------
    # IO helpers
    # ----------------------------
    def ensure_directories(self) -> None:
        self.staging_root.mkdir(parents=True, exist_ok=True)

    def discard(self, path: Path) -> None:
        """Remove a staging or segment file if present, then prune an empty staging dir."""
        path.unlink(missing_ok=True)
        self.prune_staging_root()

    def prune_staging_root(self) -> bool:
        try:
            if self.staging_root.is_dir() and not any(self.staging_root.iterdir()):
                self.staging_root.rmdir()
                return True
        except OSError:
            pass
        return False

    def promote(self, source: Path, destination: Path) -> None:
        """
        Atomically move `source` to `destination`, replacing any earlier artifact.
        Retries briefly on transient locks (virus scanners, sync clients).
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        max_retries = 10
        for i in range(max_retries):
            try:
                os.replace(source, destination)
                return
            except PermissionError:
                if i == max_retries - 1:
                    raise
                time.sleep(0.05 * (i + 1))
