import logging
from pathlib import Path

from cdr_extraction.archivers import Archiver
from cdr_extraction.errors import FinalizationFailed
from cdr_extraction.output_layout import OutputLayout

logger = logging.getLogger(__name__)


class Finalizer:
    """Publishes a finished staging file, or removes it when the run is aborted."""

    def __init__(self, archiver: Archiver, layout: OutputLayout, *, logger: logging.Logger = logger):
        self.archiver = archiver
        self.layout = layout
        self.logger = logger

    def publish(self, staging_path: Path) -> Path:
        compressed = self.archiver.compress(staging_path)
        destination = self.layout.output_root / compressed.name
        try:
            self.layout.promote(compressed, destination)
        except OSError as e:
            self.layout.discard(compressed)
            raise FinalizationFailed(f"Could not move {compressed} to {destination}: {e}") from e

        self.layout.prune_staging_root()
        self.logger.info("Published %s", destination)
        return destination

    def abort(self, staging_path: Path) -> None:
        # The archiver may have got as far as writing the compressed file.
        for leftover in (staging_path, staging_path.with_name(staging_path.name + self.archiver.suffix)):
            if leftover.exists():
                self.logger.debug("Removing partial output %s", leftover)
            try:
                self.layout.discard(leftover)
            except OSError as e:
                # Leave it behind; the error that caused the abort is the one to report.
                self.logger.debug("Could not remove %s: %s", leftover, e)
