import logging
import subprocess
from pathlib import Path
from typing import Protocol, Sequence

import pyarrow as pa

from cdr_extraction.errors import FinalizationFailed

logger = logging.getLogger(__name__)


class Archiver(Protocol):
    suffix: str

    def compress(self, source: Path) -> Path:
        """Compress `source` next to itself, remove it, and return the compressed file."""
        ...


class GzipArchiver:
    """In-process gzip using pyarrow's compressed output stream."""

    suffix = ".gz"

    def __init__(self, chunk_size: int = 1 << 20):
        self.chunk_size = chunk_size

    def compress(self, source: Path) -> Path:
        target = source.with_name(source.name + self.suffix)
        try:
            with pa.OSFile(str(source), "rb") as src, pa.CompressedOutputStream(str(target), "gzip") as out:
                while chunk := src.read(self.chunk_size):
                    out.write(chunk)
        except (OSError, pa.ArrowException) as e:
            target.unlink(missing_ok=True)
            raise FinalizationFailed(f"gzip compression of {source} failed: {e}") from e

        source.unlink()
        logger.debug("Compressed %s -> %s", source.name, target.name)
        return target


class CommandArchiver:
    """
    Runs an external compression tool on the file, e.g. `gzip -f <file>`.

    The tool is expected to replace <file> with <file><suffix>.
    """

    def __init__(self, command: Sequence[str] = ("gzip", "-f"), suffix: str = ".gz", timeout_seconds: float | None = None):
        if not command:
            raise ValueError("Archive command must not be empty")
        self.command = list(command)
        self.suffix = suffix
        self.timeout_seconds = timeout_seconds

    def compress(self, source: Path) -> Path:
        cmd = [*self.command, str(source)]
        target = source.with_name(source.name + self.suffix)
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_seconds, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            target.unlink(missing_ok=True)
            raise FinalizationFailed(f"Could not run {' '.join(cmd)}: {e}", command=cmd) from e

        if completed.returncode != 0:
            target.unlink(missing_ok=True)
            raise FinalizationFailed(
                f"{' '.join(cmd)} exited with status {completed.returncode}: {completed.stderr.strip()}",
                returncode=completed.returncode,
                command=cmd,
            )

        if not target.exists():
            raise FinalizationFailed(f"{' '.join(cmd)} did not produce {target}", command=cmd)

        # Tools that keep the original (gzip -k) leave it behind; the run owns it, so drop it.
        source.unlink(missing_ok=True)
        return target
