import logging
import time
import uuid
from pathlib import Path

from ..config import OUTPUT_FORMATS

logger = logging.getLogger(__name__)


def _uuid() -> str:
    return str(uuid.uuid4())


def file_id_from_url(url: str) -> str:
    """Extract the file id from a preview URL or generated file name."""
    name = url.rstrip("/").rsplit("/", 1)[-1]
    return name.split(".", 1)[0]


class FileStorage:
    """Lays out generated sources, previews and model files under one root."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self.scad_dir = self._root / "scad"
        self.preview_dir = self._root / "previews"
        self._output_dirs = {fmt: self._root / fmt for fmt in OUTPUT_FORMATS}

    @property
    def directories(self) -> list[Path]:
        return [self.scad_dir, self.preview_dir, *self._output_dirs.values()]

    def initialize(self) -> None:
        for directory in self.directories:
            directory.mkdir(parents=True, exist_ok=True)
        logger.info("File storage initialized at %s", self._root)

    def save_source(self, source: str) -> tuple[str, Path]:
        """Write ``source`` under a fresh id and return ``(id, path)``."""
        file_id = _uuid()
        path = self.scad_dir / f"{file_id}.scad"
        path.write_text(source, encoding="utf-8")
        logger.info("Saved SCAD file %s (%d chars)", file_id, len(source))
        return file_id, path

    def preview_path(self, file_id: str) -> Path:
        return self.preview_dir / f"{file_id}.png"

    def output_path(self, file_id: str, fmt: str) -> Path:
        if fmt not in self._output_dirs:
            raise ValueError(f"Unsupported output format: {fmt}")
        return self._output_dirs[fmt] / f"{file_id}.{fmt}"

    def file_exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def cleanup_old_files(self, max_age_secs: float) -> int:
        """Delete generated files older than ``max_age_secs``. Returns the count removed."""
        now = time.time()
        deleted = 0
        errors = 0
        for directory in self.directories:
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                try:
                    if path.is_file() and now - path.stat().st_mtime > max_age_secs:
                        path.unlink()
                        deleted += 1
                except OSError as e:
                    errors += 1
                    logger.warning("Could not clean up %s: %s", path, e)
        logger.info("File cleanup completed: %d deleted, %d errors", deleted, errors)
        return deleted
