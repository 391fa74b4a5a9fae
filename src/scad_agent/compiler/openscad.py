import asyncio
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from ..config import OPENSCAD_BIN, OPENSCAD_TIMEOUT_SECS, PREVIEW_IMAGE_SIZE
from ..errors import CompilationError
from .storage import FileStorage

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(r"line (\d+)")
_COLUMN_RE = re.compile(r"column (\d+)")


@dataclass
class ParsedDiagnostic:
    message: str
    line: int | None = None
    column: int | None = None

    def location(self) -> str:
        parts = []
        if self.line is not None:
            parts.append(f"line {self.line}")
        if self.column is not None:
            parts.append(f"column {self.column}")
        return ", ".join(parts)


@dataclass
class PreviewResult:
    file_id: str
    source_path: Path
    preview_path: Path
    preview_url: str


@dataclass
class OutputResult:
    output_path: Path
    artifact_url: str


def parse_error(diagnostic: str) -> ParsedDiagnostic:
    """Best-effort extraction of ``line N`` / ``column N`` from compiler output.

    OpenSCAD's diagnostic format is not specified, so missing positions are normal.
    """
    line = _LINE_RE.search(diagnostic)
    column = _COLUMN_RE.search(diagnostic)
    return ParsedDiagnostic(
        message=diagnostic.strip(),
        line=int(line.group(1)) if line else None,
        column=int(column.group(1)) if column else None,
    )


def preview_url_for(file_id: str) -> str:
    return f"/api/previews/{file_id}.png"


def artifact_url_for(file_id: str, fmt: str) -> str:
    return f"/api/models/{file_id}/{fmt}"


class OpenSCADCompiler:
    """Runs the OpenSCAD binary to render previews and export model files."""

    def __init__(
        self,
        storage: FileStorage,
        binary: str = OPENSCAD_BIN,
        timeout_secs: float = OPENSCAD_TIMEOUT_SECS,
        image_size: str = PREVIEW_IMAGE_SIZE,
    ) -> None:
        self._storage = storage
        self._binary = binary
        self._timeout = timeout_secs
        self._image_size = image_size

    async def check_installation(self) -> bool:
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                [self._binary, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("OpenSCAD not found or not accessible: %s", e)
            return False
        # openscad prints its version on stderr
        output = (proc.stdout or proc.stderr).strip()
        if proc.returncode != 0:
            logger.warning(
                "OpenSCAD version check failed (exit %d): %s", proc.returncode, output[:500]
            )
            return False
        logger.info("OpenSCAD installation verified: %s", output)
        return True

    async def preview_model(self, source: str) -> PreviewResult:
        """Save ``source`` under a fresh id and render a PNG preview of it."""
        if not source.strip():
            raise CompilationError("Generated OpenSCAD source is empty")

        file_id, source_path = await asyncio.to_thread(self._storage.save_source, source)
        preview_path = self._storage.preview_path(file_id)
        await self._run(
            [
                "-o",
                str(preview_path),
                f"--imgsize={self._image_size}",
                "--autocenter",
                "--viewall",
                str(source_path),
            ],
            preview_path,
        )
        return PreviewResult(
            file_id=file_id,
            source_path=source_path,
            preview_path=preview_path,
            preview_url=preview_url_for(file_id),
        )

    async def generate_output(self, source_path: Path, file_id: str, fmt: str) -> OutputResult:
        """Export the final model file for an already-saved source."""
        output_path = self._storage.output_path(file_id, fmt)
        await self._run(["-o", str(output_path), str(source_path)], output_path)
        return OutputResult(output_path=output_path, artifact_url=artifact_url_for(file_id, fmt))

    async def _run(self, args: list[str], expected_output: Path) -> None:
        command = [self._binary, *args]
        logger.debug("Executing OpenSCAD command: %s", command)
        t0 = time.time()

        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                command,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error("OpenSCAD timed out after %ss: %s", self._timeout, expected_output)
            raise CompilationError(
                f"OpenSCAD compilation timed out after {self._timeout} seconds"
            ) from None
        except OSError as e:
            logger.error("Failed to run OpenSCAD: %s", e)
            raise CompilationError(f"Failed to run OpenSCAD: {e}") from e

        duration_ms = round((time.time() - t0) * 1000)
        stderr = (proc.stderr or "").strip()

        # OpenSCAD writes warnings to stderr even on success
        if proc.returncode != 0 or "ERROR" in stderr:
            logger.warning(
                "OpenSCAD compilation failed (exit %d, %dms): %s",
                proc.returncode,
                duration_ms,
                stderr[:500],
            )
            raise CompilationError(stderr or f"OpenSCAD exited with status {proc.returncode}")

        if stderr:
            logger.debug("OpenSCAD stderr (non-error): %s", stderr[:500])

        if not expected_output.is_file():
            raise CompilationError(f"OpenSCAD produced no output file: {expected_output.name}")

        logger.info("OpenSCAD wrote %s in %dms", expected_output.name, duration_ms)
