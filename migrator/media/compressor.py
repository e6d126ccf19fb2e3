"""Image compression through an external command-line tool."""

import logging
import os
import shutil
import subprocess
import tempfile
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..models.media import CompressionResult

logger = logging.getLogger(__name__)

# Quality per output extension
COMPRESSION_SETTINGS: Dict[str, Dict[str, Any]] = {
    "jpg": {"quality": 85},
    "jpeg": {"quality": 85},
    "png": {"quality": 90, "compression_level": 9},
    "webp": {"quality": 80},
    "gif": {"quality": 90},
}
DEFAULT_QUALITY = 85

SIZE_LIMIT_START_QUALITY = 90
SIZE_LIMIT_MIN_QUALITY = 10
SIZE_LIMIT_MAX_ATTEMPTS = 8

Runner = Callable[[List[str]], None]


class CompressionError(Exception):
    """Both compression and the verbatim fallback copy failed."""


def run_command(args: List[str], timeout: float = 60.0) -> None:
    """Run the compression tool, raising CalledProcessError on a non-zero exit."""
    subprocess.run(args, check=True, capture_output=True, timeout=timeout)


def format_bytes(size: float) -> str:
    """Human-readable byte count."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024.0
        index += 1
    return f"{round(size, 2):g} {units[index]}"


def _ratio(original_size: int, compressed_size: int) -> float:
    if original_size <= 0:
        return 0.0
    return (original_size - compressed_size) / original_size * 100


def _remove(path: Optional[str]) -> None:
    if path and os.path.exists(path):
        try:
            os.unlink(path)
        except OSError as e:
            logger.warning(f"Could not remove temp file {path}: {e}")


class ImageCompressor:
    """
    Compresses images with ImageMagick (or any tool taking the same flags).

    Output goes to uniquely named temp files; callers own those files and
    remove them with ``cleanup_compressed_files`` once uploaded.
    """

    def __init__(
        self,
        command: str = "magick",
        temp_dir: Optional[str] = None,
        runner: Optional[Runner] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the compressor.

        Args:
            command: Executable name, e.g. "magick" or "convert"
            temp_dir: Directory for compressed output (system temp by default)
            runner: Callable executing an argument list, replaceable in tests
            logger: Logger for compression messages
        """
        self.command = command
        self.temp_dir = temp_dir or tempfile.gettempdir()
        self._runner = runner or run_command
        self.logger = logger or logging.getLogger(__name__)
        os.makedirs(self.temp_dir, exist_ok=True)

    @staticmethod
    def _normalize_extension(extension: str) -> str:
        return extension.lower().lstrip(".")

    def _temp_path(self, prefix: str, extension: str, suffix: str = "") -> str:
        name = f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}{suffix}.{extension}"
        return os.path.join(self.temp_dir, name)

    def build_command(self, input_path: str, output_path: str, extension: str, quality: Optional[int] = None) -> List[str]:
        """Build the tool invocation for one output format."""
        ext = self._normalize_extension(extension)
        settings = COMPRESSION_SETTINGS.get(ext, {"quality": DEFAULT_QUALITY})
        args = [self.command, input_path, "-strip", "-quality", str(quality or settings["quality"])]
        if "compression_level" in settings:
            args += ["-define", f"png:compression-level={settings['compression_level']}"]
        if ext in ("jpg", "jpeg"):
            args += ["-sampling-factor", "4:2:0", "-interlace", "JPEG"]
        args.append(output_path)
        return args

    def compress_image(self, input_path: str, extension: str, quality: Optional[int] = None) -> CompressionResult:
        """
        Compress one image into a temp file.

        When the tool fails the original is copied verbatim instead and the
        result has ``success=False`` with a 0% ratio.

        Raises:
            CompressionError: if the fallback copy also fails
        """
        started = time.monotonic()
        ext = self._normalize_extension(extension)
        original_size = os.path.getsize(input_path)
        output_path = self._temp_path("compressed", ext)

        try:
            self._runner(self.build_command(input_path, output_path, ext, quality))
            compressed_size = os.path.getsize(output_path)
            result = CompressionResult(
                success=True,
                original_path=input_path,
                output_path=output_path,
                original_size=original_size,
                compressed_size=compressed_size,
                compression_ratio=_ratio(original_size, compressed_size),
                processing_time=time.monotonic() - started,
                quality=quality or COMPRESSION_SETTINGS.get(ext, {}).get("quality", DEFAULT_QUALITY),
            )
            self.logger.debug(
                f"Compressed {os.path.basename(input_path)}: {format_bytes(original_size)} -> "
                f"{format_bytes(compressed_size)} ({result.compression_ratio:.1f}% saved)"
            )
            return result
        except (subprocess.SubprocessError, OSError) as e:
            _remove(output_path)
            self.logger.warning(f"Compression failed for {input_path}, using original file: {e}")
            return self._fallback_copy(input_path, ext, original_size, started, str(e))

    def _fallback_copy(self, input_path: str, ext: str, original_size: int, started: float, error: str) -> CompressionResult:
        fallback_path = self._temp_path("fallback", ext)
        try:
            shutil.copyfile(input_path, fallback_path)
        except OSError as copy_error:
            _remove(fallback_path)
            raise CompressionError(
                f"Both compression and fallback failed for {input_path}: {error}; {copy_error}"
            ) from copy_error

        return CompressionResult(
            success=False,
            original_path=input_path,
            output_path=fallback_path,
            original_size=original_size,
            compressed_size=original_size,
            compression_ratio=0.0,
            processing_time=time.monotonic() - started,
            error=error,
        )

    def compress_to_size_limit(self, input_path: str, extension: str, max_bytes: int) -> CompressionResult:
        """
        Compress until the output fits ``max_bytes``.

        Files already under the limit get the regular compression. Larger
        files are retried from quality 90 downwards in steps of 10 (15 after
        a tool failure), at most 8 attempts, keeping only the latest output.
        If the limit is never met the last output is returned as a best
        effort; if every attempt failed the regular path is used.
        """
        ext = self._normalize_extension(extension)
        original_size = os.path.getsize(input_path)
        if original_size <= max_bytes:
            return self.compress_image(input_path, ext)

        self.logger.info(
            f"{os.path.basename(input_path)} ({format_bytes(original_size)}) exceeds "
            f"{format_bytes(max_bytes)}, compressing aggressively"
        )
        started = time.monotonic()
        quality = SIZE_LIMIT_START_QUALITY
        best: Optional[CompressionResult] = None

        for attempt in range(1, SIZE_LIMIT_MAX_ATTEMPTS + 1):
            output_path = self._temp_path("compressed", ext, suffix=f"_q{quality}")
            try:
                self._runner(self.build_command(input_path, output_path, ext, quality))
                compressed_size = os.path.getsize(output_path)
            except (subprocess.SubprocessError, OSError) as e:
                _remove(output_path)
                self.logger.debug(f"Attempt {attempt} at quality {quality} failed: {e}")
                quality = max(SIZE_LIMIT_MIN_QUALITY, quality - 15)
                continue

            if best is not None:
                _remove(best.output_path)
            best = CompressionResult(
                success=True,
                original_path=input_path,
                output_path=output_path,
                original_size=original_size,
                compressed_size=compressed_size,
                compression_ratio=_ratio(original_size, compressed_size),
                processing_time=time.monotonic() - started,
                quality=quality,
            )
            if compressed_size <= max_bytes:
                return best
            if quality == SIZE_LIMIT_MIN_QUALITY:
                break
            quality = max(SIZE_LIMIT_MIN_QUALITY, quality - 10)

        if best is not None:
            self.logger.warning(
                f"Best effort for {os.path.basename(input_path)}: {format_bytes(best.compressed_size)} "
                f"is still over {format_bytes(max_bytes)}"
            )
            return best

        return self.compress_image(input_path, ext)


def calculate_compression_stats(results: List[CompressionResult]) -> Dict[str, Any]:
    """Aggregate sizes and ratios over a set of compression results."""
    successful = [r for r in results if r.success]
    total_original = sum(r.original_size for r in results)
    total_compressed = sum(r.compressed_size for r in results)
    return {
        "total_files": len(results),
        "successful": len(successful),
        "failed": len(results) - len(successful),
        "total_original_size": total_original,
        "total_compressed_size": total_compressed,
        "total_saved": total_original - total_compressed,
        "average_compression_ratio": (
            sum(r.compression_ratio for r in successful) / len(successful) if successful else 0.0
        ),
        "overall_compression_ratio": _ratio(total_original, total_compressed),
        "total_processing_time": sum(r.processing_time for r in results),
    }


def cleanup_compressed_files(results: List[CompressionResult]) -> None:
    """Remove temp outputs left behind by compression results."""
    for result in results:
        if result.output_path and result.output_path != result.original_path:
            _remove(result.output_path)
