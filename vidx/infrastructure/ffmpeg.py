import logging
import subprocess
from pathlib import Path
from typing import List, Optional
from vidx.domain.errors import ThumbnailFailure


class FFmpegAdapter:
    """Wrapper around ffmpeg for single-frame extraction."""

    def __init__(self, width: int = 320, height: int = 180, timeout: Optional[float] = None, debug: bool = False):
        self.width = width
        self.height = height
        self.timeout = timeout
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, input_path: Path, output_path: Path, timestamp: float) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        # Fill the canvas preserving aspect ratio, then crop the overflow
        vf = (
            f"scale={self.width}:{self.height}:force_original_aspect_ratio=increase,"
            f"crop={self.width}:{self.height}"
        )
        return [
            "ffmpeg",
            "-y",
            "-ss", f"{timestamp:.3f}",
            "-i", str(input_path),
            "-vf", vf,
            "-frames:v", "1",
            "-q:v", "2",
            str(output_path),
        ]

    def extract_frame(self, input_path: Path, output_path: Path, timestamp: float) -> Path:
        """Writes one JPEG frame at ``timestamp`` seconds to ``output_path``."""
        cmd = self._build_command(input_path, output_path, timestamp)
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise ThumbnailFailure(f"ffmpeg not available: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ThumbnailFailure(f"ffmpeg timed out after {self.timeout}s for {input_path}") from exc

        if result.returncode != 0:
            stderr_tail = "\n".join((result.stderr or "").strip().splitlines()[-3:])
            raise ThumbnailFailure(f"ffmpeg failed for {input_path} at {timestamp:.3f}s: {stderr_tail}")

        # ffmpeg exits 0 without writing a frame when seeking past the end
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ThumbnailFailure(f"ffmpeg produced no frame for {input_path} at {timestamp:.3f}s")
        return output_path
