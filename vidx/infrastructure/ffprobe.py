import json
import logging
import math
import subprocess
from pathlib import Path
from typing import Any, Optional
from vidx.domain.errors import ProbeFailure


class FFprobeAdapter:
    """Wrapper around ffprobe to extract a file's duration."""

    def __init__(self, timeout: Optional[float] = None, debug: bool = False):
        self.timeout = timeout
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    @classmethod
    def _parse_time_base_duration(cls, duration_ts: Any, time_base: Any) -> float:
        if duration_ts is None or time_base is None:
            return 0.0
        time_base_text = str(time_base)
        if "/" not in time_base_text:
            return 0.0
        num_text, den_text = time_base_text.split("/", 1)
        num = cls._to_float(num_text)
        den = cls._to_float(den_text)
        if den == 0:
            return 0.0
        ticks = cls._to_float(duration_ts)
        if ticks <= 0:
            return 0.0
        return ticks * (num / den)

    def _build_command(self, file_path: Path) -> list:
        return [
            "ffprobe",
            "-v", "error",
            "-print_format", "json",
            "-show_entries", "format=duration:format_tags=DURATION:stream=duration,duration_ts,time_base:stream_tags=DURATION",
            "-select_streams", "v:0",
            str(file_path),
        ]

    def get_duration(self, file_path: Path) -> float:
        """Returns the duration in seconds or raises ProbeFailure."""
        cmd = self._build_command(file_path)
        if self.debug:
            self.logger.debug(f"FFPROBE_CMD: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise ProbeFailure(f"ffprobe not available: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ProbeFailure(f"ffprobe timed out after {self.timeout}s for {file_path}") from exc

        if result.returncode != 0:
            raise ProbeFailure(f"ffprobe failed for {file_path}: {(result.stderr or '').strip()}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProbeFailure(f"ffprobe returned invalid JSON for {file_path}") from exc

        # Fallback order: format.duration, format tags, stream.duration, stream tags, duration_ts/time_base
        fmt = data.get("format", {}) or {}
        stream = next(iter(data.get("streams", []) or []), {}) or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._to_float(stream.get("duration"))
        if duration <= 0:
            tags = stream.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._parse_time_base_duration(stream.get("duration_ts"), stream.get("time_base"))

        if not math.isfinite(duration) or duration <= 0:
            raise ProbeFailure(f"No usable duration for {file_path}")
        return duration
