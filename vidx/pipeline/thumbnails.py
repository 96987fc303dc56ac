"""Thumbnail generation on top of the ffmpeg frame extractor.

Two modes:
- fixed: a single frame at FIXED_OFFSET seconds, written straight to the
  output path;
- smart: SMART_SAMPLES frames spread over the video, extracted in parallel,
  and the largest JPEG wins (encoded size stands in for visual detail).
"""

import concurrent.futures
import hashlib
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from vidx.config.models import THUMBS_DIR_NAME
from vidx.domain.errors import ThumbnailFailure
from vidx.infrastructure.ffmpeg import FFmpegAdapter

FIXED_OFFSET = 1.0
SMART_SAMPLES = 5
TRAILER_GUARD = 0.2


def thumb_rel_path(rel_path: str) -> str:
    """Cache-relative thumbnail location: ``thumbs/<16 hex chars>.jpg``."""
    digest = hashlib.sha1(rel_path.encode("utf-8")).hexdigest()
    return f"{THUMBS_DIR_NAME}/{digest[:16]}.jpg"


def clamp_timestamp(value: float, duration: float) -> float:
    """Keep a seek position away from black leaders and trailers."""
    if not math.isfinite(duration) or duration <= 0:
        return FIXED_OFFSET
    upper = max(FIXED_OFFSET, duration - TRAILER_GUARD)
    return min(max(value, FIXED_OFFSET), upper)


def sample_timestamps(duration: float, samples: int = SMART_SAMPLES) -> List[float]:
    return [clamp_timestamp(duration * (i + 0.5) / samples, duration) for i in range(samples)]


@dataclass
class Candidate:
    index: int
    path: Path
    size: int


def select_best(candidates: Sequence[Candidate]) -> Candidate:
    """Largest candidate; the first one encountered wins a tie."""
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.size > best.size:
            best = candidate
    return best


class ThumbnailGenerator:
    """Produces a representative still image for a video."""

    def __init__(self, ffmpeg_adapter: FFmpegAdapter, smart: bool = False):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.smart = smart
        self.logger = logging.getLogger(__name__)

    def generate(self, input_path: Path, output_path: Path, duration: Optional[float] = None) -> Path:
        """Writes the thumbnail to ``output_path`` or raises ThumbnailFailure."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        has_duration = duration is not None and math.isfinite(duration) and duration > 0
        if not has_duration or not self.smart:
            return self.ffmpeg_adapter.extract_frame(input_path, output_path, FIXED_OFFSET)
        return self._generate_smart(input_path, output_path, duration)

    def _extract_candidate(self, input_path: Path, output_path: Path, index: int, timestamp: float) -> Candidate:
        tmp_path = output_path.with_name(f"{output_path.name}.tmp-{index}.jpg")
        self.ffmpeg_adapter.extract_frame(input_path, tmp_path, timestamp)
        return Candidate(index=index, path=tmp_path, size=tmp_path.stat().st_size)

    def _generate_smart(self, input_path: Path, output_path: Path, duration: float) -> Path:
        timestamps = sample_timestamps(duration)
        candidates: List[Candidate] = []
        errors: List[str] = []

        with concurrent.futures.ThreadPoolExecutor(max_workers=len(timestamps)) as executor:
            futures = [
                executor.submit(self._extract_candidate, input_path, output_path, i, ts)
                for i, ts in enumerate(timestamps)
            ]
            # Collected in submission order so ties resolve to the earliest sample
            for future in futures:
                try:
                    candidates.append(future.result())
                except (ThumbnailFailure, OSError) as exc:
                    errors.append(str(exc))

        try:
            if not candidates:
                raise ThumbnailFailure(
                    f"All {len(timestamps)} candidate frames failed for {input_path}: {errors[-1] if errors else ''}"
                )
            if errors:
                self.logger.warning(
                    f"THUMB_PARTIAL: {input_path.name} {len(errors)}/{len(timestamps)} candidates failed"
                )

            best = select_best(candidates)
            os.replace(best.path, output_path)
            self.logger.debug(f"THUMB_SMART: {input_path.name} picked #{best.index} ({best.size} bytes)")
            return output_path
        finally:
            self._cleanup_temporaries(output_path, len(timestamps))

    def _cleanup_temporaries(self, output_path: Path, count: int) -> None:
        # Best effort: includes partial files left by failed extractions
        for index in range(count):
            tmp_path = output_path.with_name(f"{output_path.name}.tmp-{index}.jpg")
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                self.logger.debug(f"Failed to remove temp candidate {tmp_path}: {exc}")
