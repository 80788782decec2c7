"""
FFmpeg transcoder.

Each tier produces an MP4 plus an HLS variant playlist under
encoded/<video_id>/<tier>/. Phase 1 encodes the LOW tier so the video is
watchable quickly; phase 2 adds the HIGH tier and the master manifest.
"""
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..logging_config import video_logger
from .blob_store import LocalBlobStore
from .errors import TranscodeError


@dataclass(frozen=True)
class EncodingPreset:
    name: str
    width: int
    height: int
    video_bitrate: str
    audio_bitrate: str
    bandwidth: int  # for the HLS master playlist


PRESETS = {
    "480p": EncodingPreset("480p", 854, 480, "1200k", "96k", 1296000),
    "720p": EncodingPreset("720p", 1280, 720, "2500k", "128k", 2628000),
}

HLS_SEGMENT_DURATION = 6  # seconds


class Tier(Enum):
    LOW = "low"     # phase 1
    HIGH = "high"   # phase 2
    ALL = "all"     # legacy single pass


TIER_PRESETS = {
    Tier.LOW: [PRESETS["480p"]],
    Tier.HIGH: [PRESETS["720p"]],
    Tier.ALL: [PRESETS["480p"], PRESETS["720p"]],
}


@dataclass
class EncodeOutput:
    tier: Tier
    output_location: str                   # MP4
    manifest_location: Optional[str] = None  # HLS playlist
    preset: Optional[EncodingPreset] = None


def encoded_prefix(video_id: str) -> str:
    return f"encoded/{video_id}"


class FFmpegTranscoder:
    """Runs ffmpeg against files in the blob store"""

    def __init__(self, blob_store: LocalBlobStore, ffmpeg_path: str = "ffmpeg", timeout: int = 600):
        self.blob_store = blob_store
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """Check ffmpeg once and remember the answer"""
        if self._available is None:
            try:
                result = subprocess.run([self.ffmpeg_path, "-version"], capture_output=True, text=True, timeout=10)
                self._available = result.returncode == 0
            except (OSError, subprocess.SubprocessError):
                self._available = False
        return self._available

    def encode(self, video_id: str, input_location: str, tier: Tier) -> EncodeOutput:
        """
        Encode one tier. Raises TranscodeError on failure or timeout.

        Tier.ALL encodes every preset and returns the master manifest as
        manifest_location and the highest preset's MP4 as output_location.
        """
        source = self.blob_store.path(input_location)
        if not source.exists():
            raise TranscodeError(f"Input blob not found: {input_location}")

        outputs = [self._encode_preset(video_id, str(source), preset, tier) for preset in TIER_PRESETS[tier]]
        if tier is not Tier.ALL:
            return outputs[0]

        master = self.write_master_manifest(video_id, outputs)
        return EncodeOutput(tier=tier, output_location=outputs[-1].output_location, manifest_location=master)

    def _encode_preset(self, video_id: str, source: str, preset: EncodingPreset, tier: Tier) -> EncodeOutput:
        prefix = f"{encoded_prefix(video_id)}/{preset.name}"
        mp4_location = f"{prefix}/video.mp4"
        playlist_location = f"{prefix}/playlist.m3u8"

        mp4_path = self.blob_store.prepare(mp4_location)
        playlist_path = self.blob_store.prepare(playlist_location)
        segment_pattern = str(playlist_path.parent / "seg_%03d.ts")

        scale = (
            f"scale={preset.width}:{preset.height}:force_original_aspect_ratio=decrease,"
            f"pad={preset.width}:{preset.height}:(ow-iw)/2:(oh-ih)/2"
        )

        self._run([
            '-i', source,
            '-vf', scale,
            '-c:v', 'libx264', '-preset', 'fast', '-crf', '23',
            '-c:a', 'aac', '-b:a', preset.audio_bitrate,
            '-movflags', '+faststart',
            str(mp4_path),
        ], f"MP4 {preset.name}")

        self._run([
            '-i', source,
            '-vf', scale,
            '-c:v', 'libx264', '-preset', 'fast', '-crf', '23',
            '-b:v', preset.video_bitrate, '-maxrate', preset.video_bitrate,
            '-c:a', 'aac', '-b:a', preset.audio_bitrate,
            '-hls_time', str(HLS_SEGMENT_DURATION),
            '-hls_playlist_type', 'vod',
            '-hls_segment_filename', segment_pattern,
            '-f', 'hls',
            str(playlist_path),
        ], f"HLS {preset.name}")

        return EncodeOutput(tier=tier, output_location=mp4_location, manifest_location=playlist_location, preset=preset)

    def existing_output(self, video_id: str, tier: Tier) -> EncodeOutput:
        """Where a previous run left this tier's output"""
        preset = TIER_PRESETS[tier][-1]
        prefix = f"{encoded_prefix(video_id)}/{preset.name}"
        return EncodeOutput(
            tier=tier,
            output_location=f"{prefix}/video.mp4",
            manifest_location=f"{prefix}/playlist.m3u8",
            preset=preset,
        )

    def write_master_manifest(self, video_id: str, variants: List[EncodeOutput]) -> str:
        """Master HLS playlist listing every variant, lowest bandwidth first"""
        lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
        for variant in sorted(variants, key=lambda v: v.preset.bandwidth if v.preset else 0):
            if not variant.manifest_location or not variant.preset:
                continue
            preset = variant.preset
            lines.append(f"#EXT-X-STREAM-INF:BANDWIDTH={preset.bandwidth},RESOLUTION={preset.width}x{preset.height}")
            lines.append(f"{preset.name}/playlist.m3u8")
        return self.blob_store.put_text(f"{encoded_prefix(video_id)}/manifest.m3u8", "\n".join(lines) + "\n")

    def _run(self, args: List[str], label: str) -> None:
        cmd = [self.ffmpeg_path, '-y', '-hide_banner', '-loglevel', 'warning'] + args
        video_logger.debug(f"Running ffmpeg ({label})", command=" ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise TranscodeError(f"{label} timed out after {self.timeout}s")
        except OSError as e:
            raise TranscodeError(f"{label} could not start ffmpeg: {e}")

        if result.returncode != 0:
            raise TranscodeError(f"{label} failed: {result.stderr[:500]}")
