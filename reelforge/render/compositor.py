"""FFmpeg compositor for loop timelines.

Turns a ``Timeline`` plus staged local media into one H.264/AAC MP4:

- one input per segment, scaled with a little overscan so the pan has room,
  then cropped to the output frame, retimed, optionally mirrored and held on
  its last frame until the segment length is reached;
- all segments concatenated in order;
- a trailing fade when the timeline flags one;
- caption PNGs overlaid for their cue windows;
- the audio track (or silence) trimmed to the timeline and faded with it.
"""

import asyncio
import logging
from dataclasses import dataclass

from reelforge.config import get_settings
from reelforge.exceptions import RenderError
from reelforge.render.caption_renderer import CaptionOverlay
from reelforge.render.timeline_builder import Timeline, TimelineSegment

logger = logging.getLogger(__name__)

OUTPUT_RESOLUTIONS: dict[str, tuple[int, int]] = {
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
    "1:1": (1080, 1080),
}
DEFAULT_ASPECT_RATIO = "9:16"
OVERSCAN = 1.08
SILENCE_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=48000"


def output_resolution(aspect_ratio: str) -> tuple[int, int]:
    return OUTPUT_RESOLUTIONS.get(aspect_ratio, OUTPUT_RESOLUTIONS[DEFAULT_ASPECT_RATIO])


def _even(value: float) -> int:
    return max(2, int(round(value / 2.0)) * 2)


def _fmt(value: float) -> str:
    return f"{value:.3f}"


@dataclass
class OutputSpec:
    width: int
    height: int
    fps: int = 30
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    crf: int = 23
    preset: str = "fast"
    audio_bitrate: str = "128k"
    fade_seconds: float = 2.5

    @classmethod
    def for_aspect_ratio(cls, aspect_ratio: str) -> "OutputSpec":
        settings = get_settings()
        width, height = output_resolution(aspect_ratio)
        return cls(
            width=width,
            height=height,
            fps=settings.render_fps,
            video_codec=settings.render_video_codec,
            audio_codec=settings.render_audio_codec,
            crf=settings.render_crf,
            preset=settings.render_preset,
            audio_bitrate=settings.render_audio_bitrate,
            fade_seconds=settings.render_fade_seconds,
        )


def segment_filter(input_index: int, segment: TimelineSegment, output: OutputSpec) -> str:
    """Filter chain for one segment, labelled ``[v{input_index}]``."""
    transform = segment.transform
    scaled_w = _even(output.width * OVERSCAN * transform.scale)
    scaled_h = _even(output.height * OVERSCAN * transform.scale)
    crop_x = f"(iw-{output.width})/2{transform.pan_x:+.2f}"
    crop_y = f"(ih-{output.height})/2{transform.pan_y:+.2f}"

    steps = [
        f"scale={scaled_w}:{scaled_h}:force_original_aspect_ratio=increase",
        f"crop={output.width}:{output.height}:{crop_x}:{crop_y}",
        f"setpts=(PTS-STARTPTS)/{transform.speed:.4f}",
    ]
    if transform.mirror:
        steps.append("hflip")
    steps.extend(
        [
            f"tpad=stop_mode=clone:stop_duration={_fmt(segment.duration)}",
            f"trim=duration={_fmt(segment.duration)}",
            "setpts=PTS-STARTPTS",
            f"fps={output.fps}",
            "setsar=1",
            "format=yuv420p",
        ]
    )
    return f"[{input_index}:v]" + ",".join(steps) + f"[v{input_index}]"


def build_filter_graph(
    timeline: Timeline,
    output: OutputSpec,
    audio_input: int,
    caption_inputs: list[tuple[int, CaptionOverlay]] | None = None,
) -> str:
    chains = [segment_filter(index, segment, output) for index, segment in enumerate(timeline.segments)]

    labels = "".join(f"[v{index}]" for index in range(len(timeline.segments)))
    chains.append(f"{labels}concat=n={len(timeline.segments)}:v=1:a=0[vcat]")
    current = "vcat"

    total = timeline.total_duration
    fade = min(output.fade_seconds, total)
    fade_start = max(0.0, total - fade)
    has_fade = fade > 0 and any(segment.fade_out for segment in timeline.segments)
    if has_fade:
        chains.append(f"[{current}]fade=t=out:st={_fmt(fade_start)}:d={_fmt(fade)}[vfade]")
        current = "vfade"

    for position, (input_index, overlay) in enumerate(caption_inputs or []):
        label = f"vcap{position}"
        chains.append(
            f"[{current}][{input_index}:v]overlay=0:0:"
            f"enable='between(t,{_fmt(overlay.start_time)},{_fmt(overlay.end_time)})'[{label}]"
        )
        current = label
    chains.append(f"[{current}]null[vout]")

    audio_steps = [f"atrim=duration={_fmt(total)}", "asetpts=PTS-STARTPTS"]
    if has_fade:
        audio_steps.append(f"afade=t=out:st={_fmt(fade_start)}:d={_fmt(fade)}")
    chains.append(f"[{audio_input}:a]" + ",".join(audio_steps) + "[aout]")

    return ";".join(chains)


class FFmpegCompositor:
    def __init__(self, output: OutputSpec, ffmpeg_path: str | None = None):
        self.output = output
        self.ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path

    def build_command(
        self,
        timeline: Timeline,
        media_paths: dict[str, str],
        output_path: str,
        audio_path: str | None = None,
        captions: list[CaptionOverlay] | None = None,
    ) -> list[str]:
        """Full ffmpeg argv. ``media_paths`` maps clip id -> staged local file."""
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "error"]

        for segment in timeline.segments:
            path = media_paths.get(segment.clip_id)
            if path is None:
                raise RenderError(f"Clip {segment.clip_id} was not staged")
            cmd.extend(["-i", path])

        audio_input = len(timeline.segments)
        if audio_path:
            cmd.extend(["-i", audio_path])
        else:
            cmd.extend(["-f", "lavfi", "-t", _fmt(timeline.total_duration), "-i", SILENCE_SOURCE])

        caption_inputs: list[tuple[int, CaptionOverlay]] = []
        for offset, overlay in enumerate(captions or []):
            cmd.extend(["-i", overlay.image_path])
            caption_inputs.append((audio_input + 1 + offset, overlay))

        graph = build_filter_graph(timeline, self.output, audio_input, caption_inputs)
        cmd.extend(
            [
                "-filter_complex", graph,
                "-map", "[vout]",
                "-map", "[aout]",
                "-c:v", self.output.video_codec,
                "-preset", self.output.preset,
                "-crf", str(self.output.crf),
                "-pix_fmt", "yuv420p",
                "-r", str(self.output.fps),
                "-c:a", self.output.audio_codec,
                "-b:a", self.output.audio_bitrate,
                "-t", _fmt(timeline.total_duration),
                "-movflags", "+faststart",
                output_path,
            ]
        )
        return cmd

    async def compose(
        self,
        timeline: Timeline,
        media_paths: dict[str, str],
        output_path: str,
        audio_path: str | None = None,
        captions: list[CaptionOverlay] | None = None,
    ) -> str:
        cmd = self.build_command(timeline, media_paths, output_path, audio_path, captions)
        logger.info(
            f"[RENDER] Encoding {len(timeline.segments)} segment(s), "
            f"{timeline.total_duration:.2f}s at {self.output.width}x{self.output.height}"
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RenderError(
                f"FFmpeg binary not found: {self.ffmpeg_path}", code="ENCODER_UNAVAILABLE"
            ) from e

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace")
            logger.error(f"[RENDER] FFmpeg failed ({proc.returncode}): {stderr_text[-2000:]}")
            raise RenderError(f"FFmpeg exited with {proc.returncode}: {stderr_text[-500:]}")
        return output_path
