"""
Video Transforms (ffmpeg)

Compression, container conversion, concatenation, GIF extraction, speed
change and audio extraction. All of them shell out to the encoder through
FfmpegJob and suspend on the subprocess.
"""

import asyncio
from typing import Optional, Dict, Any

from toolbox.core.config import settings
from toolbox.core.exceptions import TransformFailure, ValidationFailure
from toolbox.engines.ffmpeg import FfmpegJob, concat_manifest
from toolbox.engines.transforms.base import (
    Arity,
    ParamKind,
    ParamSpec,
    Transform,
    TransformContext,
)

# atempo only accepts this range without chaining several filters
MIN_SPEED = 0.5
MAX_SPEED = 2.0

GIF_FPS = 10

VIDEO_CONTAINERS = ("mp4", "webm", "mov", "mkv", "avi")


class VideoTransform(Transform):
    content_kind = "video"
    output_extension = None

    def resolve_extension(self, input_suffix: str, params: Dict[str, Any]) -> str:
        return self.output_extension or input_suffix or "mp4"


class VideoCompressor(VideoTransform):
    """Re-encode to H.264 at a fixed constant rate factor instead of a bitrate."""

    operation = "video-compressor"
    description = "Reduce video size with a constant-quality H.264 re-encode."
    output_prefix = "compressed"
    output_extension = "mp4"
    success_message = "Video compressed successfully!"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        await (
            FfmpegJob()
            .input(ctx.input_paths[0])
            .option("-c:v", "libx264", "-crf", str(settings.VIDEO_CRF), "-preset", "medium")
            .option("-c:a", "aac", "-b:a", "128k")
            .option("-movflags", "+faststart")
            .output(ctx.output_path)
            .run()
        )
        return None


class VideoConverter(VideoTransform):
    operation = "video-converter"
    description = "Transcode a video into another container format."
    params = (
        ParamSpec(name="format", required=True, choices=VIDEO_CONTAINERS,
                  description="Target container"),
    )
    output_prefix = "converted"
    success_message = "Video converted successfully!"

    def resolve_extension(self, input_suffix: str, params: Dict[str, Any]) -> str:
        return params["format"]

    async def run(self, ctx: TransformContext) -> Optional[str]:
        await FfmpegJob().input(ctx.input_paths[0]).output(ctx.output_path).run()
        return None


class VideoMerger(VideoTransform):
    """
    Stream-copy concatenation through the concat demuxer.

    Inputs must share container and codec parameters. Mismatched inputs are
    not normalized; the encoder's own error is surfaced as TransformFailure.
    """

    operation = "video-merger"
    arity = Arity.MULTIPLE
    description = "Concatenate two or more videos without re-encoding."
    output_prefix = "merged"
    success_message = "Videos merged successfully!"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        if len(ctx.inputs) < 2:
            raise TransformFailure("At least two videos are required to merge.")

        manifest = ctx.scratch_file("concat-list.txt")
        await asyncio.to_thread(
            manifest.path.write_text, concat_manifest(ctx.input_paths), encoding="utf-8"
        )

        await (
            FfmpegJob()
            .input(manifest.path, "-f", "concat", "-safe", "0")
            .option("-c", "copy")
            .output(ctx.output_path)
            .run()
        )
        return None


class VideoToGif(VideoTransform):
    operation = "video-to-gif"
    description = "Animated GIF at 10 fps, width-limited, never upscaled."
    params = (
        ParamSpec(name="width", kind=ParamKind.INT, default=480, minimum=16, maximum=1920,
                  description="Maximum output width in pixels"),
    )
    output_prefix = "animated"
    output_extension = "gif"
    success_message = "GIF created successfully!"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        width = ctx.params["width"]
        await (
            FfmpegJob()
            .input(ctx.input_paths[0])
            # Quotes keep the comma inside min() out of the filter chain
            .video_filter(f"fps={GIF_FPS}")
            .video_filter(f"scale='min({width},iw)':-1:flags=lanczos")
            .option("-loop", "0")
            .output(ctx.output_path)
            .run()
        )
        return None


class VideoSpeedChanger(VideoTransform):
    """Scale video timestamps by 1/speed and audio tempo by speed."""

    operation = "video-speed-changer"
    description = "Speed a video up or slow it down, audio included."
    params = (
        ParamSpec(name="speed", kind=ParamKind.FLOAT, default=1.5,
                  description=f"Playback multiplier, {MIN_SPEED}-{MAX_SPEED}"),
    )
    output_prefix = "speed"
    success_message = "Video speed changed successfully!"

    def validate(self, params: Dict[str, Any]):
        speed = params["speed"]
        if not MIN_SPEED <= speed <= MAX_SPEED:
            raise ValidationFailure(
                f"Speed must be between {MIN_SPEED} and {MAX_SPEED}.",
                details={"parameter": "speed", "value": speed}
            )

    async def run(self, ctx: TransformContext) -> Optional[str]:
        speed = ctx.params["speed"]
        await (
            FfmpegJob()
            .input(ctx.input_paths[0])
            .video_filter(f"setpts=PTS/{speed:g}")
            .audio_filter(f"atempo={speed:g}")
            .option("-map", "0:v:0", "-map", "0:a?")
            .output(ctx.output_path)
            .run()
        )
        return None


class VideoToMp3(VideoTransform):
    operation = "video-to-mp3"
    description = "Extract the audio track as 128 kbit/s MP3."
    output_prefix = "audio"
    output_extension = "mp3"
    success_message = "Conversion successful!"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        await (
            FfmpegJob()
            .input(ctx.input_paths[0])
            .option("-vn", "-c:a", "libmp3lame", "-b:a", "128k")
            .output(ctx.output_path)
            .run()
        )
        return None


VIDEO_TRANSFORMS = (
    VideoCompressor,
    VideoConverter,
    VideoMerger,
    VideoToGif,
    VideoSpeedChanger,
    VideoToMp3,
)
