"""
FFmpeg Encoder Driver

Declarative job description (inputs, filters, output options) executed as
an asyncio subprocess, so a long encode suspends only its own request.
"""

import asyncio
from pathlib import Path
from typing import Optional, List, Union

from toolbox.core.config import settings
from toolbox.core.exceptions import TransformFailure
from toolbox.core.logging import get_logger

logger = get_logger(__name__)

# How much of stderr survives into the error message
_STDERR_TAIL_LINES = 6


class FfmpegJob:
    """
    Builder for one ffmpeg invocation.

    Usage:
        job = (FfmpegJob()
               .input(src)
               .video_filter("fps=10")
               .option("-loop", "0")
               .output(dst))
        await job.run()
    """

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or settings.FFMPEG_BINARY
        self._inputs: List[List[str]] = []
        self._video_filters: List[str] = []
        self._audio_filters: List[str] = []
        self._options: List[str] = []
        self._output: Optional[str] = None

    def input(self, path: Union[str, Path], *options: str) -> "FfmpegJob":
        """Add an input; options are placed before its -i."""
        self._inputs.append([*options, "-i", str(path)])
        return self

    def video_filter(self, expression: str) -> "FfmpegJob":
        self._video_filters.append(expression)
        return self

    def audio_filter(self, expression: str) -> "FfmpegJob":
        self._audio_filters.append(expression)
        return self

    def option(self, *args: str) -> "FfmpegJob":
        self._options.extend(str(a) for a in args)
        return self

    def output(self, path: Union[str, Path]) -> "FfmpegJob":
        self._output = str(path)
        return self

    def argv(self) -> List[str]:
        if not self._inputs:
            raise ValueError("ffmpeg job has no input")
        if self._output is None:
            raise ValueError("ffmpeg job has no output")

        args = [self.binary, "-hide_banner", "-nostdin", "-loglevel", "error", "-y"]
        for input_args in self._inputs:
            args.extend(input_args)
        if self._video_filters:
            args.extend(["-filter:v", ",".join(self._video_filters)])
        if self._audio_filters:
            args.extend(["-filter:a", ",".join(self._audio_filters)])
        args.extend(self._options)
        args.append(self._output)
        return args

    async def run(self, timeout: Optional[float] = None):
        await run_ffmpeg(self.argv(), timeout=timeout)


async def run_ffmpeg(argv: List[str], timeout: Optional[float] = None):
    """
    Run ffmpeg and wait for it without blocking the event loop.

    Raises:
        TransformFailure: binary missing, non-zero exit, or timeout
    """
    logger.debug("ffmpeg_starting", argv=argv)

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise TransformFailure(
            f"Encoder '{argv[0]}' is not installed on this server.",
            stage="dispatched"
        )
    except OSError as e:
        raise TransformFailure(f"Could not start encoder: {e.strerror or e}", stage="dispatched")

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        raise TransformFailure(
            f"Encoder did not finish within {timeout:g} seconds.",
            stage="dispatched",
            details={"timeout_seconds": timeout}
        )
    finally:
        # Timeout or cancellation by the coordinator: do not leave the encoder running
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    if process.returncode != 0:
        tail = _stderr_tail(stderr)
        logger.warning("ffmpeg_failed", returncode=process.returncode, stderr=tail)
        raise TransformFailure(
            f"Encoder failed: {tail}" if tail else f"Encoder exited with status {process.returncode}.",
            stage="dispatched",
            details={"returncode": process.returncode}
        )


def _stderr_tail(stderr: Optional[bytes]) -> str:
    if not stderr:
        return ""
    lines = [l.strip() for l in stderr.decode("utf-8", errors="replace").splitlines() if l.strip()]
    return " | ".join(lines[-_STDERR_TAIL_LINES:])


async def check_ffmpeg(binary: Optional[str] = None) -> bool:
    """Probe the encoder once at startup."""
    try:
        await run_ffmpeg([binary or settings.FFMPEG_BINARY, "-version"], timeout=10)
        return True
    except TransformFailure:
        return False


def concat_manifest(paths: List[Path]) -> str:
    """Concat demuxer manifest, one quoted 'file' line per input."""
    lines = []
    for path in paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"
