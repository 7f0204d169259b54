"""
Encoder Command
===============

Builds the ffmpeg argument list for the relay.

Inputs:
    0: video: MJPEG image sequence on stdin (polled/pushed capture) or
       x11grab of the virtual display (delegated capture)
    1: audio: looped background track, or generated silence

Output:
    H.264 + AAC muxed into FLV and published to the RTMP target.
"""

import logging
import os
from typing import List

from webcast_relay.config import Settings, parse_bitrate_kbps
from webcast_relay.models.state import CaptureMode


logger = logging.getLogger(__name__)


def reads_stdin(settings: Settings) -> bool:
    """Whether the encoder is fed frames through its standard input."""
    return settings.capture.mode is not CaptureMode.DELEGATED


def video_input_args(settings: Settings) -> List[str]:
    video = settings.video
    if settings.capture.mode is CaptureMode.DELEGATED:
        return [
            "-f", "x11grab",
            "-framerate", str(video.fps),
            "-video_size", f"{video.width}x{video.height}",
            "-i", f"{settings.capture.display}+0,0",
        ]
    return [
        "-f", "image2pipe",
        "-c:v", "mjpeg",
        "-use_wallclock_as_timestamps", "1",
        "-thread_queue_size", "64",
        "-i", "pipe:0",
    ]


def audio_input_args(settings: Settings) -> List[str]:
    music_path = settings.audio.music_path
    if music_path and os.path.exists(music_path):
        logger.info(f"Background music: {music_path}")
        return ["-stream_loop", "-1", "-i", music_path]
    logger.info("Background music not found, using silence")
    return ["-f", "lavfi", "-i", "anullsrc=channel_layout=stereo:sample_rate=44100"]


def build_encoder_command(settings: Settings) -> List[str]:
    """
    Build the full ffmpeg command line.

    Args:
        settings: Relay configuration

    Returns:
        argv list; contains the secret stream key in its last element
    """
    video = settings.video
    encoder = settings.encoder
    gop = str(video.fps * encoder.gop_seconds)
    bufsize = f"{parse_bitrate_kbps(video.bitrate) * 2}k"

    args = [
        encoder.binary,
        "-hide_banner",
        "-y",
        "-loglevel", "info",
        "-threads", str(encoder.threads),
    ]
    if not reads_stdin(settings):
        args.append("-nostdin")

    args += video_input_args(settings)
    args += audio_input_args(settings)

    args += [
        # Video encoding
        "-c:v", "libx264",
        "-preset", encoder.preset,
        "-tune", "zerolatency",
        "-crf", str(encoder.crf),
        "-profile:v", "high",
        "-level", "4.2",
        "-vf", f"scale={video.width}:{video.height},format=yuv420p",
        "-pix_fmt", "yuv420p",
        "-r", str(video.fps),
        "-fps_mode", "cfr",
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
        "-b:v", video.bitrate,
        "-maxrate", video.bitrate,
        "-bufsize", bufsize,
        # Audio encoding
        "-c:a", "aac",
        "-b:a", settings.audio.bitrate,
        "-ar", "48000",
        "-ac", "2",
        "-af", f"volume={settings.audio.music_volume}",
        # Mapping
        "-map", "0:v",
        "-map", "1:a",
        # Output
        "-f", "flv",
        "-flvflags", "no_duration_filesize",
        settings.rtmp_target,
    ]
    return args


def mask_command(argv: List[str], secret: str) -> str:
    """Render argv for logging with the secret replaced."""
    if not secret:
        return " ".join(argv)
    return " ".join(arg.replace(secret, "****") for arg in argv)
