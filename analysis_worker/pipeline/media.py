import asyncio
import glob
import os
import re
import shutil
import uuid
import ffmpeg
import logging
from typing import List, Optional, Dict, Any, Tuple

from ..config import WorkerConfig
from ..errors import ExtractionFailure
from ..models import Frame
from ..adapters.base import MediaSourceAdapter

logger = logging.getLogger("analysis_worker")


YTDLP_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
YTDLP_SINGLE_FILE_FORMAT = "best[ext=mp4]/best"
ACCESS_ERROR_MARKERS = ("login required", "rate-limit", "Requested content is not available")
FRAME_PATTERN = "frame_%05d.jpg"
_FRAME_NUMBER = re.compile(r"frame_(\d+)\.jpg$")


def has_cookie_lines(path: str) -> bool:
    """True when a Netscape cookies file holds at least one non-comment cookie"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.warning(f"Could not read cookies file {path}: {e}")
        return False
    return any(
        line.strip() and not line.strip().startswith(("#", "//")) and len(line.split("\t")) >= 6
        for line in lines
    )


def _remove_partial_downloads(job_dir: str) -> None:
    for path in glob.glob(os.path.join(job_dir, "source.*")):
        os.remove(path)


def _ffmpeg_error_text(error: ffmpeg.Error) -> str:
    stderr = error.stderr.decode('utf-8', errors='ignore') if error.stderr else str(error)
    return stderr.strip()[-500:]


class MediaExtractor:
    """Acquires source videos and runs ffmpeg to sample frames and audio"""

    def __init__(self, config: WorkerConfig, s3_source: Optional[MediaSourceAdapter] = None):
        self.config = config
        self.s3_source = s3_source

    def create_job_dir(self, job_id: str) -> str:
        """Create a per-job working directory with a unique suffix"""
        job_dir = os.path.join(self.config.TEMP_DIR, f"{job_id}_{uuid.uuid4().hex[:8]}")
        os.makedirs(job_dir, exist_ok=True)
        return job_dir

    async def acquire(self, source_ref: str, job_dir: str) -> str:
        """
        Make the source video available as a local file.

        Args:
            source_ref: Local path, http(s) URL or s3:// URI
            job_dir: Per-job working directory

        Returns:
            Path to a local video file
        """
        if source_ref.startswith("s3://"):
            if self.s3_source is None:
                raise ExtractionFailure(f"No S3 source configured for {source_ref}")
            return await asyncio.to_thread(self.s3_source.download, source_ref, job_dir)

        if source_ref.startswith(("http://", "https://")):
            return await self._download_with_ytdlp(source_ref, job_dir)

        if not os.path.isfile(source_ref):
            raise ExtractionFailure(f"Source video not found: {source_ref}")
        return source_ref

    def download_strategies(self, url: str, output_template: str) -> List[Tuple[str, List[str]]]:
        """Ordered yt-dlp invocations, tried until one produces a file"""
        merged = ["-f", YTDLP_FORMAT, "--merge-output-format", "mp4"]
        common = ["--no-playlist", "-o", output_template]
        strategies = []
        cookies = self.config.YTDLP_COOKIES_FILE
        if cookies and has_cookie_lines(cookies):
            strategies.append(("cookies_file", ["yt-dlp", *merged, *common, "--cookies", cookies, url]))
        strategies.append(("no_cookies", ["yt-dlp", *merged, *common, url]))
        strategies.append(("embed_only", ["yt-dlp", "-f", YTDLP_SINGLE_FILE_FORMAT, *common, "--no-check-certificate", url]))
        return strategies

    async def _download_with_ytdlp(self, url: str, job_dir: str) -> str:
        output_template = os.path.join(job_dir, "source.%(ext)s")
        strategies = self.download_strategies(url, output_template)
        last_error = None

        for name, cmd in strategies:
            logger.info(f"Downloading {url} with yt-dlp strategy {name}")
            try:
                return await self._run_ytdlp(cmd, job_dir, url)
            except ExtractionFailure as e:
                last_error = e
                _remove_partial_downloads(job_dir)
                if any(marker in str(e) for marker in ACCESS_ERROR_MARKERS):
                    logger.warning(f"yt-dlp strategy {name} blocked by the host, trying next strategy")
                else:
                    logger.warning(f"yt-dlp strategy {name} failed, trying next strategy: {e}")

        raise ExtractionFailure(
            f"Failed to download {url} after trying {len(strategies)} strategies: {last_error}"
        )

    async def _run_ytdlp(self, cmd: List[str], job_dir: str, url: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ExtractionFailure("yt-dlp is not installed or not on PATH") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.config.YTDLP_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExtractionFailure(f"yt-dlp timed out after {self.config.YTDLP_TIMEOUT_SEC}s")

        if process.returncode != 0:
            message = stderr.decode('utf-8', errors='ignore').strip()[-500:]
            raise ExtractionFailure(f"yt-dlp failed with exit code {process.returncode}: {message}")

        downloads = sorted(glob.glob(os.path.join(job_dir, "source.*")))
        mp4s = [p for p in downloads if p.endswith(".mp4")]
        if not downloads:
            raise ExtractionFailure(f"yt-dlp produced no file for {url}")
        return (mp4s or downloads)[0]

    async def _probe(self, path: str) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(ffmpeg.probe, path)
        except ffmpeg.Error as e:
            raise ExtractionFailure(f"ffprobe failed for {path}: {_ffmpeg_error_text(e)}") from e

    async def probe_duration(self, path: str) -> float:
        """Duration in seconds from the container, falling back to the video stream"""
        probe = await self._probe(path)
        duration = float(probe.get('format', {}).get('duration', 0) or 0)
        if duration <= 0:
            video_stream = next(
                (s for s in probe.get('streams', []) if s.get('codec_type') == 'video'),
                None
            )
            if video_stream is not None:
                duration = float(video_stream.get('duration', 0) or 0)
        if duration <= 0:
            raise ExtractionFailure(f"Could not determine duration of {path}")
        return duration

    async def has_audio(self, path: str) -> bool:
        probe = await self._probe(path)
        return any(s.get('codec_type') == 'audio' for s in probe.get('streams', []))

    async def extract_frames(self, path: str, fps: int, out_dir: str) -> List[Frame]:
        """
        Sample frames at a fixed rate.

        Returns:
            Frames ordered by index, timestamp = index / fps
        """
        frames_dir = os.path.join(out_dir, "frames")
        os.makedirs(frames_dir, exist_ok=True)
        pattern = os.path.join(frames_dir, FRAME_PATTERN)

        logger.info(f"Extracting frames at {fps} fps: {path}")
        stream = (
            ffmpeg
            .input(path)
            .filter('fps', fps=fps)
            .output(pattern, **{'q:v': 2})
            .overwrite_output()
        )
        try:
            await asyncio.to_thread(stream.run, quiet=True)
        except ffmpeg.Error as e:
            raise ExtractionFailure(f"Frame extraction failed: {_ffmpeg_error_text(e)}") from e

        files = [
            f for f in glob.glob(os.path.join(frames_dir, "frame_*.jpg"))
            if _FRAME_NUMBER.search(f)
        ]
        files.sort(key=lambda f: int(_FRAME_NUMBER.search(f).group(1)))
        if not files:
            raise ExtractionFailure(f"No frames extracted from {path}")

        logger.info(f"Extracted {len(files)} frames")
        return [
            Frame(index=i, timestamp=round(i / fps, 3), path=f)
            for i, f in enumerate(files)
        ]

    async def extract_audio(self, path: str, out_dir: str) -> Optional[str]:
        """Extract a mono 16kHz mp3, or None when the source has no audio stream"""
        if not await self.has_audio(path):
            logger.info(f"No audio stream in {path}, skipping audio extraction")
            return None

        audio_path = os.path.join(out_dir, "audio.mp3")
        stream = (
            ffmpeg
            .input(path)
            .audio
            .output(audio_path, acodec='libmp3lame', ac=1, ar=16000, audio_bitrate='64k')
            .overwrite_output()
        )
        try:
            await asyncio.to_thread(stream.run, quiet=True)
        except ffmpeg.Error as e:
            raise ExtractionFailure(f"Audio extraction failed: {_ffmpeg_error_text(e)}") from e

        if not os.path.exists(audio_path):
            raise ExtractionFailure(f"Audio extraction produced no file for {path}")
        return audio_path

    def cleanup(self, job_dir: Optional[str]) -> None:
        """Best-effort removal of a job's working directory"""
        if not job_dir or not os.path.exists(job_dir):
            return
        try:
            shutil.rmtree(job_dir)
            logger.info(f"Removed working directory {job_dir}")
        except OSError as e:
            logger.warning(f"Failed to remove working directory {job_dir}: {e}")
