"""Audio extraction through the yt-dlp executable.

Each request runs two yt-dlp processes one after the other:
- a metadata probe (`--dump-json`) for title and duration
- the extraction itself, re-encoding to MP3 into the asset store

A failed request never leaves a file behind in the store.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from asset_store import AssetStore
from exceptions import (
    ExtractionError,
    ExtractionFailed,
    InvalidInput,
    MetadataFetchFailed,
    MetadataParseFailed,
    OutputMissing,
    ProcessError,
    ProcessTimeout,
    ToolNotFound,
)

logger = logging.getLogger(__name__)

YTDLP_BIN = os.getenv("YTDLP_BIN", "yt-dlp") or "yt-dlp"
INFO_TIMEOUT = float(os.getenv("YTDLP_INFO_TIMEOUT", "120") or "120")
DOWNLOAD_TIMEOUT = float(os.getenv("YTDLP_DOWNLOAD_TIMEOUT", "900") or "900")
VERSION_TIMEOUT = 10.0
STREAM_CHUNK_SIZE = 64 * 1024

AUDIO_FORMAT = "mp3"
AUDIO_QUALITY = "192K"
DEFAULT_TITLE = "YouTube Audio"
NOT_INSTALLED_MESSAGE = "yt-dlp is not installed. Install with: pip install yt-dlp"

YOUTUBE_URL_RE = re.compile(r"^(https?://)?(www\.)?(youtube\.com|youtu\.be)/.+")


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class ExtractionResult:
    asset_id: str
    title: str
    duration: float


class ProcessRunner(Protocol):
    async def run(self, args: List[str], timeout: Optional[float] = None) -> ProcessResult:
        ...


class AsyncioProcessRunner:
    """Run a child process on the event loop and capture both output streams."""

    def __init__(self, log_prefix: str = "yt-dlp") -> None:
        self.log_prefix = log_prefix

    async def run(self, args: List[str], timeout: Optional[float] = None) -> ProcessResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ToolNotFound(f"{args[0]} is not installed or not in PATH") from exc
        except OSError as exc:
            raise ProcessError(f"{args[0]} could not be started: {exc.strerror or exc}") from exc

        stderr_chunks: List[bytes] = []

        async def _drain_stderr() -> None:
            # Progress output may arrive as one unterminated line
            assert proc.stderr is not None
            pending = b""
            while True:
                chunk = await proc.stderr.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                stderr_chunks.append(chunk)
                *lines, pending = (pending + chunk).split(b"\n")
                for line in lines:
                    if line.strip():
                        logger.debug("%s: %s", self.log_prefix, line.decode("utf-8", "ignore").rstrip())
            if pending.strip():
                logger.debug("%s: %s", self.log_prefix, pending.decode("utf-8", "ignore").rstrip())

        async def _collect() -> bytes:
            assert proc.stdout is not None
            stdout, _ = await asyncio.gather(proc.stdout.read(), _drain_stderr())
            await proc.wait()
            return stdout

        try:
            stdout = await asyncio.wait_for(_collect(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProcessTimeout(f"{args[0]} timed out after {timeout:g} seconds") from exc
        finally:
            # No child outlives a failed or cancelled run
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        return ProcessResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", "ignore"),
            stderr=b"".join(stderr_chunks).decode("utf-8", "ignore"),
        )


def is_youtube_url(url: str) -> bool:
    return bool(YOUTUBE_URL_RE.match(url or ""))


def build_info_args(url: str, binary: str = YTDLP_BIN) -> List[str]:
    """Metadata probe: structured JSON, single item only."""
    return [binary, "--dump-json", "--no-playlist", url]


def build_download_args(url: str, output_path: str, binary: str = YTDLP_BIN) -> List[str]:
    """Audio extraction to a fixed path; partial downloads are never resumed."""
    return [
        binary,
        "-x",
        "--audio-format",
        AUDIO_FORMAT,
        "--audio-quality",
        AUDIO_QUALITY,
        "-o",
        output_path,
        "--no-playlist",
        "--no-continue",
        url,
    ]


class ExtractionOrchestrator:
    """Turns a YouTube URL into an MP3 in the asset store."""

    def __init__(
        self,
        store: AssetStore,
        runner: Optional[ProcessRunner] = None,
        binary: str = YTDLP_BIN,
        info_timeout: Optional[float] = INFO_TIMEOUT,
        download_timeout: Optional[float] = DOWNLOAD_TIMEOUT,
    ) -> None:
        self.store = store
        self.runner: ProcessRunner = runner or AsyncioProcessRunner()
        self.binary = binary
        self.info_timeout = info_timeout
        self.download_timeout = download_timeout

    async def extract(self, url: str) -> ExtractionResult:
        if not is_youtube_url(url):
            raise InvalidInput("Invalid YouTube URL")

        asset_id = str(uuid.uuid4())
        output_path = self.store.resolve_path(asset_id)
        logger.info("Extracting audio from: %s", url)

        succeeded = False
        try:
            info = await self._fetch_info(url)
            await self._download(url, output_path)
            if not await run_in_threadpool(self.store.exists, asset_id):
                raise OutputMissing("Audio file was not created")
            succeeded = True
        except ExtractionError as exc:
            logger.error("Extraction error for %s: %s", url, exc.message)
            raise
        finally:
            if not succeeded:
                # Partial or corrupt output must not stay reachable under /audio
                await run_in_threadpool(self.store.delete, asset_id)

        return ExtractionResult(
            asset_id=asset_id,
            title=info.get("title") or DEFAULT_TITLE,
            duration=info.get("duration") or 0,
        )

    async def _fetch_info(self, url: str) -> Dict[str, Any]:
        try:
            result = await self.runner.run(build_info_args(url, self.binary), timeout=self.info_timeout)
        except ProcessError as exc:
            raise MetadataFetchFailed(exc.message) from exc

        if result.returncode != 0:
            raise MetadataFetchFailed(result.stderr.strip() or "Failed to get video info")

        try:
            info = json.loads(result.stdout)
        except ValueError as exc:
            raise MetadataParseFailed("Failed to parse video info") from exc
        if not isinstance(info, dict):
            raise MetadataParseFailed("Failed to parse video info")
        return info

    async def _download(self, url: str, output_path: str) -> None:
        try:
            result = await self.runner.run(
                build_download_args(url, output_path, self.binary),
                timeout=self.download_timeout,
            )
        except ProcessError as exc:
            raise ExtractionFailed(exc.message) from exc

        if result.returncode != 0:
            raise ExtractionFailed(result.stderr.strip() or "Failed to download audio")


async def check_ytdlp(runner: Optional[ProcessRunner] = None, binary: Optional[str] = None) -> Dict[str, Any]:
    """Report whether the yt-dlp executable can be run, and its version."""
    runner = runner or AsyncioProcessRunner()
    binary = binary or YTDLP_BIN
    try:
        result = await runner.run([binary, "--version"], timeout=VERSION_TIMEOUT)
    except ProcessError as exc:
        logger.warning("yt-dlp check failed: %s", exc.message)
        return {"available": False, "message": NOT_INSTALLED_MESSAGE}

    if result.returncode == 0:
        return {"available": True, "version": result.stdout.strip()}
    return {"available": False, "message": NOT_INSTALLED_MESSAGE}
