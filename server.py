"""FastAPI backend for JazzPlayer.

This service exposes:
- POST /api/youtube/extract : extracts a YouTube video's audio to MP3 using yt-dlp
- GET  /api/lyrics/search   : looks up plain and synced lyrics on lrclib.net
- GET  /api/health          : liveness check
- GET  /api/check-ytdlp     : reports whether yt-dlp is installed
- GET  /audio/<id>.mp3      : serves extracted files until they expire (1 hour)

Run with:
    uvicorn server:app --host 0.0.0.0 --port 3001
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from asset_store import AssetStore, AssetSweeper
from exceptions import YTDLP_HINT, ExtractionError, InvalidInput, LyricsQueryFailed
from extractor import ExtractionOrchestrator, check_ytdlp
from lyrics import LyricsNotFound, LyricsResolver

HOST = os.getenv("HOST", "0.0.0.0") or "0.0.0.0"
PORT = int(os.getenv("PORT", "3001") or "3001")
LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
AUDIO_DIR = os.getenv("AUDIO_DIR") or os.path.join(os.path.dirname(os.path.abspath(__file__)), "temp")


def setup_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


setup_logging()
logger = logging.getLogger(__name__)

store = AssetStore(AUDIO_DIR)
store.ensure_directory()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    sweeper = AssetSweeper(app.state.store)
    app.state.sweeper = sweeper
    sweeper.start()
    logger.info("JazzPlayer backend ready, serving audio from %s", app.state.store.directory)
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(title="JazzPlayer API", version="1.0.0", lifespan=lifespan)

# Allow the frontend to connect from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.store = store
app.state.orchestrator = ExtractionOrchestrator(store)
app.state.resolver = LyricsResolver()

app.mount("/audio", StaticFiles(directory=AUDIO_DIR), name="audio")


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@app.post("/api/youtube/extract")
async def extract_audio(request: Request):
    """Extract the audio track of a YouTube video into the audio store."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    url = payload.get("url") if isinstance(payload, dict) else None
    if not url or not isinstance(url, str):
        return error_response(400, "URL is required")

    orchestrator: ExtractionOrchestrator = request.app.state.orchestrator
    try:
        result = await orchestrator.extract(url)
    except InvalidInput as exc:
        return error_response(400, exc.message)
    except ExtractionError as exc:
        return error_response(500, exc.message or "Failed to extract audio", exc.details)
    except Exception:
        logger.exception("Unexpected extraction failure for %s", url)
        return error_response(500, "Failed to extract audio", YTDLP_HINT)

    return {
        "success": True,
        "audioUrl": f"/audio/{orchestrator.store.filename(result.asset_id)}",
        "title": result.title,
        "duration": result.duration,
    }


@app.get("/api/lyrics/search")
async def search_lyrics(
    request: Request,
    title: Optional[str] = Query(None, description="Song or video title"),
    artist: Optional[str] = Query(None, description="Artist name, parsed from the title when omitted"),
):
    """Return the best lrclib.net match, preferring synced lyrics."""
    if not title:
        return error_response(400, "Title is required")

    logger.info("Searching lyrics for: %s%s", title, f" by {artist}" if artist else "")
    resolver: LyricsResolver = request.app.state.resolver
    try:
        result = await resolver.resolve(title, artist)
    except LyricsQueryFailed as exc:
        logger.error("Lyrics search error: %s", exc.message)
        return error_response(500, exc.message or "Failed to search lyrics")
    except Exception as exc:
        logger.exception("Lyrics search error")
        return error_response(500, str(exc) or "Failed to search lyrics")

    if isinstance(result, LyricsNotFound):
        return {
            "success": False,
            "error": "Lyrics not found",
            "searchedFor": {"artist": result.artist, "track": result.track},
        }

    return {
        "success": True,
        "source": "lrclib",
        "trackName": result.track_name,
        "artistName": result.artist_name,
        "albumName": result.album_name,
        "duration": result.duration,
        "plainLyrics": result.plain_lyrics,
        "syncedLyrics": result.synced_lyrics,
    }


@app.get("/api/health")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok", "timestamp": utc_timestamp()}


@app.get("/api/check-ytdlp")
async def ytdlp_status() -> Dict[str, Any]:
    """Report whether the yt-dlp executable is available and its version."""
    return await check_ytdlp()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host=HOST, port=PORT, reload=False)
