"""Lyrics lookup against lrclib.net.

Video titles are noisy ("Artist - Song (Official Music Video) [HD]"), so the
title is first split into an artist/track pair and stripped of decorations.
The search then tries exact track/artist parameters and falls back to a
free-text query.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from exceptions import LyricsQueryFailed

logger = logging.getLogger(__name__)

LYRICS_API_URL = os.getenv("LYRICS_API_URL", "https://lrclib.net/api/search") or "https://lrclib.net/api/search"
LYRICS_TIMEOUT = float(os.getenv("LYRICS_TIMEOUT", "10") or "10")
LYRICS_HTTP_HEADERS = {"User-Agent": "JazzPlayer/1.0"}

TITLE_SEPARATOR = " - "

# Decorations removed from track names, in order; brackets first
TRACK_NOISE_PATTERNS = [
    re.compile(r"\[[^\]]*\]"),
    re.compile(r"\((?:Official|Music|Lyric|Audio|Video)[^)]*\)", re.IGNORECASE),
    re.compile(r"\([^()]*(?:Remaster|Version|Mix)[^()]*\)", re.IGNORECASE),
]
ARTIST_NOISE_PATTERNS = [
    re.compile(r"\s*-\s*Topic$", re.IGNORECASE),
    re.compile(r"VEVO$", re.IGNORECASE),
]
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedQuery:
    artist: str
    track: str


@dataclass(frozen=True)
class LyricsMatch:
    track_name: Optional[str]
    artist_name: Optional[str]
    album_name: Optional[str]
    duration: Optional[float]
    plain_lyrics: Optional[str]
    synced_lyrics: Optional[str]
    source: str = "primary"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], source: str) -> "LyricsMatch":
        return cls(
            track_name=payload.get("trackName"),
            artist_name=payload.get("artistName"),
            album_name=payload.get("albumName"),
            duration=payload.get("duration"),
            plain_lyrics=payload.get("plainLyrics") or None,
            synced_lyrics=payload.get("syncedLyrics") or None,
            source=source,
        )


@dataclass(frozen=True)
class LyricsNotFound:
    """No match; carries what was actually searched for."""

    artist: str
    track: str


def normalize_query(title: str, artist: Optional[str] = None) -> NormalizedQuery:
    """Split a raw video title into (artist, track) and strip decorative suffixes."""
    search_artist = artist or ""
    search_track = title

    if not artist and TITLE_SEPARATOR in title:
        first, rest = title.split(TITLE_SEPARATOR, 1)
        search_artist = first.strip()
        search_track = rest.strip()

    for pattern in TRACK_NOISE_PATTERNS:
        search_track = pattern.sub("", search_track)
    search_track = WHITESPACE_RE.sub(" ", search_track).strip()

    for pattern in ARTIST_NOISE_PATTERNS:
        search_artist = pattern.sub("", search_artist)
    search_artist = search_artist.strip()

    return NormalizedQuery(artist=search_artist, track=search_track)


def select_result(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Prefer the first entry carrying synced lyrics, else the first entry."""
    return next((r for r in results if r.get("syncedLyrics")), results[0])


class LyricsResolver:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = LYRICS_API_URL,
        timeout: float = LYRICS_TIMEOUT,
    ) -> None:
        self._client = client
        self.api_url = api_url
        self.timeout = timeout

    async def resolve(self, title: str, artist: Optional[str] = None) -> Union[LyricsMatch, LyricsNotFound]:
        query = normalize_query(title, artist)
        logger.info('Parsed: artist="%s", track="%s"', query.artist, query.track)

        if self._client is not None:
            return await self._resolve(self._client, query)
        async with httpx.AsyncClient(timeout=self.timeout, headers=LYRICS_HTTP_HEADERS) as client:
            return await self._resolve(client, query)

    async def _resolve(self, client: httpx.AsyncClient, query: NormalizedQuery) -> Union[LyricsMatch, LyricsNotFound]:
        params = {"track_name": query.track}
        if query.artist:
            params["artist_name"] = query.artist

        results = await self._search(client, params)
        if results:
            match = LyricsMatch.from_payload(select_result(results), source="primary")
            logger.info("Found lyrics: %s by %s", match.track_name, match.artist_name)
            return match

        if query.artist:
            results = await self._search(client, {"q": f"{query.artist} {query.track}"})
            if results:
                match = LyricsMatch.from_payload(select_result(results), source="fallback")
                logger.info("Found lyrics (fallback): %s by %s", match.track_name, match.artist_name)
                return match

        logger.info("Lyrics not found for %s - %s", query.artist or "?", query.track)
        return LyricsNotFound(artist=query.artist, track=query.track)

    async def _search(self, client: httpx.AsyncClient, params: Dict[str, str]) -> Optional[List[Dict[str, Any]]]:
        """Run one search; None means no usable result for this attempt."""
        try:
            response = await client.get(self.api_url, params=params, headers=LYRICS_HTTP_HEADERS)
        except httpx.TransportError as exc:
            logger.warning("lrclib request failed: %s", exc)
            return None
        except Exception as exc:
            raise LyricsQueryFailed(str(exc) or "Failed to search lyrics") from exc

        if not response.is_success:
            logger.warning("lrclib returned HTTP %s", response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError as exc:
            raise LyricsQueryFailed("Invalid response from lyrics service") from exc

        if not isinstance(payload, list) or not payload:
            return None
        if not all(isinstance(entry, dict) for entry in payload):
            raise LyricsQueryFailed("Invalid response from lyrics service")
        return payload
