import os
import tempfile

import pytest

# server.py mounts the audio directory at import time
os.environ.setdefault("AUDIO_DIR", tempfile.mkdtemp(prefix="jazzplayer_test_audio_"))

from asset_store import AssetStore  # noqa: E402
from extractor import ProcessResult  # noqa: E402


class FakeRunner:
    """ProcessRunner double that records calls and replays scripted results.

    A script entry may be a ProcessResult, an exception to raise, or a callable
    receiving the argument list (used to create the output file like yt-dlp would).
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    async def run(self, args, timeout=None):
        self.calls.append(list(args))
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(args)
        return step


def write_output(returncode=0, stderr=""):
    """Script step that writes the `-o` path before reporting the exit code."""

    def _step(args):
        path = args[args.index("-o") + 1]
        with open(path, "wb") as handle:
            handle.write(b"ID3fake-mp3")
        return ProcessResult(returncode=returncode, stdout="", stderr=stderr)

    return _step


@pytest.fixture
def store(tmp_path):
    asset_store = AssetStore(str(tmp_path / "audio"))
    asset_store.ensure_directory()
    return asset_store
