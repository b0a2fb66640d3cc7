import asyncio

import pytest

from analysis_worker.errors import ExtractionFailure
from analysis_worker.pipeline.media import MediaExtractor, has_cookie_lines

URL = "https://www.instagram.com/reel/abc123/"
COOKIE_LINE = ".instagram.com\tTRUE\t/\tTRUE\t0\tsessionid\tdeadbeef\n"


class FakeProcess:
    def __init__(self, returncode, stderr=b""):
        self.returncode = returncode
        self.stderr = stderr

    async def communicate(self):
        return None, self.stderr

    def kill(self):
        pass

    async def wait(self):
        return self.returncode


@pytest.fixture
def ytdlp(monkeypatch):
    """Replace the yt-dlp subprocess with scripted outcomes, one per invocation"""
    state = {"outcomes": [], "commands": []}

    async def create_subprocess_exec(*cmd, **kwargs):
        state["commands"].append(list(cmd))
        returncode, stderr = state["outcomes"].pop(0)
        if returncode == 0:
            template = cmd[cmd.index("-o") + 1]
            with open(template.replace("%(ext)s", "mp4"), "wb") as f:
                f.write(b"video")
        else:
            # a failed attempt can leave a partial file behind
            with open(cmd[cmd.index("-o") + 1].replace("%(ext)s", "mp4.part"), "wb") as f:
                f.write(b"partial")
        return FakeProcess(returncode, stderr)

    monkeypatch.setattr(asyncio, "create_subprocess_exec", create_subprocess_exec)
    return state


def strategy_names(extractor):
    return [name for name, _ in extractor.download_strategies(URL, "source.%(ext)s")]


def test_cookies_strategy_only_with_real_cookie_lines(config, tmp_path):
    cookies = tmp_path / "cookies.txt"
    cookies.write_text("# Netscape HTTP Cookie File\n# nothing here yet\n")
    config.YTDLP_COOKIES_FILE = str(cookies)
    extractor = MediaExtractor(config)

    assert not has_cookie_lines(str(cookies))
    assert strategy_names(extractor) == ["no_cookies", "embed_only"]

    cookies.write_text("# Netscape HTTP Cookie File\n" + COOKIE_LINE)
    assert strategy_names(extractor) == ["cookies_file", "no_cookies", "embed_only"]


def test_download_falls_through_to_embed_only(config, tmp_path, ytdlp):
    cookies = tmp_path / "cookies.txt"
    cookies.write_text(COOKIE_LINE)
    config.YTDLP_COOKIES_FILE = str(cookies)
    ytdlp["outcomes"] = [
        (1, b"ERROR: login required"),
        (1, b"ERROR: Requested content is not available, rate-limit reached"),
        (0, b""),
    ]
    job_dir = tmp_path / "job"
    job_dir.mkdir()

    path = asyncio.run(MediaExtractor(config).acquire(URL, str(job_dir)))

    assert path == str(job_dir / "source.mp4")
    assert not (job_dir / "source.mp4.part").exists()
    assert len(ytdlp["commands"]) == 3
    assert "--cookies" in ytdlp["commands"][0]
    assert "--cookies" not in ytdlp["commands"][1]
    embed_only = ytdlp["commands"][2]
    assert embed_only[embed_only.index("-f") + 1] == "best[ext=mp4]/best"
    assert "--no-check-certificate" in embed_only


def test_download_fails_after_every_strategy(config, tmp_path, ytdlp):
    ytdlp["outcomes"] = [(1, b"ERROR: login required"), (1, b"ERROR: HTTP Error 404")]
    job_dir = tmp_path / "job"
    job_dir.mkdir()

    with pytest.raises(ExtractionFailure) as exc_info:
        asyncio.run(MediaExtractor(config).acquire(URL, str(job_dir)))

    assert "2 strategies" in str(exc_info.value)
    assert "HTTP Error 404" in str(exc_info.value)
    assert len(ytdlp["commands"]) == 2


def test_missing_local_file(config, tmp_path):
    with pytest.raises(ExtractionFailure):
        asyncio.run(MediaExtractor(config).acquire(str(tmp_path / "nope.mp4"), str(tmp_path)))
