import os
import tempfile
from pathlib import Path

# Module-level singletons read settings at import time; keep them out of the cwd
_SANDBOX = tempfile.mkdtemp(prefix="clipchain-tests-")
for _name in ("output", "temp", "data"):
    os.environ.setdefault(f"{_name.upper()}_DIR", os.path.join(_SANDBOX, _name))

import pytest

from clipchain.config import Settings
from clipchain.models.clip import AudioPolicy, MediaPayload, OperationHandle
from clipchain.services.credit_ledger import CreditLedger
from clipchain.services.operation_poller import OperationPoller
from clipchain.services.stitcher import CrossfadeStitcher
from clipchain.services.storage import VideoStorage
from clipchain.services.video_pipeline import VideoPipeline
from clipchain.utils.exceptions import StitchError


async def no_sleep(_seconds):
    return None


def sample_operation(uri):
    return {
        "done": True,
        "response": {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": uri}}]}},
    }


class FakeVeoClient:
    """Accepts every submission; operations finish on the first check unless scripted"""

    def __init__(self):
        self.submissions = []
        self.fetches = []
        self.scripts = {}
        self.fail_on_submit = {}
        self.described = []

    def script(self, index, *payloads):
        self.scripts[f"operations/op-{index}"] = list(payloads)

    async def submit(self, conditioning, duration_seconds, aspect_ratio,
                     audio_policy=AudioPolicy.GENERATED, audio=None):
        index = len(self.submissions)
        self.submissions.append({
            "conditioning": conditioning,
            "duration": duration_seconds,
            "aspect_ratio": aspect_ratio,
            "audio_policy": audio_policy,
            "audio": audio,
        })
        if index in self.fail_on_submit:
            raise self.fail_on_submit[index]
        return OperationHandle(name=f"operations/op-{index}")

    async def fetch_operation(self, operation_name):
        self.fetches.append(operation_name)
        script = self.scripts.get(operation_name)
        if script:
            return script.pop(0)
        return sample_operation(f"https://cdn.test/{operation_name.split('/')[-1]}.mp4")

    async def describe_character(self, image):
        self.described.append(image)
        return "Character description: a corgi in a red scarf"


class FakeFetcher:
    def __init__(self):
        self.downloads = []
        self.loads = []

    async def download(self, url, dest_path):
        self.downloads.append((url, dest_path))
        with open(dest_path, "wb") as f:
            f.write(b"video:" + url.encode())
        return dest_path

    async def load(self, source, default_mime):
        self.loads.append(source)
        return MediaPayload(data=b"source-image", mime_type=default_mime)


class FakeExtractor:
    def __init__(self):
        self.calls = []

    async def extract_last_frame(self, video_path):
        self.calls.append(video_path)
        return MediaPayload(data=f"frame:{Path(video_path).name}".encode(), mime_type="image/jpeg")


class FakeProbe:
    def __init__(self, duration=8.0, audio=True):
        self._duration = duration
        self._audio = audio

    async def duration(self, path):
        return self._duration

    async def has_audio(self, path):
        return self._audio


class RecordingStitcher(CrossfadeStitcher):
    """Records ffmpeg commands; fails any transition listed in ``fail_transitions``"""

    def __init__(self, settings, fail_transitions=(), fail_concat=False):
        super().__init__(settings)
        self.commands = []
        self.fail_transitions = set(fail_transitions)
        self.fail_concat = fail_concat

    def _run_ffmpeg(self, cmd, duration, progress_callback=None):
        self.commands.append(cmd)
        joined = " ".join(cmd)
        for transition in self.fail_transitions:
            if f"xfade=transition={transition}" in joined:
                raise StitchError("No such filter: xfade", clip_count=0, stderr="No such filter")
        if self.fail_concat and "concat" in cmd:
            raise StitchError("concat failed", clip_count=0)
        with open(cmd[-1], "wb") as f:
            f.write(b"stitched")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        veo_api_key="test-key",
        gemini_api_key="",
        output_dir=str(tmp_path / "output"),
        temp_dir=str(tmp_path / "temp"),
        data_dir=str(tmp_path / "data"),
        poll_interval_seconds=0.01,
        poll_max_attempts=5,
        inter_clip_delay_seconds=0,
        download_max_retries=1,
        download_backoff_seconds=0,
        storage_access_key_id="",
        storage_secret_access_key="",
        storage_endpoint_url="",
        storage_bucket_name="",
        api_key="",
    )


@pytest.fixture
def fake_client():
    return FakeVeoClient()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def stitcher(settings):
    return RecordingStitcher(settings)


@pytest.fixture
def ledger(settings):
    return CreditLedger(settings.database_path)


@pytest.fixture
def pipeline(settings, fake_client, fake_fetcher, fake_extractor, stitcher, ledger):
    return VideoPipeline(
        settings=settings,
        client=fake_client,
        poller=OperationPoller(fake_client, settings, sleep=no_sleep),
        extractor=fake_extractor,
        fetcher=fake_fetcher,
        stitcher=stitcher,
        probe=FakeProbe(),
        storage=VideoStorage(settings),
        ledger=ledger,
        sleep=no_sleep,
    )
