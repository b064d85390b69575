import pytest

from clipchain.models.clip import ClipJob, ClipStatus, OperationHandle
from clipchain.models.generation import OperationStatus
from clipchain.services.operation_poller import (
    OperationPoller,
    extract_video_uri,
    is_transient_error,
    resolve_video_url,
    summarize_statuses,
)
from clipchain.utils.exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    TransientNetworkError,
)

from .conftest import FakeVeoClient, sample_operation

API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def client():
    return FakeVeoClient()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def poller(client, settings, sleep):
    return OperationPoller(client, settings, sleep=sleep)


async def test_transient_errors_keep_polling(poller, client, sleep):
    client.script(
        0,
        {"done": False},
        {"done": True, "error": {"code": 429, "message": "Quota exceeded"}},
        {"done": True, "error": {"status": "UNAVAILABLE", "message": "Model overloaded"}},
        sample_operation("https://cdn.test/final.mp4"),
    )
    clip = ClipJob(index=0, prompt="p")

    url = await poller.await_completion(OperationHandle("operations/op-0"), interval_seconds=5, clip=clip)

    assert url == "https://cdn.test/final.mp4?key=test-key"
    assert clip.status == ClipStatus.DONE
    assert clip.attempts == 4
    assert sleep.calls == [5, 5, 5]


async def test_status_fetch_errors_only_consume_attempts(poller, client):
    failures = iter([TransientNetworkError("reset"), TransientNetworkError("reset")])
    original = client.fetch_operation

    async def flaky(name):
        error = next(failures, None)
        if error:
            raise error
        return await original(name)

    client.fetch_operation = flaky

    url = await poller.await_completion(OperationHandle("operations/op-0"))
    assert url.startswith("https://cdn.test/op-0.mp4")


async def test_never_done_times_out(poller, client, settings):
    client.script(0, *[{"done": False}] * 10)
    clip = ClipJob(index=0, prompt="p")

    with pytest.raises(GenerationTimeoutError) as exc_info:
        await poller.await_completion(OperationHandle("operations/op-0"), max_attempts=3, clip=clip)

    assert exc_info.value.details["attempts"] == 3
    assert len(client.fetches) == 3
    assert clip.status == ClipStatus.FAILED
    assert clip.video_url is None


async def test_permanent_error_fails_immediately(poller, client):
    client.script(0, {"done": True, "error": {"code": 3, "status": "INVALID_ARGUMENT", "message": "bad prompt"}})

    with pytest.raises(GenerationFailedError) as exc_info:
        await poller.await_completion(OperationHandle("operations/op-0"))

    assert exc_info.value.message == "bad prompt"
    assert exc_info.value.details["remote_code"] == "INVALID_ARGUMENT"
    assert not exc_info.value.content_policy
    assert len(client.fetches) == 1


async def test_done_without_uri_fails(poller, client):
    client.script(0, {"done": True, "response": {"generateVideoResponse": {"generatedSamples": []}}})

    with pytest.raises(GenerationFailedError, match="no video URL in response"):
        await poller.await_completion(OperationHandle("operations/op-0"))


def test_transient_classification_uses_allowlist():
    assert is_transient_error({"code": 8})
    assert is_transient_error({"code": "14"})
    assert is_transient_error({"code": 503})
    assert is_transient_error({"status": "resource_exhausted"})
    assert not is_transient_error({"code": 3, "message": "rate limited, try again"})
    assert not is_transient_error({})


def test_probes_run_in_priority_order():
    both = {
        "response": {
            "generateVideoResponse": {"generatedSamples": [{"video": {"uri": "files/primary"}}]},
            "generatedVideos": [{"video": {"uri": "files/secondary"}}],
        }
    }
    assert extract_video_uri(both) == "files/primary"

    secondary = {"response": {"generatedVideos": [{"video": {"uri": "files/secondary"}}]}}
    assert extract_video_uri(secondary) == "files/secondary"

    direct = {"response": {"video": {"uri": "files/direct"}}}
    assert extract_video_uri(direct) == "files/direct"

    assert extract_video_uri({"response": {"generatedVideos": [{}]}}) is None


def test_resolve_video_url_appends_key_once():
    assert resolve_video_url("https://x.test/v.mp4", "k", API_BASE) == "https://x.test/v.mp4?key=k"
    assert resolve_video_url("https://x.test/v.mp4?alt=media", "k", API_BASE) == (
        "https://x.test/v.mp4?alt=media&key=k"
    )
    assert resolve_video_url("https://x.test/v.mp4?key=other", "k", API_BASE) == (
        "https://x.test/v.mp4?key=other"
    )
    assert resolve_video_url("files/abc:download", "k", API_BASE) == (
        f"{API_BASE}/files/abc:download?alt=media&key=k"
    )


def test_resolve_video_url_ignores_lookalike_parameters():
    assert resolve_video_url("https://x.test/v.mp4?monkey=1", "k", API_BASE) == (
        "https://x.test/v.mp4?monkey=1&key=k"
    )
    assert resolve_video_url("https://x.test/v.mp4?apikey=a", "k", API_BASE) == (
        "https://x.test/v.mp4?apikey=a&key=k"
    )


async def test_check_reports_transient_errors_as_processing(poller, client):
    client.script(0, {"done": True, "error": {"code": 14, "message": "unavailable"}})

    status = await poller.check("operations/op-0")

    assert status.done is False
    assert status.error is None


def test_summary_all_failed():
    summary = summarize_statuses([
        OperationStatus(operation_name="a", done=True, error="blocked"),
        OperationStatus(operation_name="b", done=True, error="timeout"),
    ])

    assert summary.status == "failed"
    assert not summary.success
    assert summary.error == "blocked"
    assert summary.all_errors == ["blocked", "timeout"]


def test_summary_processing_while_any_pending():
    summary = summarize_statuses([
        OperationStatus(operation_name="a", done=True, video_url="u"),
        OperationStatus(operation_name="b", done=False),
    ])

    assert summary.status == "processing"
    assert summary.completed_segments == 1
    assert summary.total_segments == 2


def test_summary_single_complete_clip():
    summary = summarize_statuses([OperationStatus(operation_name="a", done=True, video_url="u")])

    assert summary.status == "complete"
    assert summary.video_url == "u"
    assert not summary.needs_combining
