import subprocess

import pytest

from clipchain.services.audio_sync import AudioSyncer
from clipchain.utils.exceptions import AudioSyncError


class ScriptedProbe:
    def __init__(self, durations):
        self.durations = durations

    async def duration(self, path):
        return self.durations.get(path)

    async def has_audio(self, path):
        return True


def make_syncer(settings, durations, monkeypatch, returncode=0):
    syncer = AudioSyncer(settings, ScriptedProbe(durations))
    commands = []

    def fake_run(cmd):
        commands.append(cmd)
        return subprocess.CompletedProcess(cmd, returncode, "", "bad audio" if returncode else "")

    monkeypatch.setattr(syncer, "_run", fake_run)
    return syncer, commands


def test_close_durations_need_no_fitting(settings):
    assert AudioSyncer(settings).build_fit_command("a.mp3", "o.m4a", 14.5, 14.8) is None


def test_short_audio_is_padded(settings):
    cmd = AudioSyncer(settings).build_fit_command("a.mp3", "o.m4a", 20.5, 12.0)

    assert cmd[cmd.index("-af") + 1] == "apad"
    assert cmd[cmd.index("-t") + 1] == "20.500"


def test_long_audio_is_trimmed(settings):
    cmd = AudioSyncer(settings).build_fit_command("a.mp3", "o.m4a", 14.5, 30.0)

    assert "-af" not in cmd
    assert cmd[cmd.index("-t") + 1] == "14.500"


async def test_sync_fits_then_muxes(settings, monkeypatch):
    syncer, commands = make_syncer(settings, {"v.mp4": 14.5, "a.mp3": 30.0}, monkeypatch)

    output = await syncer.sync("v.mp4", "a.mp3", "final.mp4")

    assert output == "final.mp4"
    fit, mux = commands
    assert fit[-1] == "final_audio.m4a"
    assert mux[mux.index("-i", 3) + 1] == "final_audio.m4a"
    assert "-shortest" in mux


async def test_sync_skips_fitting_when_close(settings, monkeypatch):
    syncer, commands = make_syncer(settings, {"v.mp4": 14.5, "a.mp3": 14.5}, monkeypatch)

    await syncer.sync("v.mp4", "a.mp3", "final.mp4")

    [mux] = commands
    assert "a.mp3" in mux


async def test_mux_failure_raises(settings, monkeypatch):
    syncer, _ = make_syncer(settings, {"v.mp4": 14.5, "a.mp3": 14.5}, monkeypatch, returncode=1)

    with pytest.raises(AudioSyncError) as exc_info:
        await syncer.sync("v.mp4", "a.mp3", "final.mp4")
    assert exc_info.value.stderr == "bad audio"
    assert "stderr" not in exc_info.value.to_dict()["details"]
