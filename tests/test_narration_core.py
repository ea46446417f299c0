from __future__ import annotations

import subprocess
from dataclasses import dataclass

import pytest

from arith_trainer import narration
from arith_trainer.narration import NullSpeaker, OfflineSpeaker


class FakePopen:
    launched: list["FakePopen"] = []

    def __init__(self, args: list[str], **kwargs: object) -> None:
        self.args = args
        self.terminated = False
        FakePopen.launched.append(self)

    def poll(self) -> int | None:
        return 0 if self.terminated else None

    def terminate(self) -> None:
        self.terminated = True

    def wait(self, timeout: float | None = None) -> int:
        raise AssertionError("the frame loop must never wait on speech")

    def kill(self) -> None:
        self.terminated = True


def _only_espeak(name: str) -> str | None:
    return "/usr/bin/espeak" if name == "espeak" else None


@pytest.fixture
def fake_espeak(monkeypatch: pytest.MonkeyPatch) -> type[FakePopen]:
    FakePopen.launched = []
    monkeypatch.delenv("SDL_AUDIODRIVER", raising=False)
    monkeypatch.setattr(narration.shutil, "which", _only_espeak)
    monkeypatch.setattr(narration.subprocess, "Popen", FakePopen)
    return FakePopen


def test_disabled_speaker_is_unavailable() -> None:
    speaker = OfflineSpeaker(disabled=True)
    assert speaker.available is False
    speaker.speak("What is 1 plus 1?")
    speaker.update()
    speaker.stop()


def test_dummy_audio_driver_keeps_speaker_silent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SDL_AUDIODRIVER", "dummy")
    assert OfflineSpeaker().available is False


def test_null_speaker() -> None:
    speaker = NullSpeaker()
    assert speaker.available is False
    speaker.speak("anything")


def test_forced_backend_is_used(fake_espeak: type[FakePopen]) -> None:
    speaker = OfflineSpeaker(backend="espeak")
    assert speaker.available
    assert speaker.backend == "espeak"

    speaker.speak("  What is 7   plus 5? ")
    [proc] = fake_espeak.launched
    assert proc.args == ["/usr/bin/espeak", "-s", "160", "What is 7 plus 5?"]


def test_new_utterance_cancels_the_one_in_flight(fake_espeak: type[FakePopen]) -> None:
    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("What is 1 plus 1?")
    speaker.speak("What is 2 plus 2?")

    first, second = fake_espeak.launched
    assert first.terminated is True
    assert second.terminated is False


def test_blank_text_is_not_spoken(fake_espeak: type[FakePopen]) -> None:
    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("   ")
    assert fake_espeak.launched == []


def test_failing_backend_is_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SDL_AUDIODRIVER", raising=False)
    monkeypatch.setattr(narration.shutil, "which", _only_espeak)

    def boom(*args: object, **kwargs: object) -> subprocess.Popen[bytes]:
        raise OSError("no such file")

    monkeypatch.setattr(narration.subprocess, "Popen", boom)
    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("What is 3 times 3?")
    assert speaker.available is False


def test_update_reaps_finished_utterance(fake_espeak: type[FakePopen]) -> None:
    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("What is 9 minus 4?")
    [proc] = fake_espeak.launched
    proc.terminated = True
    speaker.update()
    speaker.stop()
    assert proc.terminated is True


class StubbornPopen(FakePopen):
    """Ignores ``terminate`` and only exits when killed."""

    def __init__(self, args: list[str], **kwargs: object) -> None:
        super().__init__(args, **kwargs)
        self.killed = False

    def poll(self) -> int | None:
        return -9 if self.killed else None

    def terminate(self) -> None:
        self.terminated = True

    def kill(self) -> None:
        self.killed = True


@dataclass
class FakeTime:
    t: float = 0.0

    def monotonic(self) -> float:
        return self.t


def test_cut_off_utterance_is_killed_after_grace_period(monkeypatch: pytest.MonkeyPatch) -> None:
    FakePopen.launched = []
    clock = FakeTime()
    monkeypatch.delenv("SDL_AUDIODRIVER", raising=False)
    monkeypatch.setattr(narration.shutil, "which", _only_espeak)
    monkeypatch.setattr(narration.subprocess, "Popen", StubbornPopen)
    monkeypatch.setattr(narration, "time", clock)

    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("What is 6 times 7?")
    speaker.speak("What is 8 minus 3?")
    first = FakePopen.launched[0]
    assert isinstance(first, StubbornPopen)
    assert first.terminated is True
    assert speaker.retired_count == 1

    clock.t = 0.2
    speaker.update()
    assert first.killed is False
    assert speaker.retired_count == 1

    clock.t = 0.6
    speaker.update()
    assert first.killed is True
    speaker.update()
    assert speaker.retired_count == 0


def test_overlong_utterance_is_cut_off(monkeypatch: pytest.MonkeyPatch) -> None:
    FakePopen.launched = []
    clock = FakeTime()
    monkeypatch.delenv("SDL_AUDIODRIVER", raising=False)
    monkeypatch.setattr(narration.shutil, "which", _only_espeak)
    monkeypatch.setattr(narration.subprocess, "Popen", FakePopen)
    monkeypatch.setattr(narration, "time", clock)

    speaker = OfflineSpeaker(backend="espeak")
    speaker.speak("What is 100 divided by 4?")
    [proc] = FakePopen.launched
    clock.t = 13.0
    speaker.update()
    assert proc.terminated is True
    speaker.update()
    assert speaker.retired_count == 0


def test_speech_commands_per_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(narration.shutil, "which", lambda name: f"/bin/{name}" if name != "powershell" else None)

    assert narration.speech_command("say", "hi") == ["/bin/say", "-r", "160", "hi"]
    ps = narration.speech_command("powershell", "it's 4")
    assert ps is not None
    assert ps[0] == "/bin/pwsh"
    assert ps[-1].endswith(".Speak('it''s 4')")
    child = narration.speech_command("pyttsx3-subprocess", "hi")
    assert child is not None and child[-2:] == ["160", "hi"]
    assert narration.speech_command("nonsense", "hi") is None
