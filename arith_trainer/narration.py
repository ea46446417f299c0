"""Reading problems aloud.

The session engine only needs a one-way ``speak(text)``.  Speech runs in
short-lived subprocesses (macOS ``say``, Windows PowerShell, ``pyttsx3`` in a
child interpreter, or ``espeak``) so a misbehaving TTS engine cannot take the
trainer down with it.  When no backend is usable the speaker reports itself
unavailable and every call is a no-op.
"""

from __future__ import annotations

import importlib.util
import logging
import math
import os
import shutil
import subprocess
import sys
import time
from typing import Protocol

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("pyttsx3-subprocess", "say", "powershell", "espeak")
UNAVAILABLE_NOTICE = "Speech synthesis is not available. Problems will not be read aloud."
SPEECH_RATE_WPM = 160

_EXECUTABLES = {
    "say": ("say",),
    "powershell": ("powershell", "pwsh"),
    "espeak": ("espeak", "espeak-ng"),
}
_PYTTSX3_CHILD = (
    "import sys, pyttsx3\n"
    "engine = pyttsx3.init()\n"
    "engine.setProperty('rate', int(sys.argv[1]))\n"
    "engine.say(sys.argv[2])\n"
    "engine.runAndWait()\n"
)
_POWERSHELL_SPEAK = (
    "Add-Type -AssemblyName System.Speech; "
    "(New-Object System.Speech.Synthesis.SpeechSynthesizer).Speak('{text}')"
)


class Speaker(Protocol):
    @property
    def available(self) -> bool: ...
    def speak(self, text: str) -> None: ...


class NullSpeaker:
    """Speaker for hosts without speech; never speaks."""

    @property
    def available(self) -> bool:
        return False

    def speak(self, text: str) -> None:
        return


class OfflineSpeaker:
    """Best-effort offline TTS via isolated subprocesses.

    A new utterance always cuts off the one in flight.
    """

    _max_utterance_s = 12.0
    _kill_grace_s = 0.5

    def __init__(self, *, disabled: bool = False, backend: str | None = None) -> None:
        self._backends: list[str] = []
        self._backend: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._active_started_s = 0.0
        self._retired: list[tuple[subprocess.Popen[bytes], float]] = []

        if disabled:
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            # Headless runs stay silent.
            return

        self._backends = self._resolve_backends(backend)
        self._backend = self._backends[0] if self._backends else None
        if self._backend is None:
            logger.info("no text-to-speech backend found")
        else:
            logger.debug("text-to-speech backend: %s", self._backend)

    @property
    def available(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> str | None:
        return self._backend

    def speak(self, text: str) -> None:
        phrase = " ".join(str(text).strip().split())
        if not self.available or phrase == "":
            return
        self.stop()
        while self._backend is not None:
            proc = self._launch_process(phrase)
            if proc is not None:
                self._active_proc = proc
                self._active_started_s = time.monotonic()
                return
            self._drop_current_backend()

    def update(self) -> None:
        """Reap finished utterances; cut off one that has run too long.

        Processes cut off by :meth:`stop` get ``_kill_grace_s`` to exit after
        ``terminate`` and are killed if they are still around after that.
        """
        proc = self._active_proc
        if proc is not None:
            if proc.poll() is not None:
                self._active_proc = None
            elif (time.monotonic() - self._active_started_s) > self._max_utterance_s:
                self.stop()
        self._reap_retired()

    def stop(self) -> None:
        """Cut off the utterance in flight without waiting for it to exit."""
        proc = self._active_proc
        self._active_proc = None
        if proc is None:
            return
        try:
            proc.terminate()
        except OSError:
            return
        self._retired.append((proc, time.monotonic() + self._kill_grace_s))

    @property
    def retired_count(self) -> int:
        return len(self._retired)

    def _reap_retired(self) -> None:
        now = time.monotonic()
        alive: list[tuple[subprocess.Popen[bytes], float]] = []
        for proc, kill_at in self._retired:
            if proc.poll() is not None:
                continue
            if now >= kill_at:
                try:
                    proc.kill()
                except OSError:
                    continue
                kill_at = math.inf
            alive.append((proc, kill_at))
        self._retired = alive

    @staticmethod
    def _resolve_backends(forced: str | None) -> list[str]:
        forced = (forced or "").strip().lower()
        if forced in SUPPORTED_BACKENDS and OfflineSpeaker._backend_available(forced):
            return [forced]
        if forced:
            logger.warning("requested TTS backend %r is not available, probing others", forced)

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("pyttsx3-subprocess", "espeak"))

        return [name for name in dict.fromkeys(candidates) if OfflineSpeaker._backend_available(name)]

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        return _find_executable(name) is not None

    def _drop_current_backend(self) -> None:
        backend = self._backend
        logger.warning("text-to-speech backend %s failed, dropping it", backend)
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None
        argv = speech_command(backend, text)
        if argv is None:
            return None
        try:
            return subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            logger.debug("could not launch %s: %s", backend, exc)
            return None


def _find_executable(backend: str) -> str | None:
    for name in _EXECUTABLES.get(backend, ()):
        path = shutil.which(name)
        if path is not None:
            return path
    return None


def speech_command(backend: str, text: str) -> list[str] | None:
    """Command line that reads ``text`` aloud with ``backend``, or ``None``."""
    if backend == "pyttsx3-subprocess":
        return [sys.executable, "-c", _PYTTSX3_CHILD, str(SPEECH_RATE_WPM), text]
    exe = _find_executable(backend)
    if exe is None:
        return None
    if backend == "say":
        return [exe, "-r", str(SPEECH_RATE_WPM), text]
    if backend == "espeak":
        return [exe, "-s", str(SPEECH_RATE_WPM), text]
    if backend == "powershell":
        quoted = text.replace("'", "''")
        return [exe, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_SPEAK.format(text=quoted)]
    return None
