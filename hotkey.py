"""Global keyboard shortcuts for starting and cancelling voice commands."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)

CANCEL_KEY = "Key.esc"


def normalize_key_name(name: str) -> str:
    """Return the ``str(key)`` form pynput reports for a configured key.

    Accepts ``Key.alt_r``, ``alt_r`` or a single character such as ``v``.
    """
    name = name.strip()
    if not name:
        return ""
    if name.startswith("Key."):
        return name
    if len(name) == 1:
        return repr(name.lower())
    return f"Key.{name.lower()}"


class GlobalHotkeyAdapter:
    """Calls ``on_trigger`` once per press of the configured key.

    Auto-repeat while the key is held does not trigger again.  ``on_cancel``
    fires on Escape, but only while ``is_active`` reports a running session.
    """

    def __init__(self, hotkey_name: str = "Key.alt_r") -> None:
        self._hotkey = normalize_key_name(hotkey_name)
        self._listener: Optional[object] = None
        self._pressed = False
        self._lock = threading.Lock()
        self._on_trigger: Optional[Callable[[], None]] = None
        self._on_cancel: Optional[Callable[[], None]] = None
        self._is_active: Callable[[], bool] = lambda: False

    @property
    def hotkey(self) -> str:
        return self._hotkey

    def rebind(self, hotkey_name: str) -> None:
        """Switch to a different trigger key without restarting the listener."""
        normalized = normalize_key_name(hotkey_name)
        if not normalized:
            raise ValueError("hotkey must not be empty")
        with self._lock:
            self._hotkey = normalized
            self._pressed = False
        logger.info("Hotkey set to %s", normalized)

    def start(
        self,
        on_trigger: Callable[[], None],
        on_cancel: Optional[Callable[[], None]] = None,
        is_active: Optional[Callable[[], bool]] = None,
    ) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_trigger = on_trigger
        self._on_cancel = on_cancel
        if is_active is not None:
            self._is_active = is_active
        self._listener = keyboard.Listener(on_press=self._handle_press, on_release=self._handle_release)
        self._listener.start()

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def _handle_press(self, key: object) -> None:
        name = str(key)
        if name == CANCEL_KEY and self._on_cancel is not None:
            if self._is_active():
                self._on_cancel()
            return
        with self._lock:
            if name != self._hotkey or self._pressed:
                return
            self._pressed = True
        if self._on_trigger is not None:
            self._on_trigger()

    def _handle_release(self, key: object) -> None:
        with self._lock:
            if str(key) == self._hotkey:
                self._pressed = False
