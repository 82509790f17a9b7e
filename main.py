"""Application entrypoint."""

from __future__ import annotations

import logging
import sys
import threading

from audio_monitor import SoundDeviceActivityMonitor
from confidence import AdaptiveConfidenceController, RecognitionAnalytics
from config import JsonConfigStore, VoiceSettings
from executor import TaskCommandExecutor
from hotkey import GlobalHotkeyAdapter
from interfaces import RecognizerAdapter
from models import ExecutionResult, SessionState, TranscriptResult, VoiceActivitySample, VoiceCommand
from overlay import OverlayWindow
from recognizer import DashscopeRecognizerAdapter, GoogleRecognizerAdapter
from session_manager import RecognitionSessionManager
from speech_output import Pyttsx3SpeechOutput
from task_store import InMemoryTaskStore

try:
    from PySide6.QtCore import QObject, Signal, QSize
    from PySide6.QtGui import QAction, QIcon, QPixmap, QPainter, QColor, QBrush
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

LANGUAGES = [
    "en-US", "en-GB", "es-ES", "es-MX", "fr-FR", "de-DE", "it-IT",
    "pt-BR", "ja-JP", "ko-KR", "zh-CN", "hi-IN", "ar-SA", "ru-RU",
]
ENGINES = ["google", "dashscope"]


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"       # grey
ICON_LISTENING = "#FF4444"  # red
ICON_RETRY = "#FFCC00"      # yellow
ICON_ERROR = "#FF8800"      # orange


def build_recognizer(settings: VoiceSettings, api_key: str) -> RecognizerAdapter:
    if settings.engine == "dashscope":
        return DashscopeRecognizerAdapter(api_key=api_key, language=settings.language)
    return GoogleRecognizerAdapter(language=settings.language)


class UIBridge(QObject):
    status_signal = Signal(str)
    error_signal = Signal(str)
    state_signal = Signal(str, str)  # from_state, to_state
    level_signal = Signal(float, bool)
    result_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.settings = self.config_store.get_voice_settings()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.status_signal.connect(self._on_status_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.level_signal.connect(self.overlay.set_level)
        self.ui.result_signal.connect(self._on_result_ui)

        self.speech = Pyttsx3SpeechOutput()
        self.store = InMemoryTaskStore()
        self.executor = TaskCommandExecutor(
            store=self.store,
            speech=self.speech,
            voice_rate=self.settings.voice_rate,
            on_result=self._on_execution_result,
        )
        self.manager = RecognitionSessionManager(
            monitor=SoundDeviceActivityMonitor(),
            recognizer=build_recognizer(self.settings, self.config_store.get_api_key()),
            controller=AdaptiveConfidenceController(RecognitionAnalytics()),
            on_state_change=self._on_state_change,
            on_partial=self._on_status,
            on_status=self._on_status,
            on_error=self._on_error,
            on_activity=self._on_activity,
            on_transcript=self._on_transcript,
            on_command=self._on_command,
        )
        self.manager.apply_settings(self.settings)
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Voice Todo - Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        listen_action = QAction("Start / Stop Listening", menu)
        listen_action.triggered.connect(self._toggle_listening)
        menu.addAction(listen_action)

        summary_action = QAction("Task Summary", menu)
        summary_action.triggered.connect(self._speak_summary)
        menu.addAction(summary_action)

        menu.addSeparator()

        language_action = QAction("Language…", menu)
        language_action.triggered.connect(self._set_language)
        menu.addAction(language_action)

        sensitivity_action = QAction("Sensitivity…", menu)
        sensitivity_action.triggered.connect(self._set_sensitivity)
        menu.addAction(sensitivity_action)

        engine_action = QAction("Recognition Engine…", menu)
        engine_action.triggered.connect(self._set_engine)
        menu.addAction(engine_action)

        continuous_action = QAction("Continuous Mode", menu)
        continuous_action.setCheckable(True)
        continuous_action.setChecked(self.settings.continuous_mode)
        continuous_action.toggled.connect(self._set_continuous)
        menu.addAction(continuous_action)

        api_action = QAction("Set DashScope API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)
        self._menu = menu

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _save_settings(self) -> None:
        self.config_store.set_voice_settings(self.settings)
        self.manager.apply_settings(self.settings)
        self.executor.voice_rate = self.settings.voice_rate

    def _set_language(self) -> None:
        current = LANGUAGES.index(self.settings.language) if self.settings.language in LANGUAGES else 0
        value, ok = QInputDialog.getItem(None, "Language", "Recognition language", LANGUAGES, current, False)
        if not ok:
            return
        self.settings.language = value
        self._save_settings()

    def _set_sensitivity(self) -> None:
        value, ok = QInputDialog.getDouble(
            None, "Sensitivity", "Sensitivity (0 = strict, 1 = lenient)",
            self.settings.sensitivity, 0.0, 1.0, 2,
        )
        if not ok:
            return
        self.settings.sensitivity = value
        self._save_settings()

    def _set_engine(self) -> None:
        current = ENGINES.index(self.settings.engine) if self.settings.engine in ENGINES else 0
        value, ok = QInputDialog.getItem(None, "Engine", "Speech recognition engine", ENGINES, current, False)
        if not ok:
            return
        self.settings.engine = value
        self.config_store.set_voice_settings(self.settings)
        self.manager.replace_recognizer(build_recognizer(self.settings, self.config_store.get_api_key()))

    def _set_continuous(self, checked: bool) -> None:
        self.settings.continuous_mode = checked
        self._save_settings()

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        if self.settings.engine == "dashscope":
            self.manager.replace_recognizer(build_recognizer(self.settings, value))
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Use pynput key format, e.g. Key.alt_r"
        )
        if not ok or not value:
            return
        try:
            self.hotkey.rebind(value)
        except ValueError as exc:
            QMessageBox.warning(None, "Hotkey", str(exc))
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", f"Hotkey set to {self.hotkey.hotkey}.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_status(self, text: str) -> None:
        self.ui.status_signal.emit(text)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(message)

    def _on_activity(self, sample: VoiceActivitySample) -> None:
        self.ui.level_signal.emit(sample.level, sample.voice_detected)

    def _on_transcript(self, result: TranscriptResult) -> None:
        self.ui.status_signal.emit(f"“{result.text}”")

    def _on_command(self, command: VoiceCommand, result: TranscriptResult) -> None:
        self.executor.execute(command)

    def _on_execution_result(self, result: ExecutionResult) -> None:
        self.ui.result_signal.emit(result.message)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_status_ui(self, text: str) -> None:
        self.overlay.set_text(text)

    def _on_result_ui(self, message: str) -> None:
        self.overlay.set_text(message)
        self.overlay.hide_with_delay(1500)
        active = len(self.store.list_active())
        self.tray.setToolTip(f"Voice Todo - {active} active task{'' if active == 1 else 's'}")

    def _on_error_ui(self, msg: str) -> None:
        self.tray.setIcon(_create_icon(ICON_ERROR))
        self.overlay.show_error(msg)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.LISTENING.value:
            self.tray.setIcon(_create_icon(ICON_LISTENING))
            self.overlay.set_text("🎙️ Listening...")
        elif to_state == SessionState.AWAITING_RETRY.value:
            self.tray.setIcon(_create_icon(ICON_RETRY))
        elif to_state == SessionState.IDLE.value and from_state != SessionState.FAILED.value:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.overlay.hide_with_delay(1500)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _toggle_listening(self) -> None:
        # Opening the microphone can take a moment; keep it off the Qt thread.
        if self.manager.state == SessionState.IDLE:
            target = self.manager.start
        else:
            target = self.manager.stop
        threading.Thread(target=target, daemon=True).start()

    def _cancel_listening(self) -> None:
        threading.Thread(target=self.manager.stop, daemon=True).start()

    def _speak_summary(self) -> None:
        summary = self.executor.speak_summary(self.store.list_all())
        self.overlay.set_text(summary)
        self.overlay.hide_with_delay(2500)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(
                on_trigger=self._toggle_listening,
                on_cancel=self._cancel_listening,
                is_active=lambda: self.manager.state != SessionState.IDLE,
            )
        except Exception as exc:
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.manager.stop()
        self.app.quit()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
