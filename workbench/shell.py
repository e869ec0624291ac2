from __future__ import annotations

"""Minimal PySide6 shell for the primary instance.

The coordination core only needs a handful of capabilities from the GUI:

- open or focus windows (:class:`~workbench.launch.WindowOpener`),
- ask the user for credentials (:class:`~workbench.askpass.CredentialPrompter`),
- show or hide the application's presence (:meth:`QtShell.set_presence_visible`),
- be told when start-up is complete (:meth:`QtShell.ready`) and quit with a code.

Channel handlers run on the IPC server thread, so every entry point here
emits a Qt signal; Qt queues the call onto the GUI thread that owns the
shell.
"""

import concurrent.futures
import threading
from typing import Callable, Mapping, Optional

from PySide6.QtCore import QObject, Qt, Signal
from PySide6.QtWidgets import (
    QApplication,
    QInputDialog,
    QLabel,
    QLineEdit,
    QListWidget,
    QMainWindow,
    QMenu,
    QStyle,
    QSystemTrayIcon,
    QVBoxLayout,
    QWidget,
)

from . import PRODUCT_NAME
from .askpass import CredentialPrompter
from .cli import CliArgs
from .ipc.models import AskpassRequest, Credentials
from .launch import OpenConfiguration, WindowOpener
from .utils.logger import get_logger
from .utils.runtime import Platform

logger = get_logger(__name__)


def create_application(argv: list[str], platform: Platform) -> QApplication:
    """Create (or reuse) the process-wide QApplication."""
    app = QApplication.instance()
    if app is None:
        app = QApplication(argv)
    app.setApplicationName(PRODUCT_NAME)
    # macOS applications stay alive in the dock without windows.
    app.setQuitOnLastWindowClosed(platform is not Platform.MACOS)
    return app


class WorkbenchWindow(QMainWindow):
    """A window listing the paths it was opened with."""

    activated = Signal(object)

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle(PRODUCT_NAME)
        self.resize(720, 480)

        central = QWidget(self)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)

        self._mode_label = QLabel("", self)
        self._paths = QListWidget(self)
        layout.addWidget(self._mode_label)
        layout.addWidget(self._paths)

        central.setLayout(layout)
        self.setCentralWidget(central)

    @property
    def paths(self) -> list[str]:
        return [self._paths.item(i).text() for i in range(self._paths.count())]

    def load(self, config: OpenConfiguration) -> None:
        if config.force_empty:
            self._paths.clear()
        if config.diff_mode and len(config.paths_to_open) == 2:
            left, right = config.paths_to_open
            self._mode_label.setText(f"Comparing {left} <-> {right}")
        elif config.goto_line_mode:
            self._mode_label.setText("Go to line")
        else:
            self._mode_label.setText("")
        for path in config.paths_to_open:
            if path not in self.paths:
                self._paths.addItem(path)

        if config.paths_to_open:
            self.setWindowTitle(f"{config.paths_to_open[-1]} - {PRODUCT_NAME}")
        else:
            self.setWindowTitle(PRODUCT_NAME)

    def reveal(self) -> None:
        if self.isMinimized():
            self.showNormal()
        self.show()
        self.raise_()
        self.activateWindow()

    def changeEvent(self, event) -> None:  # noqa: N802
        super().changeEvent(event)
        if self.isActiveWindow():
            self.activated.emit(self)


class QtShell(QObject, WindowOpener, CredentialPrompter):
    """GUI side of the primary instance."""

    _open_requested = Signal(object)
    _focus_requested = Signal()
    _prompt_requested = Signal(object, object)
    _exit_requested = Signal(int)

    def __init__(self, app: QApplication, on_will_quit: Callable[[], None]) -> None:
        super().__init__()
        self._app = app
        self._windows: list[WorkbenchWindow] = []
        self._last_active: Optional[WorkbenchWindow] = None
        self._pending_prompts: set[concurrent.futures.Future] = set()
        self._prompts_lock = threading.Lock()
        self._user_env: dict[str, str] = {}

        self._tray = QSystemTrayIcon(self)
        self._configure_tray_icon()

        self._open_requested.connect(self._do_open)
        self._focus_requested.connect(self._do_focus)
        self._prompt_requested.connect(self._do_prompt)
        self._exit_requested.connect(self._do_exit)

        app.aboutToQuit.connect(self._cancel_pending_prompts)
        app.aboutToQuit.connect(on_will_quit)

    # -------------------- setup ------------------------------------------------

    def _configure_tray_icon(self) -> None:
        self._tray.setIcon(self._app.style().standardIcon(QStyle.StandardPixmap.SP_ComputerIcon))
        self._tray.setToolTip(PRODUCT_NAME)

        menu = QMenu()
        new_window = menu.addAction("New Window")
        new_window.triggered.connect(self._on_new_window)  # type: ignore[arg-type]
        menu.addSeparator()
        exit_action = menu.addAction("Exit")
        exit_action.triggered.connect(lambda: self.quit(0))  # type: ignore[arg-type]

        self._menu = menu
        self._tray.setContextMenu(menu)

    # -------------------- capabilities (any thread) ---------------------------

    @property
    def windows(self) -> list[WorkbenchWindow]:
        return list(self._windows)

    @property
    def user_env(self) -> Mapping[str, str]:
        return self._user_env

    def open(self, config: OpenConfiguration) -> None:
        self._open_requested.emit(config)

    def focus_last_active(self, cli: CliArgs) -> None:
        self._focus_requested.emit()

    def prompt(self, request: AskpassRequest) -> Credentials:
        """Ask the user for credentials; blocks the calling (non-GUI) thread."""
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._prompts_lock:
            self._pending_prompts.add(future)
        self._prompt_requested.emit(request, future)
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            return Credentials()
        finally:
            with self._prompts_lock:
                self._pending_prompts.discard(future)

    def set_presence_visible(self, visible: bool) -> None:
        self._tray.setVisible(visible)

    def ready(self, user_env: Mapping[str, str]) -> None:
        self._user_env = dict(user_env)
        logger.info("Shell ready (%d user environment entries)", len(self._user_env))
        if QSystemTrayIcon.isSystemTrayAvailable():
            self._tray.show()

    def quit(self, code: int = 0) -> None:
        self._exit_requested.emit(code)

    # -------------------- GUI thread ------------------------------------------

    def _window_for(self, config: OpenConfiguration) -> WorkbenchWindow:
        if self._windows and not (config.force_new_window or config.prefer_new_window):
            return self._last_active or self._windows[-1]

        window = WorkbenchWindow()
        window.setAttribute(Qt.WidgetAttribute.WA_DeleteOnClose)
        window.activated.connect(self._on_window_activated)
        window.destroyed.connect(lambda *_: self._forget(window))
        self._windows.append(window)
        return window

    def _do_open(self, config: OpenConfiguration) -> None:
        window = self._window_for(config)
        window.load(config)
        window.reveal()
        self._last_active = window
        logger.debug("Opened %s in window %s", list(config.paths_to_open), id(window))

    def _do_focus(self) -> None:
        window = self._last_active or (self._windows[-1] if self._windows else None)
        if window is None:
            # Every window was closed; a bare launch brings one back.
            self._do_open(OpenConfiguration(cli=CliArgs(), force_empty=True))
            return
        window.reveal()

    def _do_prompt(self, request: AskpassRequest, future: concurrent.futures.Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        parent = self._last_active
        label = f"{request.command}\n\nCredentials for {request.host}"
        username, ok = QInputDialog.getText(parent, PRODUCT_NAME, f"{label}\n\nUsername:")
        if not ok:
            future.set_result(Credentials())
            return
        password, ok = QInputDialog.getText(
            parent, PRODUCT_NAME, f"{label}\n\nPassword:", QLineEdit.EchoMode.Password
        )
        if not ok:
            future.set_result(Credentials())
            return
        future.set_result(Credentials(username=username, password=password))

    def _do_exit(self, code: int) -> None:
        self._tray.setVisible(False)
        self._app.exit(code)

    def _cancel_pending_prompts(self) -> None:
        with self._prompts_lock:
            pending = list(self._pending_prompts)
        for future in pending:
            future.cancel()

    def _on_window_activated(self, window: WorkbenchWindow) -> None:
        self._last_active = window

    def _on_new_window(self) -> None:
        self._do_open(OpenConfiguration(cli=CliArgs(), force_new_window=True, force_empty=True))

    def _forget(self, window: WorkbenchWindow) -> None:
        if window in self._windows:
            self._windows.remove(window)
        if self._last_active is window:
            self._last_active = self._windows[-1] if self._windows else None
