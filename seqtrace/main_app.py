import sys
from pathlib import Path
from typing import List, Optional

from PyQt5 import QtWidgets

from .config_store import TraceConfig
from .errors import TraceError
from .execution_tracer import TraceResult
from .snapshot import load_snapshot
from .trace_viewer import TraceViewerWidget


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, initial_snapshot: Optional[Path] = None, config: Optional[TraceConfig] = None):
        super().__init__()

        self.setWindowTitle("Sequence Trace Viewer")
        self.resize(1100, 750)

        self.viewer = TraceViewerWidget(self, config=config)
        self.setCentralWidget(self.viewer)

        self._create_actions()
        self._create_menu()

        if initial_snapshot is not None:
            self.open_snapshot(initial_snapshot)

    def _create_actions(self):
        self.action_open_snapshot = QtWidgets.QAction("&Open Snapshot...", self)
        self.action_open_snapshot.triggered.connect(self._on_open_snapshot)

        self.action_open_codebase = QtWidgets.QAction("Open &Codebase...", self)
        self.action_open_codebase.triggered.connect(self._on_open_codebase)

        self.action_run_trace = QtWidgets.QAction("&Run Trace", self)
        self.action_run_trace.triggered.connect(self.viewer.run_trace)

        self.action_quit = QtWidgets.QAction("&Quit", self)
        # close() goes through closeEvent, which waits for the trace worker.
        self.action_quit.triggered.connect(self.close)

        self.action_collapse = QtWidgets.QAction("&Collapse Repeated Calls", self)
        self.action_collapse.setCheckable(True)
        self.action_collapse.setChecked(self.viewer.collapse_repetitions)
        self.action_collapse.toggled.connect(self.viewer.set_collapse_repetitions)

        self.action_hide_constructors = QtWidgets.QAction("Hide &Super-constructor Calls", self)
        self.action_hide_constructors.setCheckable(True)
        self.action_hide_constructors.setChecked(self.viewer.hide_super_constructors)
        self.action_hide_constructors.toggled.connect(self.viewer.set_hide_super_constructors)

        self.action_copy_tree = QtWidgets.QAction("Copy &Tree", self)
        self.action_copy_tree.triggered.connect(self.viewer.copy_tree_to_clipboard)

    def _create_menu(self):
        file_menu = self.menuBar().addMenu("&File")
        file_menu.addAction(self.action_open_snapshot)
        file_menu.addAction(self.action_open_codebase)
        file_menu.addSeparator()
        file_menu.addAction(self.action_run_trace)
        file_menu.addSeparator()
        file_menu.addAction(self.action_quit)

        view_menu = self.menuBar().addMenu("&View")
        view_menu.addAction(self.action_collapse)
        view_menu.addAction(self.action_hide_constructors)
        view_menu.addSeparator()
        view_menu.addAction(self.action_copy_tree)

    # Slots ---------------------------------------------------------------

    def open_snapshot(self, path: Path) -> bool:
        try:
            snapshot = load_snapshot(path)
        except TraceError as exc:
            QtWidgets.QMessageBox.warning(self, "Cannot Open Snapshot", str(exc))
            return False
        self.viewer.set_result(TraceResult.from_snapshot(snapshot), str(path))
        return True

    def _on_open_snapshot(self):
        filename, _ = QtWidgets.QFileDialog.getOpenFileName(
            self, "Open Snapshot", str(Path.cwd()), "Snapshots (*.json);;All files (*)"
        )
        if filename:
            self.open_snapshot(Path(filename))

    def _on_open_codebase(self):
        directory = QtWidgets.QFileDialog.getExistingDirectory(
            self, "Select Codebase Folder", str(Path.cwd())
        )
        if directory:
            self.viewer.set_codebase(Path(directory))

    def closeEvent(self, event):
        self.viewer.cleanup_threads()
        super().closeEvent(event)


def show_activations(result: TraceResult, config: Optional[TraceConfig] = None, title: str = "seqtrace") -> int:
    """Open a window on a raw trace and run the Qt event loop."""
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication(sys.argv)
    win = MainWindow(config=config)
    win.viewer.set_result(result, title)
    win.show()
    return app.exec_()


def main(argv: Optional[List[str]] = None) -> None:
    argv = list(sys.argv if argv is None else argv)

    def _excepthook(exc_type, exc_value, exc_traceback):
        import traceback

        print("\n[Sequence Trace Viewer] Unhandled exception in main thread:")
        traceback.print_exception(exc_type, exc_value, exc_traceback)
        sys.__excepthook__(exc_type, exc_value, exc_traceback)

    sys.excepthook = _excepthook

    app = QtWidgets.QApplication(argv)
    snapshot = Path(argv[1]) if len(argv) > 1 else None
    win = MainWindow(initial_snapshot=snapshot)
    win.show()

    # Quitting through the application, not the window, still stops the worker.
    app.aboutToQuit.connect(win.viewer.cleanup_threads)

    exit_code = app.exec_()
    print(f"[Sequence Trace Viewer] Application exiting with code {exit_code}")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
