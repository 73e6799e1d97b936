import logging
from pathlib import Path
from typing import List, Optional

from PyQt5 import QtCore, QtWidgets

from .activation import Activation, ActivationList
from .columns import ColumnMap, assign_columns
from .config_store import TraceConfig
from .execution_tracer import ExecutionTracer, TraceResult
from .transforms import prepare_for_diagram

logger = logging.getLogger(__name__)

# Tree columns. Column 0 only holds the indentation and expand icons.
HEADER_LABELS = ["", "Order", "Lane", "Owner", "Call", "Repeats", "Depth"]
COL_ORDER, COL_LANE, COL_OWNER, COL_CALL, COL_REPEATS, COL_DEPTH = range(1, 7)


class TraceViewerWidget(QtWidgets.QWidget):
    """Shows a trace as an expandable call tree, one row per activation."""

    def __init__(self, parent=None, config: Optional[TraceConfig] = None):
        super().__init__(parent)

        self.config = config or TraceConfig()
        self._result: Optional[TraceResult] = None
        self._shown = ActivationList()
        self._columns = ColumnMap()
        self._current_codebase: Optional[Path] = None
        self.collapse_repetitions = True
        self.hide_super_constructors = True
        self._trace_worker: Optional[_TraceWorker] = None

        self._build_ui()
        self._connect_signals()

    # UI construction -----------------------------------------------------

    def _build_ui(self):
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(4)

        self.source_label = QtWidgets.QLabel("Trace: (none loaded)", self)
        self.source_label.setStyleSheet("font-weight: bold;")
        layout.addWidget(self.source_label)

        command_row = QtWidgets.QHBoxLayout()
        self.command_edit = QtWidgets.QLineEdit(self)
        self.command_edit.setPlaceholderText("Command to trace (e.g., python main.py)")
        self.run_button = QtWidgets.QPushButton("Run Trace", self)
        command_row.addWidget(self.command_edit, stretch=1)
        command_row.addWidget(self.run_button, stretch=0)
        layout.addLayout(command_row)

        self.tree = QtWidgets.QTreeWidget(self)
        self.tree.setHeaderLabels(HEADER_LABELS)
        for idx, width in enumerate([14, 50, 40, 220, 200, 60, 50]):
            self.tree.setColumnWidth(idx, width)
        header = self.tree.header()
        header.setMinimumSectionSize(20)
        header.setSectionResizeMode(QtWidgets.QHeaderView.Interactive)
        self.tree.setHorizontalScrollMode(QtWidgets.QAbstractItemView.ScrollPerPixel)
        self.tree.setContextMenuPolicy(QtCore.Qt.CustomContextMenu)
        layout.addWidget(self.tree, stretch=1)

        self.status_label = QtWidgets.QLabel("", self)
        layout.addWidget(self.status_label)

    def _connect_signals(self):
        self.run_button.clicked.connect(self.run_trace)
        self.tree.customContextMenuRequested.connect(self._on_tree_context_menu)

    # Data ----------------------------------------------------------------

    def set_codebase(self, path: Path) -> None:
        self._current_codebase = Path(path)
        self.source_label.setText(f"Codebase: {self._current_codebase}")

    def set_result(self, result: TraceResult, source: str = "") -> None:
        self._result = result
        if source:
            self.source_label.setText(f"Trace: {source}")
        self.refresh()

    def set_activations(self, activations: List[Activation], source: str = "") -> None:
        self.set_result(TraceResult(ActivationList(activations)), source)

    def set_collapse_repetitions(self, enabled: bool) -> None:
        self.collapse_repetitions = enabled
        self.refresh()

    def set_hide_super_constructors(self, enabled: bool) -> None:
        self.hide_super_constructors = enabled
        self.refresh()

    def displayed_activations(self) -> ActivationList:
        return self._shown

    def _prepare(self, result: TraceResult) -> ActivationList:
        return prepare_for_diagram(
            result.activations,
            self.config,
            result.hierarchy(),
            hide_super_constructors=self.hide_super_constructors,
            collapse=self.collapse_repetitions,
        )

    def refresh(self) -> None:
        self.tree.clear()
        if self._result is None:
            self._shown = ActivationList()
            return
        self._shown = self._prepare(self._result)
        self._columns = assign_columns(self._shown)

        order = 0
        stack = [(activation, None) for activation in reversed(self._shown)]
        while stack:
            activation, parent_item = stack.pop()
            order += 1
            item = self._make_item(activation, order)
            if parent_item is None:
                self.tree.addTopLevelItem(item)
            else:
                parent_item.addChild(item)
            stack.extend((child, item) for child in reversed(activation.children))

        self.tree.expandAll()
        self.status_label.setText(
            f"{self._shown.count_nodes()} calls, {len(self._columns)} lanes, "
            f"outcome: {self._result.outcome or 'unknown'}"
        )

    def _make_item(self, activation: Activation, order: int) -> QtWidgets.QTreeWidgetItem:
        depth = "" if activation.stack_depth < 0 else str(activation.stack_depth)
        item = QtWidgets.QTreeWidgetItem(
            [
                "",
                str(order),
                str(self._columns.column_of(activation)),
                activation.owner,
                activation.member.name,
                str(activation.repetitions) if activation.repetitions > 1 else "",
                depth,
            ]
        )
        item.setData(0, QtCore.Qt.UserRole, activation)
        item.setToolTip(COL_CALL, activation.member.qualified_name)
        return item

    # Tracing -------------------------------------------------------------

    def run_trace(self) -> None:
        command = self.command_edit.text().strip()
        if self._current_codebase is None:
            self.status_label.setText("Select a codebase first")
            return
        if self._trace_worker is not None and self._trace_worker.isRunning():
            return
        self.run_button.setEnabled(False)
        self.status_label.setText("Tracing...")
        self._trace_worker = _TraceWorker(self._current_codebase, command, self.config)
        self._trace_worker.finished_with_result.connect(self._on_trace_finished)
        self._trace_worker.error_occurred.connect(self._on_trace_error)
        self._trace_worker.start()

    def _on_trace_finished(self, result: TraceResult) -> None:
        self.run_button.setEnabled(True)
        self.set_result(result, self.command_edit.text().strip())

    def _on_trace_error(self, message: str) -> None:
        self.run_button.setEnabled(True)
        self.status_label.setText(f"Trace failed: {message}")
        logger.error("TRACE | viewer | trace failed | error=%s", message)

    def cleanup_threads(self) -> None:
        worker = self._trace_worker
        if worker is not None and worker.isRunning():
            worker.wait()
        self._trace_worker = None

    # Context menu --------------------------------------------------------

    def _on_tree_context_menu(self, pos: QtCore.QPoint):
        item = self.tree.itemAt(pos)
        menu = QtWidgets.QMenu(self.tree)
        copy_action = menu.addAction("Copy tree to clipboard")
        show_stack_action = menu.addAction("Show call stack for this row") if item is not None else None

        selected = menu.exec_(self.tree.viewport().mapToGlobal(pos))
        if selected is copy_action:
            self.copy_tree_to_clipboard()
        elif show_stack_action is not None and selected is show_stack_action:
            self._show_call_stack_for_item(item)

    def tree_text(self) -> str:
        """The visible tree as tab-separated text, the Call column indented by depth."""
        column_count = self.tree.columnCount()
        header_item = self.tree.headerItem()
        lines = ["\t".join(header_item.text(col) for col in range(column_count))]

        stack = [(self.tree.topLevelItem(i), 0) for i in reversed(range(self.tree.topLevelItemCount()))]
        while stack:
            item, depth = stack.pop()
            columns = []
            for col in range(column_count):
                text = item.text(col)
                if col == COL_CALL and depth > 0:
                    text = "  " * depth + text
                columns.append(text)
            lines.append("\t".join(columns))
            stack.extend((item.child(idx), depth + 1) for idx in reversed(range(item.childCount())))
        return "\n".join(lines)

    def copy_tree_to_clipboard(self) -> None:
        if self.tree.topLevelItemCount() == 0:
            return
        QtWidgets.QApplication.clipboard().setText(self.tree_text())
        logger.info("TRACE | viewer | copied tree to clipboard")

    @staticmethod
    def call_stack_text(item: QtWidgets.QTreeWidgetItem) -> str:
        """Calls from the root down to ``item``, one per line."""
        chain = []
        while item is not None:
            activation = item.data(0, QtCore.Qt.UserRole)
            if activation is not None:
                chain.append(activation)
            item = item.parent()
        lines = [
            f"{level:4d}: {activation.qualified_name}"
            for level, activation in enumerate(reversed(chain))
        ]
        return "\n".join(lines) if lines else "No call stack available."

    def _show_call_stack_for_item(self, item: QtWidgets.QTreeWidgetItem) -> None:
        dlg = QtWidgets.QMessageBox(self)
        dlg.setWindowTitle("Call Stack")
        dlg.setIcon(QtWidgets.QMessageBox.Information)
        dlg.setText(self.call_stack_text(item))
        dlg.setStandardButtons(QtWidgets.QMessageBox.Ok)
        dlg.exec_()


class _TraceWorker(QtCore.QThread):
    finished_with_result = QtCore.pyqtSignal(object)
    error_occurred = QtCore.pyqtSignal(str)

    def __init__(self, codebase: Path, command: str, config: TraceConfig):
        super().__init__()
        self._codebase = codebase
        self._command = command
        self._config = config

    def run(self):
        try:
            result = ExecutionTracer(self._config).trace_command(self._command or None, self._codebase)
        except Exception as exc:
            self.error_occurred.emit(str(exc))
            return
        self.finished_with_result.emit(result)
