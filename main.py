#!/usr/bin/env python3
#
# MIDI2Lyre: plays MIDI files on the in-game lyre by simulating key presses.
#
import os
import sys
import threading
import traceback
from typing import Any, Dict, List, Optional

from PyQt6.QtGui import QFont, QGuiApplication

# --- GUI Dependencies ---
try:
    from PyQt6.QtWidgets import (QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
                                 QPushButton, QCheckBox, QLabel, QFileDialog, QGroupBox, QTabWidget,
                                 QTextEdit, QProgressBar, QComboBox, QMessageBox, QGridLayout,
                                 QLineEdit, QRadioButton, QButtonGroup, QTableWidget,
                                 QTableWidgetItem, QHeaderView, QDoubleSpinBox)
    from PyQt6.QtCore import QObject, QThread, pyqtSignal as Signal
except ImportError:
    print("PyQt6 not found. Please run 'pip install PyQt6' to run the GUI.")
    sys.exit(1)

from engine import INSTRUMENTS, Note, describe_tone, get_instrument, select_best_tone
from keyboard_output import KeyboardEmitter
from midi_loader import describe_file
from player import DEFAULT_SETTINGS, PlaybackLoop, build_batches, load_midi, run_countdown


# =====================================================================================
# ==                                                                                 ==
# ==                       SECTION 1: PLAYBACK WORKER                                ==
# ==                                                                                 ==
# =====================================================================================

class Player(QObject):
    """Runs validation, countdown and the playback loop off the GUI thread."""
    status_updated = Signal(str)
    progress_updated = Signal(float)
    notes_played = Signal(str)
    playback_finished = Signal()

    def __init__(self, config: Dict, notes: List[Note], total_duration_ms: float):
        super().__init__()
        self.config = config
        self.notes = notes
        self.total_duration_ms = total_duration_ms
        self.stop_event = threading.Event()
        self.debug_log: Optional[List[str]] = [] if self.config.get('debug_mode') else None
        self.emitter: Optional[KeyboardEmitter] = None

    def _log_debug(self, msg: str):
        if self.debug_log is not None:
            self.debug_log.append(msg)

    def _flush_debug_log(self):
        if self.debug_log:
            self.status_updated.emit("\n".join(self.debug_log))
            self.debug_log.clear()

    def _on_batch(self, progress: float, text: str):
        self.progress_updated.emit(progress)
        if text: self.notes_played.emit(text)

    def play(self):
        try:
            self._log_debug("--- STARTING PLAYBACK GENERATION ---")
            for key, val in self.config.items():
                self._log_debug(f"  - {key}: {val}")

            batches = build_batches(self.config, self.notes)
            self._log_debug(f"Scheduled {len(batches)} batches from {len(self.notes)} notes.")
            self._flush_debug_log()

            if self.config.get('countdown'):
                if not run_countdown(self.config.get('countdown_seconds', 3), self.status_updated.emit, self.stop_event):
                    return

            self.emitter = KeyboardEmitter(self.debug_log)
            loop = PlaybackLoop(batches, self.total_duration_ms, self.emitter.press_keys,
                                on_batch=self._on_batch, stop_event=self.stop_event, debug_log=self.debug_log)
            self.status_updated.emit("Playback starting...")
            if loop.run():
                self.status_updated.emit("Playback complete.")
            else:
                self.status_updated.emit("Playback stopped.")
            self._flush_debug_log()

        except (IOError, ValueError) as e:
            self.status_updated.emit(f"Error: {e}")
        except Exception as e:
            self.status_updated.emit(f"An unexpected error occurred: {e}\n{traceback.format_exc()}")
        finally:
            self.shutdown()
            self.playback_finished.emit()

    def stop(self):
        if not self.stop_event.is_set():
            self.status_updated.emit("Stopping playback...")
            self.stop_event.set()

    def shutdown(self):
        if self.emitter is not None:
            self.emitter.release_all()


# =====================================================================================
# ==                                                                                 ==
# ==                       SECTION 2: MAIN WINDOW                                    ==
# ==                                                                                 ==
# =====================================================================================

class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("MIDI2Lyre")
        self.setMinimumWidth(600)
        self.player_thread = None
        self.player = None
        self.midi_path = ""
        self.notes: Optional[List[Note]] = None
        self.total_duration_ms = 0.0
        self._setup_ui()
        self.adjustSize()

    def _setup_ui(self):
        main_widget = QWidget()
        self.setCentralWidget(main_widget)
        main_layout = QVBoxLayout(main_widget)
        main_layout.setContentsMargins(10, 10, 10, 5)

        tabs = QTabWidget()
        main_layout.addWidget(tabs)
        controls_tab, history_tab, log_tab = QWidget(), QWidget(), QWidget()
        tabs.addTab(controls_tab, "Playback Controls")
        tabs.addTab(history_tab, "Note History")
        tabs.addTab(log_tab, "Log Output")

        controls_layout = QVBoxLayout(controls_tab)
        controls_layout.addWidget(self._create_file_group())
        controls_layout.addWidget(self._create_instrument_group())
        controls_layout.addWidget(self._create_playback_group())
        controls_layout.addStretch()

        button_layout = QHBoxLayout()
        self.play_button = QPushButton("Play")
        self.stop_button = QPushButton("Stop")
        button_layout.addWidget(self.play_button)
        button_layout.addWidget(self.stop_button)
        button_layout.addStretch()
        main_layout.addLayout(button_layout)

        self.current_notes_label = QLabel("")
        self.current_notes_label.setFont(QFont("Courier", 11))
        main_layout.addWidget(self.current_notes_label)

        self.progress_bar = QProgressBar()
        self.progress_bar.setTextVisible(False)
        main_layout.addWidget(self.progress_bar)

        self.play_button.clicked.connect(self.handle_play)
        self.stop_button.clicked.connect(self.handle_stop)

        history_layout = QVBoxLayout(history_tab)
        self.history_output = QTextEdit()
        self.history_output.setReadOnly(True)
        history_layout.addWidget(self.history_output)

        log_layout = QVBoxLayout(log_tab)
        self.log_output = QTextEdit()
        self.log_output.setReadOnly(True)
        self.log_output.setFont(QFont("Courier", 9))
        log_layout.addWidget(self.log_output)

        log_button_layout = QHBoxLayout()
        clear_log_button = QPushButton("Clear Log")
        clear_log_button.clicked.connect(self.log_output.clear)
        log_button_layout.addWidget(clear_log_button)
        log_button_layout.addStretch()
        copy_log_button = QPushButton("Copy to Clipboard")
        copy_log_button.clicked.connect(self.copy_log_to_clipboard)
        log_button_layout.addWidget(copy_log_button)
        log_layout.addLayout(log_button_layout)

        self.stop_button.setEnabled(False)

    def _create_file_group(self):
        group = QGroupBox("MIDI File")
        layout = QVBoxLayout(group)
        self.file_path_label = QLabel("No file selected.")
        self.file_path_label.setStyleSheet("font-style: italic; color: grey;")
        browse_button = QPushButton("Browse for MIDI File")
        browse_button.clicked.connect(self.select_file)
        self.properties_table = QTableWidget(0, 2)
        self.properties_table.setHorizontalHeaderLabels(["Property", "Value"])
        self.properties_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        self.properties_table.verticalHeader().setVisible(False)
        self.properties_table.setMaximumHeight(140)
        layout.addWidget(self.file_path_label)
        layout.addWidget(browse_button)
        layout.addWidget(self.properties_table)
        return group

    def _create_instrument_group(self):
        group = QGroupBox("Instrument & Tone")
        grid = QGridLayout(group)

        self.instrument_combo = QComboBox()
        self.instrument_combo.addItems(list(INSTRUMENTS))
        self.instrument_combo.setCurrentIndex(-1)
        self.instrument_combo.currentIndexChanged.connect(self.update_tone_combo)
        grid.addWidget(QLabel("Instrument:"), 0, 0)
        grid.addWidget(self.instrument_combo, 0, 1)

        self.tone_combo = QComboBox()
        self.tone_combo.setToolTip("Lowest lyre key's pitch. The best fit for the loaded file is selected automatically.")
        grid.addWidget(QLabel("Tone:"), 1, 0)
        grid.addWidget(self.tone_combo, 1, 1)

        grid.setColumnStretch(1, 1)
        return group

    def _create_playback_group(self):
        group = QGroupBox("Playback Settings")
        grid = QGridLayout(group)

        grid.addWidget(QLabel("Semitones:"), 0, 0)
        self.semitone_buttons = QButtonGroup(group)
        semitone_row = QHBoxLayout()
        for mode, text in (('ignore', "Skip"), ('higher', "Prefer higher"), ('lower', "Prefer lower")):
            button = QRadioButton(text)
            button.setProperty('mode', mode)
            self.semitone_buttons.addButton(button)
            semitone_row.addWidget(button)
            if mode == DEFAULT_SETTINGS['semitone_mode']: button.setChecked(True)
        grid.addLayout(semitone_row, 0, 1)

        self.reject_missed_check = QCheckBox("Refuse to play if any note needs a semitone substitution")
        self.reject_range_check = QCheckBox("Refuse to play if any note is out of the instrument's range")
        grid.addWidget(self.reject_missed_check, 1, 0, 1, 2)
        grid.addWidget(self.reject_range_check, 2, 0, 1, 2)

        self.merge_edit = QLineEdit(DEFAULT_SETTINGS['merge_window'])
        self.merge_edit.setToolTip("Notes starting within this many milliseconds of each other are pressed together.")
        grid.addWidget(QLabel("Merge window (ms):"), 3, 0)
        grid.addWidget(self.merge_edit, 3, 1)

        self.tempo_spinbox = QDoubleSpinBox()
        self.tempo_spinbox.setRange(10.0, 200.0); self.tempo_spinbox.setSingleStep(5.0)
        self.tempo_spinbox.setSuffix(" %"); self.tempo_spinbox.setValue(DEFAULT_SETTINGS['tempo'])
        self.tempo_spinbox.setToolTip("Playback speed in percent of the original. Reloads the current file.")
        self.tempo_spinbox.editingFinished.connect(self.reload_file)
        grid.addWidget(QLabel("Tempo:"), 4, 0)
        grid.addWidget(self.tempo_spinbox, 4, 1)

        self.countdown_check = QCheckBox("Enable 3-second countdown")
        self.countdown_check.setChecked(DEFAULT_SETTINGS['countdown'])
        self.debug_check = QCheckBox("Enable debug output")
        grid.addWidget(self.countdown_check, 5, 0, 1, 2)
        grid.addWidget(self.debug_check, 6, 0, 1, 2)

        grid.setColumnStretch(1, 1)
        return group

    def select_file(self):
        if self.player_thread and self.player_thread.isRunning(): return
        filepath, _ = QFileDialog.getOpenFileName(self, "Select MIDI File", "", "MIDI Files (*.mid *.midi)")
        if not filepath: return
        self._load_file(filepath)

    def reload_file(self):
        if self.midi_path: self._load_file(self.midi_path)

    def _load_file(self, filepath: str):
        tempo = self.tempo_spinbox.value()
        try:
            notes, total = load_midi({'midi_file': filepath, 'tempo': tempo})
        except (IOError, ValueError) as e:
            QMessageBox.warning(self, "Load Failed", str(e))
            return
        self.midi_path, self.notes, self.total_duration_ms = filepath, notes, total
        self.file_path_label.setText(os.path.basename(filepath))
        self.file_path_label.setToolTip(filepath)
        self._show_properties(describe_file(notes, total))
        self.add_log_message(f"Loaded {filepath} at {tempo:g}% tempo: {len(notes)} notes.")
        self.update_tone_combo()

    def _show_properties(self, rows):
        self.properties_table.setRowCount(len(rows))
        for row, (name, value) in enumerate(rows):
            self.properties_table.setItem(row, 0, QTableWidgetItem(name))
            self.properties_table.setItem(row, 1, QTableWidgetItem(value))

    def update_tone_combo(self):
        self.tone_combo.clear()
        selection = select_best_tone(get_instrument(self.instrument_combo.currentText()), self.notes or [])
        if selection is None:
            self.tone_combo.setCurrentIndex(-1)
            return
        for tone, result in enumerate(selection.results):
            self.tone_combo.addItem(describe_tone(tone, result))
        self.tone_combo.setCurrentIndex(selection.best_tone)

    def add_log_message(self, message): self.log_output.append(message)
    def update_progress(self, value: float): self.progress_bar.setValue(int(round(value)))

    def show_played_notes(self, text: str):
        self.current_notes_label.setText(text)
        self.history_output.append(text)

    def copy_log_to_clipboard(self):
        clipboard = QGuiApplication.clipboard()
        clipboard.setText(self.log_output.toPlainText())
        self.add_log_message("\n--- Log copied to clipboard. ---")

    def set_controls_enabled(self, enabled):
        self.play_button.setEnabled(enabled); self.stop_button.setEnabled(not enabled)
        for groupbox in self.findChildren(QGroupBox): groupbox.setEnabled(enabled)

    def gather_config(self) -> Dict[str, Any]:
        checked = self.semitone_buttons.checkedButton()
        return {
            'midi_file': self.midi_path,
            'instrument': self.instrument_combo.currentText() or None,
            'tone': self.tone_combo.currentIndex(),  # -1 when nothing is selected
            'semitone_mode': checked.property('mode') if checked else DEFAULT_SETTINGS['semitone_mode'],
            'merge_window': self.merge_edit.text(),
            'tempo': self.tempo_spinbox.value(),
            'reject_missed': self.reject_missed_check.isChecked(),
            'reject_out_of_range': self.reject_range_check.isChecked(),
            'countdown': self.countdown_check.isChecked(),
            'countdown_seconds': DEFAULT_SETTINGS['countdown_seconds'],
            'debug_mode': self.debug_check.isChecked(),
        }

    def handle_play(self):
        if self.player_thread and self.player_thread.isRunning(): return
        config = self.gather_config()
        self.set_controls_enabled(False)
        self.progress_bar.setValue(0)
        self.history_output.clear()
        self.current_notes_label.setText("")
        self.add_log_message("=" * 50 + "\nStarting playback...")

        self.player_thread = QThread()
        self.player = Player(config, self.notes or [], self.total_duration_ms)
        self.player.moveToThread(self.player_thread)
        self.player_thread.started.connect(self.player.play)
        self.player.playback_finished.connect(self.on_playback_finished)
        self.player.status_updated.connect(self.add_log_message)
        self.player.progress_updated.connect(self.update_progress)
        self.player.notes_played.connect(self.show_played_notes)
        self.player_thread.start()

    def handle_stop(self):
        if self.player: self.player.stop()

    def on_playback_finished(self):
        self.add_log_message("Playback process finished.\n" + "=" * 50 + "\n")
        self.set_controls_enabled(True)
        if self.player_thread:
            self.player_thread.quit()
            self.player_thread.wait()
        self.player = None
        self.player_thread = None

    def closeEvent(self, event):
        if self.player and self.player_thread and self.player_thread.isRunning():
            self.add_log_message("Window closed during playback. Forcing stop...")
            self.player.stop()
            self.player_thread.wait(1000)
        event.accept()


def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
