"""Unit tests for the real-time playback loop, driven by a fake clock."""

from __future__ import annotations

import pathlib
import tempfile
import threading
import unittest

import engine
import player
from engine import InstrumentLayout, Note
from tests.test_midi_loader import write_single_track

OCTAVE = InstrumentLayout(
    "Octave",
    (0, 2, 4, 5, 7, 9, 11, 12),
    tuple("abcdefgh"),
    tuple("ABCDEFGH"),
)


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.waits: list[float] = []

    def __call__(self) -> float:
        return self.now

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        self.now += seconds
        return False


def _batches(notes, window=0, prefer_higher=True):
    return engine.schedule_batches(notes, OCTAVE, 60, prefer_higher, window)


class PlaybackLoopTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.pressed: list[list[str]] = []
        self.reports: list[tuple[float, str]] = []

    def _loop(self, batches, total, **kwargs):
        kwargs.setdefault("wait", self.clock.wait)
        return player.PlaybackLoop(
            batches, total, self.pressed.append,
            on_batch=lambda progress, text: self.reports.append((progress, text)),
            clock=self.clock, **kwargs,
        )

    def test_waits_until_each_batch_target(self) -> None:
        batches = _batches([Note(0.0, 60), Note(500.0, 64), Note(1500.0, 67)])
        loop = self._loop(batches, 2000.0)
        self.assertTrue(loop.run())
        self.assertEqual(self.pressed, [["a"], ["c"], ["e"]])
        self.assertEqual(len(self.clock.waits), 2)
        self.assertAlmostEqual(self.clock.waits[0], 0.5)
        self.assertAlmostEqual(self.clock.waits[1], 1.0)
        self.assertEqual([p for p, _ in self.reports], [0.0, 25.0, 100.0])
        self.assertEqual([t for _, t in self.reports], ["C5", "E5", "G5"])

    def test_chord_is_emitted_in_one_call(self) -> None:
        batches = _batches([Note(0.0, 60), Note(3.0, 64), Note(6.0, 67)], window=10)
        self._loop(batches, 100.0).run()
        self.assertEqual(self.pressed, [["a", "c", "e"]])
        self.assertEqual(self.reports, [(100.0, "C5 E5 G5")])

    def test_late_wakeups_never_skip_or_sleep_negative(self) -> None:
        batches = _batches([Note(float(t), 60) for t in (0, 10, 20, 30)])

        def slow_press(keys):
            self.pressed.append(keys)
            self.clock.now += 0.5  # each press overruns the next target

        loop = player.PlaybackLoop(batches, 40.0, slow_press, clock=self.clock, wait=self.clock.wait)
        self.assertTrue(loop.run())
        self.assertEqual(len(self.pressed), 4)
        self.assertEqual(self.clock.waits, [])

    def test_unplayable_batch_reports_progress_without_keys(self) -> None:
        batches = _batches([Note(0.0, 61), Note(100.0, 60)], prefer_higher=None)
        self._loop(batches, 200.0).run()
        self.assertEqual(self.pressed, [["a"]])
        self.assertEqual(self.reports, [(0.0, "(C#5)"), (100.0, "C5")])

    def test_empty_playback_completes_at_full_progress(self) -> None:
        loop = self._loop([], 0.0)
        self.assertTrue(loop.run())
        self.assertEqual(self.reports, [(100.0, "")])
        self.assertEqual(self.pressed, [])

    def test_progress_is_monotonic_and_ends_at_hundred(self) -> None:
        # Total duration shorter than the last onset still ends at exactly 100.
        batches = _batches([Note(float(t), 60) for t in (0, 300, 600, 900, 1200)])
        self._loop(batches, 1000.0).run()
        progress = [p for p, _ in self.reports]
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(progress[-1], 100.0)
        self.assertTrue(all(0.0 <= p <= 100.0 for p in progress))

    def test_stop_during_wait_sends_nothing_further(self) -> None:
        stop_event = threading.Event()
        batches = _batches([Note(0.0, 60), Note(500.0, 64), Note(900.0, 67)])

        def interrupted_wait(seconds: float) -> bool:
            stop_event.set()
            return True

        loop = self._loop(batches, 1000.0, stop_event=stop_event, wait=interrupted_wait)
        self.assertFalse(loop.run())
        self.assertEqual(self.pressed, [["a"]])
        self.assertEqual(loop.cursor, 1)

    def test_stop_is_checked_before_emission(self) -> None:
        stop_event = threading.Event()
        batches = _batches([Note(0.0, 60), Note(500.0, 64)])

        def wait_then_stop(seconds: float) -> bool:
            self.clock.now += seconds
            stop_event.set()
            return False

        loop = self._loop(batches, 1000.0, stop_event=stop_event, wait=wait_then_stop)
        self.assertFalse(loop.run())
        self.assertEqual(self.pressed, [["a"]])

    def test_stop_before_start(self) -> None:
        loop = self._loop(_batches([Note(0.0, 60)]), 10.0)
        loop.stop()
        self.assertFalse(loop.run())
        self.assertEqual(self.pressed, [])
        self.assertEqual(self.reports, [])

    def test_second_run_replays_from_the_start(self) -> None:
        loop = self._loop(_batches([Note(0.0, 60), Note(100.0, 64)]), 200.0)
        self.assertTrue(loop.run())
        self.assertTrue(loop.run())
        self.assertEqual(self.pressed, [["a"], ["c"], ["a"], ["c"]])
        self.assertEqual([p for p, _ in self.reports], [0.0, 100.0, 0.0, 100.0])
        self.assertEqual(loop.cursor, 2)

    def test_debug_log_records_batches(self) -> None:
        log: list[str] = []
        self._loop(_batches([Note(0.0, 60)]), 10.0, debug_log=log).run()
        self.assertTrue(any(line.startswith("[Player]") and "C5" in line for line in log))


class ProgressAndCountdownTests(unittest.TestCase):
    def test_progress_percent(self) -> None:
        self.assertEqual(player.progress_percent(250.0, 1000.0, False), 25.0)
        self.assertEqual(player.progress_percent(1500.0, 1000.0, False), 100.0)
        self.assertEqual(player.progress_percent(10.0, 1000.0, True), 100.0)
        self.assertEqual(player.progress_percent(10.0, 0.0, False), 100.0)

    def test_countdown_cancelled(self) -> None:
        stop_event = threading.Event()
        stop_event.set()
        messages: list[str] = []
        self.assertFalse(player.run_countdown(3, messages.append, stop_event))
        self.assertEqual(messages, ["Get ready..."])

    def test_zero_second_countdown(self) -> None:
        messages: list[str] = []
        self.assertTrue(player.run_countdown(0, messages.append, threading.Event()))
        self.assertEqual(messages, ["Get ready...", "Playing!"])


class BuildBatchesTests(unittest.TestCase):
    notes = [Note(0.0, 60), Note(4.0, 64), Note(250.0, 67)]

    def test_auto_tone_uses_best_fit(self) -> None:
        config = dict(player.DEFAULT_SETTINGS, merge_window="5")
        batches = player.build_batches(config, self.notes)
        self.assertEqual(len(batches), 2)
        # Best Windsong Lyre tone for a C major triad is 36, putting C5 on offset 24.
        self.assertEqual(batches[0].action_ids, ["q", "e"])

    def test_explicit_tone(self) -> None:
        config = dict(player.DEFAULT_SETTINGS, tone=60, merge_window="0")
        batches = player.build_batches(config, self.notes)
        self.assertEqual([b.action_ids for b in batches], [["z"], ["c"], ["b"]])

    def test_invalid_settings_raise(self) -> None:
        with self.assertRaises(engine.PlaybackValidationError):
            player.build_batches(dict(player.DEFAULT_SETTINGS, merge_window="soon"), self.notes)
        with self.assertRaises(engine.PlaybackValidationError):
            player.build_batches(dict(player.DEFAULT_SETTINGS, instrument="Tuba"), self.notes)
        with self.assertRaises(engine.PlaybackValidationError):
            player.build_batches(dict(player.DEFAULT_SETTINGS), [])


class LoadMidiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = pathlib.Path(self._tmp.name) / "song.mid"
        write_single_track(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_default_tempo_keeps_original_timing(self) -> None:
        notes, total = player.load_midi({'midi_file': str(self.path)})
        self.assertAlmostEqual(notes[2].time, 750.0)
        self.assertAlmostEqual(total, 1250.0)

    def test_tempo_percentage_scales_timing(self) -> None:
        config = dict(player.DEFAULT_SETTINGS, midi_file=str(self.path), tempo=200.0)
        notes, total = player.load_midi(config)
        self.assertAlmostEqual(notes[2].time, 375.0)
        self.assertAlmostEqual(total, 625.0)


if __name__ == "__main__":
    unittest.main()
