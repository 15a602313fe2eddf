#
# Real-time side of MIDI2Lyre: turns the batch list into timed key presses.
# The loop is host-agnostic; it reports through callbacks and stops through a threading.Event.
#
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from engine import (Note, PlaybackBatch, get_instrument, schedule_batches, select_best_tone,
                    semitone_policy, validate_playback_request)
from midi_loader import MidiParser

DEFAULT_SETTINGS: Dict[str, Any] = {
    'instrument': "Windsong Lyre",
    'tone': None,  # None picks the best tone automatically
    'semitone_mode': 'higher',
    'merge_window': "0",
    'reject_missed': False,
    'reject_out_of_range': False,
    'countdown': True,
    'countdown_seconds': 3,
    'tempo': 100.0,
    'debug_mode': False,
}


def load_midi(config: Dict, debug_log: Optional[List[str]] = None) -> Tuple[List[Note], float]:
    """Parses config["midi_file"] at the configured tempo percentage."""
    return MidiParser.parse(config.get('midi_file'), config.get('tempo', 100.0) / 100.0, debug_log)


def resolve_tone(config: Dict, notes: Sequence[Note]) -> Optional[int]:
    tone = config.get('tone')
    if tone is not None:
        return tone
    selection = select_best_tone(get_instrument(config.get('instrument')), notes)
    return selection.best_tone if selection else None


def build_batches(config: Dict, notes: Sequence[Note]) -> List[PlaybackBatch]:
    """Validates the settings against the loaded notes and schedules the batches.

    Raises PlaybackValidationError when playback must not start.
    """
    layout = get_instrument(config.get('instrument'))
    tone = resolve_tone(config, notes)
    merge_window = validate_playback_request(
        notes, layout, tone, config.get('merge_window', "0"),
        reject_missed=config.get('reject_missed', False),
        reject_out_of_range=config.get('reject_out_of_range', False),
    )
    prefer_higher = semitone_policy(config.get('semitone_mode', 'higher'))
    return schedule_batches(notes, layout, tone, prefer_higher, merge_window)


def progress_percent(nominal_time: float, total_duration_ms: float, is_last: bool) -> float:
    if is_last or total_duration_ms <= 0:
        return 100.0
    return min(100.0, max(0.0, nominal_time / total_duration_ms * 100.0))


def run_countdown(seconds: int, status: Callable[[str], None], stop_event: threading.Event) -> bool:
    """Returns False if stopped during the countdown."""
    status("Get ready...")
    for i in range(seconds, 0, -1):
        if stop_event.is_set(): return False
        status(f"Starting in {i}...")
        if stop_event.wait(1.0): return False
    status("Playing!")
    return not stop_event.is_set()


class PlaybackLoop:
    def __init__(self, batches: Sequence[PlaybackBatch], total_duration_ms: float,
                 press_keys: Callable[[List[str]], None],
                 on_batch: Optional[Callable[[float, str], None]] = None,
                 stop_event: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 wait: Optional[Callable[[float], bool]] = None,
                 debug_log: Optional[List[str]] = None):
        self.batches = list(batches)
        self.total_duration_ms = total_duration_ms
        self.press_keys = press_keys
        self.on_batch = on_batch or (lambda progress, text: None)
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        # wait(seconds) returns True when woken by a stop request.
        self.wait = wait or self.stop_event.wait
        self.debug_log = debug_log
        self.cursor = 0

    def _log(self, msg: str):
        if self.debug_log is not None:
            self.debug_log.append(f"[Player] {msg}")

    def stop(self):
        self.stop_event.set()

    def run(self) -> bool:
        """Plays every batch in order. Returns True when finished, False when stopped."""
        self.cursor = 0
        if not self.batches:
            self.on_batch(100.0, "")
            return True

        start = self.clock()
        progress = 0.0
        last_index = len(self.batches) - 1
        self._log(f"Playback started with {len(self.batches)} batches.")
        while self.cursor <= last_index:
            batch = self.batches[self.cursor]
            if self.stop_event.is_set(): break

            target = start + batch.nominal_time / 1000.0
            delay = target - self.clock()
            if delay > 0 and self.wait(delay): break
            if self.stop_event.is_set(): break

            keys = batch.action_ids
            if keys:
                self.press_keys(keys)
            lateness_ms = (self.clock() - target) * 1000.0
            self._log(f"T={batch.nominal_time:10.2f}ms | late {lateness_ms:6.2f}ms | {batch.text} -> {keys}")

            progress = max(progress, progress_percent(batch.nominal_time, self.total_duration_ms,
                                                      self.cursor == last_index))
            self.on_batch(progress, batch.text)
            self.cursor += 1

        finished = self.cursor > last_index
        if not finished:
            self._log(f"Playback stopped at batch {self.cursor}/{len(self.batches)}.")
        return finished
