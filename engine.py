#
# MIDI2Lyre core: note mapping, tone search and batch scheduling.
# Everything in here is pure and synchronous; the real-time side lives in player.py.
#
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

PITCH_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
TONE_COUNT = 128
SEMITONE_MODES = ('ignore', 'higher', 'lower')


# =====================================================================================
# ==                                                                                 ==
# ==                       SECTION 1: DATA STRUCTURES                                ==
# ==                                                                                 ==
# =====================================================================================

def note_name(pitch: int) -> str:
    return f"{PITCH_NAMES[pitch % 12]}{pitch // 12}"


@dataclass(frozen=True, order=True)
class Note:
    """A single note-on: time in milliseconds from the start of the piece, MIDI pitch."""
    time: float
    pitch: int

    def __post_init__(self):
        if self.pitch < 0:
            raise ValueError(f"Illegal note number: {self.pitch}")
        if self.time < 0:
            raise ValueError(f"Illegal note time: {self.time}")

    @property
    def name(self) -> str:
        return note_name(self.pitch)


@dataclass(frozen=True)
class InstrumentLayout:
    """Playable pitch offsets (relative to the lowest key) and the keys that play them."""
    name: str
    offsets: Tuple[int, ...]
    action_ids: Tuple[str, ...]
    action_labels: Tuple[str, ...]

    def __post_init__(self):
        if not self.offsets:
            raise ValueError(f"Layout '{self.name}' has no playable offsets")
        if not len(self.offsets) == len(self.action_ids) == len(self.action_labels):
            raise ValueError(f"Layout '{self.name}': offsets, action ids and labels differ in length")
        if any(b <= a for a, b in zip(self.offsets, self.offsets[1:])):
            raise ValueError(f"Layout '{self.name}': offsets must be strictly increasing")

    def index_of(self, relative: int) -> Optional[int]:
        pos = bisect_left(self.offsets, relative)
        if pos < len(self.offsets) and self.offsets[pos] == relative:
            return pos
        return None


@dataclass(frozen=True)
class ActionResult:
    note: Note
    modifier: Optional[bool] = None  # True: one semitone up, False: one semitone down
    action_id: Optional[str] = None
    action_label: Optional[str] = None

    @property
    def playable(self) -> bool:
        return self.action_id is not None

    @property
    def label(self) -> str:
        return self.note.name if self.playable else f"({self.note.name})"


@dataclass(frozen=True)
class CheckResult:
    out_of_range_count: int = 0
    missed_count: int = 0

    def sort_key(self) -> Tuple[int, int]:
        return self.out_of_range_count, self.missed_count


@dataclass(frozen=True)
class ToneSelection:
    best_tone: int
    results: List[CheckResult] = field(default_factory=list)


@dataclass(frozen=True)
class PlaybackBatch:
    """Notes fired as one simultaneous key press at nominal_time (ms)."""
    nominal_time: float
    actions: Tuple[ActionResult, ...]

    @property
    def action_ids(self) -> List[str]:
        return [a.action_id for a in self.actions if a.playable]

    @property
    def action_labels(self) -> List[str]:
        return [a.action_label for a in self.actions if a.playable]

    @property
    def notes(self) -> List[Note]:
        return [a.note for a in self.actions]

    @property
    def text(self) -> str:
        return " ".join(a.label for a in self.actions)


# --- Instrument Definitions ---
LYRE_KEYS = "zxcvbnmasdfghjqwertyu"

WINDSONG_OFFSETS = (0, 2, 4, 5, 7, 9, 11, 12, 14, 16, 17, 19, 21, 23, 24, 26, 28, 29, 31, 33, 35)
VINTAGE_OFFSETS = (0, 2, 3, 5, 7, 9, 10, 12, 14, 15, 17, 19, 21, 22, 24, 25, 27, 29, 31, 32, 34)


def _lyre_layout(name: str, offsets: Tuple[int, ...]) -> InstrumentLayout:
    return InstrumentLayout(name, offsets, tuple(LYRE_KEYS), tuple(LYRE_KEYS.upper()))


WINDSONG_LYRE = _lyre_layout("Windsong Lyre", WINDSONG_OFFSETS)
VINTAGE_LYRE = _lyre_layout("Vintage Lyre", VINTAGE_OFFSETS)

# The Floral Zither plays exactly like the Windsong Lyre.
INSTRUMENTS = {
    "Windsong Lyre": WINDSONG_LYRE,
    "Floral Zither": WINDSONG_LYRE,
    "Vintage Lyre": VINTAGE_LYRE,
}


def get_instrument(name: Optional[str]) -> Optional[InstrumentLayout]:
    return INSTRUMENTS.get(name) if name else None


# =====================================================================================
# ==                                                                                 ==
# ==                SECTION 2: PITCH MAPPING & TONE SEARCH                           ==
# ==                                                                                 ==
# =====================================================================================

def semitone_policy(mode: str) -> Optional[bool]:
    """'ignore' -> None (no substitution), 'higher' -> True, 'lower' -> False."""
    if mode not in SEMITONE_MODES:
        raise ValueError(f"Unknown semitone mode '{mode}'. Expected one of {', '.join(SEMITONE_MODES)}.")
    if mode == 'ignore':
        return None
    return mode == 'higher'


def map_note(layout: InstrumentLayout, transposition: int, note: Note,
             prefer_higher: Optional[bool] = None) -> ActionResult:
    relative = note.pitch - transposition
    pos = layout.index_of(relative)
    if pos is not None:
        return ActionResult(note, None, layout.action_ids[pos], layout.action_labels[pos])
    if prefer_higher is None:
        return ActionResult(note)

    # One semitone on the preferred side, then one semitone on the other. Never further.
    step = 1 if prefer_higher else -1
    for delta in (step, -step):
        pos = layout.index_of(relative + delta)
        if pos is not None:
            return ActionResult(note, delta > 0, layout.action_ids[pos], layout.action_labels[pos])
    return ActionResult(note)


def check_range(layout: Optional[InstrumentLayout], transposition: int,
                notes: Sequence[Note]) -> Optional[CheckResult]:
    if layout is None:
        return None
    if not notes:
        return CheckResult()
    pitches = np.array([n.pitch for n in notes], dtype=np.int64)
    # One semitone of slack on either end of the keyboard.
    min_pitch = layout.offsets[0] + transposition - 1
    max_pitch = layout.offsets[-1] + transposition + 1
    out_of_range = (pitches < min_pitch) | (pitches > max_pitch)
    exact = np.isin(pitches - transposition, np.asarray(layout.offsets, dtype=np.int64))
    missed = ~out_of_range & ~exact
    return CheckResult(int(np.count_nonzero(out_of_range)), int(np.count_nonzero(missed)))


def select_best_tone(layout: Optional[InstrumentLayout], notes: Sequence[Note]) -> Optional[ToneSelection]:
    if layout is None or not notes:
        return None
    results: List[CheckResult] = []
    best_tone, best_key = -1, None
    for tone in range(TONE_COUNT):
        result = check_range(layout, tone, notes)
        results.append(result)
        if best_key is None or result.sort_key() < best_key:
            best_tone, best_key = tone, result.sort_key()
    return ToneSelection(best_tone, results)


def describe_tone(tone: int, result: CheckResult) -> str:
    return (f"Low do = {note_name(tone)} | {result.out_of_range_count} out of range"
            f" | {result.missed_count} a semitone off")


# =====================================================================================
# ==                                                                                 ==
# ==                SECTION 3: BATCH SCHEDULING & VALIDATION                         ==
# ==                                                                                 ==
# =====================================================================================

def schedule_batches(notes: Sequence[Note], layout: Optional[InstrumentLayout], transposition: int,
                     prefer_higher: Optional[bool], merge_window_ms: int) -> List[PlaybackBatch]:
    """Group notes lying within merge_window_ms of a batch's first note into one batch."""
    if merge_window_ms < 0:
        raise ValueError(f"Merge window must be non-negative, got {merge_window_ms}")
    if layout is None:
        return []
    ordered = sorted(notes)
    batches: List[PlaybackBatch] = []
    i = 0
    while i < len(ordered):
        first = ordered[i]
        j = i + 1
        while j < len(ordered) and ordered[j].time - first.time <= merge_window_ms:
            j += 1
        actions = tuple(map_note(layout, transposition, n, prefer_higher) for n in ordered[i:j])
        batches.append(PlaybackBatch(first.time, actions))
        i = j
    return batches


class PlaybackValidationError(ValueError):
    """Raised before playback starts when the user's selections cannot be played."""


def parse_merge_window(text: Optional[str]) -> int:
    value = (text or "").strip()
    if not (value.isascii() and value.isdigit()):
        raise PlaybackValidationError(f"Note merging window '{text}' is not a valid non-negative integer.")
    return int(value)


def validate_playback_request(notes: Optional[Sequence[Note]], layout: Optional[InstrumentLayout],
                              tone: Optional[int], merge_window_text: Optional[str],
                              reject_missed: bool = False, reject_out_of_range: bool = False) -> int:
    """Check everything the player needs up front. Returns the parsed merge window in ms."""
    if not notes:
        raise PlaybackValidationError("Please load a MIDI file first.")
    if layout is None:
        raise PlaybackValidationError("Please select an instrument.")
    if tone is None or not 0 <= tone < TONE_COUNT:
        raise PlaybackValidationError("Please select a tone.")
    if reject_missed or reject_out_of_range:
        result = check_range(layout, tone, notes)
        if reject_missed and result.missed_count > 0:
            raise PlaybackValidationError(
                f"{result.missed_count} note(s) need a semitone substitution, which is not allowed.")
        if reject_out_of_range and result.out_of_range_count > 0:
            raise PlaybackValidationError(
                f"{result.out_of_range_count} note(s) are outside the instrument's range, which is not allowed.")
    return parse_merge_window(merge_window_text)
