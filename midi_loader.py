import mido
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from engine import Note, note_name


class MidiParser:
    @staticmethod
    def parse(filepath: str, tempo_scale: float = 1.0, debug_log: Optional[List[str]] = None) -> Tuple[List[Note], float]:
        """Returns the sorted note-on list (ms) and the time of the last note-off (ms)."""
        def _log(msg):
            if debug_log is not None: debug_log.append(f"[Parser] {msg}")

        if tempo_scale <= 0:
            raise ValueError(f"Tempo scale must be positive, got {tempo_scale}")
        try:
            mid = mido.MidiFile(filepath)
            _log(f"Successfully opened MIDI file: {filepath}")
        except Exception as e:
            raise IOError(f"Could not read or parse MIDI file: {e}")

        notes: List[Note] = []
        open_notes: Dict[Tuple[int, int], int] = defaultdict(int)
        absolute_time = 0.0
        max_note_off = 0.0
        tempo = 500000
        ticks_per_beat = mid.ticks_per_beat or 480
        _log(f"Ticks per beat: {ticks_per_beat}")

        for msg in mido.merge_tracks(mid.tracks):
            absolute_time += mido.tick2second(msg.time, ticks_per_beat, tempo)
            time_ms = absolute_time * 1000.0 / tempo_scale

            if msg.type == 'set_tempo':
                tempo = msg.tempo
                _log(f"  {time_ms:10.2f}ms TEMPO CHANGE to {mido.tempo2bpm(tempo):.2f} BPM")
            elif msg.type == 'note_on' and msg.velocity > 0:
                notes.append(Note(time_ms, msg.note))
                open_notes[(msg.channel, msg.note)] += 1
                _log(f"  {time_ms:10.2f}ms NOTE ON  {note_name(msg.note):<4} (pitch {msg.note}, ch {msg.channel})")
            elif msg.type == 'note_off' or (msg.type == 'note_on' and msg.velocity == 0):
                key = (msg.channel, msg.note)
                if open_notes[key] > 0:
                    open_notes[key] -= 1
                    max_note_off = max(max_note_off, time_ms)

        if any(open_notes.values()):
            # Notes never switched off run to the end of the file.
            _log(f"{sum(open_notes.values())} note(s) without a note-off; closing at end of file.")
            max_note_off = max(max_note_off, absolute_time * 1000.0 / tempo_scale)

        notes.sort()
        _log(f"Parsing complete. Found {len(notes)} notes, last note-off at {max_note_off:.2f}ms.")
        return notes, max_note_off


def describe_file(notes: List[Note], total_duration_ms: float) -> List[Tuple[str, str]]:
    """Name/value rows shown next to a loaded file."""
    if not notes:
        return [("Total notes", "0")]
    lowest = min(n.pitch for n in notes)
    highest = max(n.pitch for n in notes)
    return [
        ("Total notes", str(len(notes))),
        ("Lowest note", note_name(lowest)),
        ("Highest note", note_name(highest)),
        ("Duration", f"{total_duration_ms / 1000.0:.3f} s"),
    ]
