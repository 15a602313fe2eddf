#!/usr/bin/env python3
#
# Command-line front end for MIDI2Lyre.
#
import argparse
import sys
import threading
from typing import List, Optional

from engine import INSTRUMENTS, SEMITONE_MODES, TONE_COUNT, describe_tone, get_instrument, select_best_tone
from midi_loader import describe_file
from player import DEFAULT_SETTINGS, PlaybackLoop, build_batches, load_midi, run_countdown


def _tone_arg(value: str) -> Optional[int]:
    if value == 'auto':
        return None
    try:
        tone = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"tone must be 'auto' or an integer, got '{value}'")
    if not 0 <= tone < TONE_COUNT:
        raise argparse.ArgumentTypeError(f"tone must be between 0 and {TONE_COUNT - 1}")
    return tone


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Play a MIDI file on the in-game lyre by simulating key presses.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    playback_group = parser.add_argument_group('Playback Controls')
    playback_group.add_argument('midi_file', help='Path to the MIDI file to play.')
    playback_group.add_argument('--instrument', choices=list(INSTRUMENTS), default=DEFAULT_SETTINGS['instrument'],
                                help='Instrument whose key layout is used.')
    playback_group.add_argument('--tone', type=_tone_arg, default=None,
                                help="Pitch of the lowest lyre key (0-127), or 'auto' for the best fit.")
    playback_group.add_argument('--tempo', type=float, default=DEFAULT_SETTINGS['tempo'],
                                help='Playback speed in percent of the original.')
    playback_group.add_argument('--merge', dest='merge_window', default=DEFAULT_SETTINGS['merge_window'],
                                help='Notes starting within this many milliseconds are pressed together.')
    playback_group.add_argument('--no-countdown', dest='countdown', action='store_false',
                                help='Skip the countdown before playback starts.')
    playback_group.add_argument('--debug', dest='debug_mode', action='store_true',
                                help='Print the debug log after playback.')

    policy_group = parser.add_argument_group('Semitone Handling')
    policy_group.add_argument('--semitone', dest='semitone_mode', choices=SEMITONE_MODES,
                              default=DEFAULT_SETTINGS['semitone_mode'],
                              help="'higher'/'lower': substitute the neighbouring key, trying that side first. 'ignore': skip such notes.")
    policy_group.add_argument('--strict-semitone', dest='reject_missed', action='store_true',
                              help='Refuse to play if any note needs a semitone substitution.')
    policy_group.add_argument('--strict-range', dest='reject_out_of_range', action='store_true',
                              help="Refuse to play if any note is outside the instrument's range.")

    info_group = parser.add_argument_group('Inspection')
    info_group.add_argument('--list-tones', action='store_true',
                            help='Print the range check for every tone and exit.')
    info_group.add_argument('--dry-run', action='store_true',
                            help='Print the scheduled batches instead of pressing keys.')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = dict(DEFAULT_SETTINGS)
    config.update(vars(args))
    debug_log: Optional[List[str]] = [] if args.debug_mode else None

    try:
        notes, total = load_midi(config, debug_log)
    except (IOError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    for name, value in describe_file(notes, total):
        print(f"{name}: {value}")

    if args.list_tones:
        selection = select_best_tone(get_instrument(args.instrument), notes)
        if selection is None:
            print("No tone available: the file has no notes.")
            return 1
        for tone, result in enumerate(selection.results):
            marker = "*" if tone == selection.best_tone else " "
            print(f"{marker} {tone:3d}  {describe_tone(tone, result)}")
        return 0

    try:
        batches = build_batches(config, notes)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if args.dry_run:
        for batch in batches:
            print(f"{batch.nominal_time:10.1f}ms  {' '.join(batch.action_labels) or '-':<20} {batch.text}")
        return 0

    from keyboard_output import KeyboardEmitter

    stop_event = threading.Event()
    emitter = KeyboardEmitter(debug_log)

    def on_batch(progress: float, text: str):
        print(f"[{progress:5.1f}%] {text}")

    loop = PlaybackLoop(batches, total, emitter.press_keys, on_batch=on_batch,
                        stop_event=stop_event, debug_log=debug_log)
    finished = False
    try:
        if not args.countdown or run_countdown(config['countdown_seconds'], print, stop_event):
            finished = loop.run()
    except KeyboardInterrupt:
        loop.stop()
    finally:
        emitter.release_all()
        if debug_log:
            print("\n".join(debug_log))
    print("Playback complete." if finished else "Playback stopped.")
    return 0 if finished else 1


if __name__ == "__main__":
    sys.exit(main())
