from typing import List, Optional, Sequence

from pynput.keyboard import Controller


class KeyboardEmitter:
    """Presses a batch of lyre keys as one chord through the OS keyboard."""
    def __init__(self, debug_log: Optional[List[str]] = None):
        self.keyboard = Controller()
        self.debug_log = debug_log
        self.held: List[str] = []

    def _log(self, msg):
        if self.debug_log is not None: self.debug_log.append(f"[Keyboard] {msg}")

    def press_keys(self, keys: Sequence[str]):
        chord = list(dict.fromkeys(keys))
        if not chord: return
        # All keys go down before any comes up, so the game sees one simultaneous press.
        for key in chord:
            try:
                self.keyboard.press(key)
                self.held.append(key)
            except Exception as e:
                self._log(f"ERROR pressing '{key}': {e}")
        self.release_all()
        self._log(f"Pressed chord {chord}")

    def release_all(self):
        while self.held:
            key = self.held.pop()
            try:
                self.keyboard.release(key)
            except Exception as e:
                self._log(f"ERROR releasing '{key}': {e}")
