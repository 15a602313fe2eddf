"""Unit tests for the keyboard emitter, with pynput's Controller replaced by a recorder."""

from __future__ import annotations

import importlib
import sys
import types
import unittest
from unittest import mock


class FakeController:
    instances: list["FakeController"] = []

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        FakeController.instances.append(self)

    def press(self, key: str) -> None:
        if key in self.fail_on:
            raise RuntimeError(f"cannot press {key}")
        self.events.append(("press", key))

    def release(self, key: str) -> None:
        self.events.append(("release", key))


def fake_pynput_modules() -> dict[str, types.ModuleType]:
    package = types.ModuleType("pynput")
    keyboard = types.ModuleType("pynput.keyboard")
    keyboard.Controller = FakeController
    package.keyboard = keyboard
    return {"pynput": package, "pynput.keyboard": keyboard}


def import_keyboard_output() -> types.ModuleType:
    with mock.patch.dict(sys.modules, fake_pynput_modules()):
        sys.modules.pop("keyboard_output", None)
        return importlib.import_module("keyboard_output")


class KeyboardEmitterTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.keyboard_output = import_keyboard_output()

    def setUp(self) -> None:
        self.log: list[str] = []
        self.emitter = self.keyboard_output.KeyboardEmitter(self.log)
        self.controller = self.emitter.keyboard

    def _presses(self) -> list[str]:
        return [key for kind, key in self.controller.events if kind == "press"]

    def _releases(self) -> list[str]:
        return [key for kind, key in self.controller.events if kind == "release"]

    def test_uses_pynput_controller(self) -> None:
        self.assertIsInstance(self.controller, FakeController)

    def test_duplicate_keys_are_pressed_once(self) -> None:
        self.emitter.press_keys(["z", "z", "c"])
        self.assertEqual(self._presses(), ["z", "c"])
        self.assertTrue(any(line.startswith("[Keyboard] Pressed chord") for line in self.log))

    def test_chord_goes_down_before_anything_comes_up(self) -> None:
        self.emitter.press_keys(["z", "c", "b"])
        kinds = [kind for kind, _ in self.controller.events]
        self.assertEqual(kinds, ["press"] * 3 + ["release"] * 3)

    def test_every_pressed_key_is_released(self) -> None:
        self.emitter.press_keys(["q", "w", "e"])
        self.assertCountEqual(self._releases(), ["q", "w", "e"])
        self.assertEqual(self.emitter.held, [])

    def test_failed_press_is_logged_and_other_keys_still_play(self) -> None:
        self.controller.fail_on.add("x")
        self.emitter.press_keys(["z", "x", "c"])
        self.assertEqual(self._presses(), ["z", "c"])
        self.assertCountEqual(self._releases(), ["z", "c"])
        self.assertTrue(any(line.startswith("[Keyboard] ERROR pressing 'x'") for line in self.log))

    def test_empty_batch_touches_nothing(self) -> None:
        self.emitter.press_keys([])
        self.assertEqual(self.controller.events, [])
        self.assertEqual(self.log, [])

    def test_release_all_clears_held_keys(self) -> None:
        self.emitter.held.extend(["a", "s"])
        self.emitter.release_all()
        self.assertEqual(self.emitter.held, [])
        self.assertEqual(self._releases(), ["s", "a"])

    def test_without_debug_log_errors_are_not_recorded(self) -> None:
        emitter = self.keyboard_output.KeyboardEmitter()
        emitter.keyboard.fail_on.add("z")
        emitter.press_keys(["z"])
        self.assertEqual(emitter.held, [])


if __name__ == "__main__":
    unittest.main()
