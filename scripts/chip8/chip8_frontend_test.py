import os
import tempfile
import unittest
from unittest import mock

import pygame

from chip8 import Chip8
from chip8_frontend import KEY_MAPPINGS, SCALE, SPEED, TIMER_RATE, Keypad, caption, get_args, main, read_rom, run


class TestArgs(unittest.TestCase):
    def test_defaults(self):
        args = get_args(["pong.ch8"])
        self.assertEqual((args.rom, args.scale, args.speed, args.debug), ("pong.ch8", SCALE, SPEED, False))

    def test_options(self):
        args = get_args(["pong.ch8", "--scale", "4", "--speed", "1000", "--debug"])
        self.assertEqual((args.scale, args.speed, args.debug), (4, 1000, True))

    def test_bad_scale(self):
        with self.assertRaises(SystemExit):
            get_args(["pong.ch8", "--scale", "0"])


class TestKeypad(unittest.TestCase):
    def test_mapping_covers_every_key(self):
        self.assertEqual(sorted(KEY_MAPPINGS.values()), list(range(16)))

    def test_press_and_release(self):
        chip = Chip8()
        keypad = Keypad(chip.keypad)
        self.assertTrue(keypad.handle(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_x)))
        self.assertTrue(keypad.handle(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_4)))
        self.assertTrue(chip.keypad[0x0])
        self.assertTrue(chip.keypad[0xC])
        keypad.handle(pygame.event.Event(pygame.KEYUP, key=pygame.K_x))
        self.assertFalse(chip.keypad[0x0])
        self.assertEqual(sum(chip.keypad), 1)

    def test_unmapped_key(self):
        keypad = Keypad()
        self.assertTrue(keypad.handle(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_p)))
        self.assertFalse(any(keypad.keys))

    def test_quit(self):
        keypad = Keypad()
        self.assertFalse(keypad.handle(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE)))
        self.assertFalse(keypad.handle(pygame.event.Event(pygame.QUIT)))


class TestHost(unittest.TestCase):
    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix=".ch8")
        os.close(fd)

    def tearDown(self):
        os.remove(self.path)

    def test_read_rom(self):
        with open(self.path, "wb") as f:
            f.write(b"\x00\xe0\x12\x00")
        self.assertEqual(read_rom(self.path), b"\x00\xe0\x12\x00")

    def test_oversized_rom_exits(self):
        with open(self.path, "wb") as f:
            f.write(bytes(3585))
        with self.assertRaises(SystemExit):
            main([self.path])

    def test_missing_rom_exits(self):
        with self.assertRaises(SystemExit):
            main([self.path + ".missing"])

    def test_caption_marks_sound(self):
        chip = Chip8()
        self.assertEqual(caption("PONG", chip), "CHIP-8 - PONG")
        chip.st = 3
        self.assertTrue(caption("PONG", chip).endswith("♪"))

    def test_state_dump(self):
        chip = Chip8()
        chip.v_regs[0xA] = 0x2F
        dump = str(chip)
        self.assertIn("PC_REGISTER:0x0200", dump)
        self.assertIn("VA:0x2f", dump)


class FakeScreen:
    def __init__(self):
        self.frames = 0

    def render(self, video):
        self.frames += 1

    def refresh(self):
        pass


class TestRunLoop(unittest.TestCase):
    def steps_in_one_second(self, speed):
        chip = Chip8()
        chip.load_rom(b"\x12\x00")     # JP 0x200
        steps = []
        step = chip.step

        def counting_step():
            steps.append(chip.pc)
            return step()

        chip.step = counting_step
        frames = [[]] * TIMER_RATE + [[pygame.event.Event(pygame.QUIT)]]
        with mock.patch("pygame.event.get", side_effect=frames), \
                mock.patch("pygame.time.Clock"), \
                mock.patch("pygame.display.set_caption"):
            run(chip, FakeScreen(), Keypad(chip.keypad), "LOOP", speed)
        return len(steps)

    def test_speed_is_instructions_per_second(self):
        for speed in (700, 100, 30, 1):
            self.assertEqual(self.steps_in_one_second(speed), speed)

    def test_timers_tick_once_per_frame(self):
        chip = Chip8()
        chip.load_rom(b"\x12\x00")
        chip.dt = 100
        frames = [[]] * 10 + [[pygame.event.Event(pygame.QUIT)]]
        with mock.patch("pygame.event.get", side_effect=frames), \
                mock.patch("pygame.time.Clock"), \
                mock.patch("pygame.display.set_caption"):
            run(chip, FakeScreen(), Keypad(chip.keypad), "LOOP", 1000)
        self.assertEqual(chip.dt, 90)


if __name__ == "__main__":
    unittest.main()
