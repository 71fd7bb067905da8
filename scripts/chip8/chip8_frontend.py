import argparse
import logging
import os
import sys

os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_1, K_2, K_3, K_4,
    K_q, K_w, K_e, K_r,
    K_a, K_s, K_d, K_f,
    K_z, K_x, K_c, K_v,
)

from chip8 import Chip8, Chip8Error, KEY_COUNT, SCREEN_HEIGHT, SCREEN_WIDTH


# ******************** STATIC SECTION
# the left hand side of a QWERTY keyboard laid out like the COSMAC VIP hex keypad
#   1 2 3 4        1 2 3 C
#   Q W E R   ->   4 5 6 D
#   A S D F        7 8 9 E
#   Z X C V        A 0 B F
KEY_MAPPINGS = {
    K_1: 0x1, K_2: 0x2, K_3: 0x3, K_4: 0xC,
    K_q: 0x4, K_w: 0x5, K_e: 0x6, K_r: 0xD,
    K_a: 0x7, K_s: 0x8, K_d: 0x9, K_f: 0xE,
    K_z: 0xA, K_x: 0x0, K_c: 0xB, K_v: 0xF,
}

DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False
SCALE = 10
SPEED = 700             # instructions per second
TIMER_RATE = 60         # delay/sound timer decrements per second
BLUE = pygame.Color(80, 69, 155, 255)
LIGHT_BLUE = pygame.Color(136, 126, 203, 255)
CAPTION = "CHIP-8 - {name}"
SOUND_MARK = " ♪"

logger = logging.getLogger('chip8.frontend')


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("rom", help="input rom file")
    parser.add_argument("-s", "--scale", type=int, default=SCALE, help="size in window pixels of one CHIP-8 pixel")
    parser.add_argument("--speed", type=int, default=SPEED, help="instructions executed per second")
    parser.add_argument("--debug", action="store_true", help="log the disassembly of every executed instruction")
    args = parser.parse_args(argv)
    if args.scale < 1:
        parser.error("--scale must be a positive integer")
    if args.speed < 1:
        parser.error("--speed must be a positive integer")
    return args


def read_rom(path):
    with open(path, mode='rb') as f:
        return f.read()


def setup_logging(debug=False):
    logging.basicConfig(
        level=logging.DEBUG if debug or DEBUG else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def render(self, video):
        """paint the whole framebuffer, the change becomes visible with refresh"""
        self.surface.fill(self.background)
        for pos, pixel in enumerate(video):
            if pixel:
                x, y = pos % self.w, pos // self.w
                pygame.draw.rect(
                    self.surface,
                    self.foreground,
                    (x * self.scale, y * self.scale, self.scale, self.scale)
                )

    @staticmethod
    def refresh():
        pygame.display.flip()


class Keypad:
    """keeps the 16 hex keys state in sync with the keyboard events"""
    def __init__(self, keys=None):
        self.keys = keys if keys is not None else [False] * KEY_COUNT

    def handle(self, event):
        """update the key state, return False when the event asks to quit"""
        if event.type == pygame.QUIT:
            return False
        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key in KEY_MAPPINGS:
                self.keys[KEY_MAPPINGS[event.key]] = True
        elif event.type == pygame.KEYUP and event.key in KEY_MAPPINGS:
            self.keys[KEY_MAPPINGS[event.key]] = False
        return True


def caption(name, chip):
    title = CAPTION.format(name=name)
    return title + SOUND_MARK if chip.sound_on else title


# ******************** ENTRY POINT SECTION
def run(chip, screen, keypad, name, speed=SPEED):
    """drive the interpreter: `speed` instructions and TIMER_RATE timer ticks per second"""
    clock = pygame.time.Clock()
    budget = 0     # instructions owed, in 1/TIMER_RATE units
    sound_on = None
    while True:
        clock.tick(TIMER_RATE)
        for event in pygame.event.get():
            if not keypad.handle(event):
                return
        budget += speed
        cycles, budget = divmod(budget, TIMER_RATE)
        draw = False
        for _ in range(cycles):
            draw = chip.step() or draw
        chip.tick_timers()
        if draw:
            screen.render(chip.video)
            screen.refresh()
        if chip.sound_on != sound_on:
            sound_on = chip.sound_on
            pygame.display.set_caption(caption(name, chip))


def main(argv=None):
    args = get_args(argv)
    setup_logging(args.debug)
    name = os.path.basename(args.rom)
    try:
        rom = read_rom(args.rom)
    except OSError as e:
        sys.exit(f"Cannot read the ROM at path {args.rom}: {e}")
    chip = Chip8()
    try:
        chip.load_rom(rom)
    except Chip8Error as e:
        logger.error(e)
        sys.exit(1)
    # pygame initialization
    pygame.init()
    pygame.display.set_caption(CAPTION.format(name=name))
    # IO
    screen = Screen(s=args.scale)
    keypad = Keypad(chip.keypad)    # the keypad writes straight into the interpreter's key latch
    try:
        run(chip, screen, keypad, name, args.speed)
    except Chip8Error as e:
        logger.error(e)
        sys.exit(f"********** THE EMULATOR CRASHED WITH THE FOLLOWING STATE\n{chip}")
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
