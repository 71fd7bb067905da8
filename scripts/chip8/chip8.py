# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# http://devernay.free.fr/hacks/chip8/C8TECH10.HTM
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import logging
import random
from collections import namedtuple
from functools import wraps


# ******************** STATIC SECTION
C8_FONTS = (0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
            0x20, 0x60, 0x20, 0x20, 0x70,  # 1
            0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
            0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
            0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
            0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
            0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
            0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
            0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
            0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
            0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
            0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
            0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
            0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
            0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
            0xF0, 0x80, 0xF0, 0x80, 0x80)  # F

MEMORY_SIZE = 4096
FONT_START_ADDRESS = 0x050
FONT_GLYPH_SIZE = 5
ROM_START_ADDRESS = 0x200
ROM_MAX_SIZE = 0xFFF - ROM_START_ADDRESS + 1
STACK_SIZE = 16
REGISTER_COUNT = 16
KEY_COUNT = 16
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32

logger = logging.getLogger('chip8')


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class of every condition that must halt the interpreter"""


class StackOverflow(Chip8Error):
    def __init__(self, pc):
        super().__init__(f"CALL at 0x{pc:04x} with {STACK_SIZE} return addresses already on the stack")
        self.pc = pc


class StackUnderflow(Chip8Error):
    def __init__(self, pc):
        super().__init__(f"RET at 0x{pc:04x} with an empty stack")
        self.pc = pc


class RomTooLarge(Chip8Error):
    def __init__(self, size, limit=ROM_MAX_SIZE):
        super().__init__(f"ROM is {size} bytes, the program region holds at most {limit}")
        self.size = size
        self.limit = limit


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to log the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = (args[0].pc - 2) & 0xFFFF    # args[0] equals self, pc has already been advanced
            vals = fn(*args, **kwargs)              # use the locals() values of each decorated function in the log
            if logger.isEnabledFor(logging.DEBUG):
                vals['mem_addr'] = mem_addr
                logger.debug("0x{mem_addr:04x}    ".format(**vals) + msg.format(**vals))
        return wrapper_fn
    return decorator


# ******************** DECODER SECTION
Instruction = namedtuple('Instruction', ['name', 'word', 'kind', 'x', 'y', 'n', 'kk', 'nnn'])

# top nibble -> mnemonic, or (field used to disambiguate, {field value: mnemonic})
OPCODES = {
    0x0: ('kk', {0xE0: 'CLS', 0xEE: 'RET'}),
    0x1: 'JP',
    0x2: 'CALL',
    0x3: 'SE_BYTE',
    0x4: 'SNE_BYTE',
    0x5: 'SE_REG',
    0x6: 'LD_BYTE',
    0x7: 'ADD_BYTE',
    0x8: ('n', {0x0: 'LD_REG', 0x1: 'OR', 0x2: 'AND', 0x3: 'XOR', 0x4: 'ADD_REG',
                0x5: 'SUB', 0x6: 'SHR', 0x7: 'SUBN', 0xE: 'SHL'}),
    0x9: 'SNE_REG',
    0xA: 'LD_I',
    0xB: 'JP_V0',
    0xC: 'RND',
    0xD: 'DRW',
    0xE: ('kk', {0x9E: 'SKP', 0xA1: 'SKNP'}),
    0xF: ('kk', {0x07: 'LD_VX_DT', 0x0A: 'LD_VX_K', 0x15: 'LD_DT_VX', 0x18: 'LD_ST_VX',
                 0x1E: 'ADD_I', 0x29: 'LD_F', 0x33: 'LD_B', 0x55: 'LD_MEM_VX', 0x65: 'LD_VX_MEM'}),
}


def decode(word):
    """
    split a 16-bit instruction word into its nibble fields and name the opcode it encodes
    words that match no documented opcode decode to a name of None
    """
    fields = {
        'kind': word >> 12,
        'x': (word >> 8) & 0xF,
        'y': (word >> 4) & 0xF,
        'n': word & 0xF,
        'kk': word & 0xFF,
        'nnn': word & 0xFFF,
    }
    entry = OPCODES[fields['kind']]
    if isinstance(entry, tuple):
        field, table = entry
        name = table.get(fields[field])
    else:
        name = entry
    return Instruction(name, word, **fields)


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A STACK WITH A LIMITED SIZE OF 16 ADDRESSES
class Stack:
    def __init__(self):
        self.addr_list = [0] * STACK_SIZE
        self.sp = 0     # next free slot

    def __str__(self):
        return str([f"0x{addr:04x}" for addr in self.addr_list[:self.sp]])

    def push(self, address, pc):
        if self.sp >= STACK_SIZE:
            raise StackOverflow(pc)
        self.addr_list[self.sp] = address
        self.sp += 1

    def pop(self, pc):
        if self.sp == 0:
            raise StackUnderflow(pc)
        self.sp -= 1
        return self.addr_list[self.sp]


# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self):
        self.inner = bytearray(MEMORY_SIZE)

    def __setitem__(self, address, value):
        self.inner[address % MEMORY_SIZE] = value

    def __getitem__(self, address):
        if isinstance(address, slice):
            return self.inner[address]
        return self.inner[address % MEMORY_SIZE]

    def load_font(self):
        """copy the built-in hex digit glyphs into low memory"""
        self.inner[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)] = bytes(C8_FONTS)

    def load_rom(self, rom):
        """copy a program image into memory at the start of the program region"""
        if len(rom) > ROM_MAX_SIZE:
            raise RomTooLarge(len(rom))
        self.inner[ROM_START_ADDRESS:ROM_START_ADDRESS+len(rom)] = rom
        logger.info(f"Loaded a ROM of {len(rom)} bytes at 0x{ROM_START_ADDRESS:03x}")


# ******************** CPU SECTION
class Chip8:
    def __init__(self, rng=None):
        self.mem = Memory()
        self.stack = Stack()
        self.v_regs = [0] * REGISTER_COUNT
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.keypad = [False] * KEY_COUNT                   # written by the host between cycles
        self.video = [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)   # row-major, read by the host
        self.draw = False
        self.rng = rng or random
        self.instructions = {
            'CLS': self._clear_screen,
            'RET': self._return,
            'JP': self._jump,
            'CALL': self._call_addr,
            'SE_BYTE': self._skip_if_eq,
            'SNE_BYTE': self._skip_if_not_eq,
            'SE_REG': self._skip_if_eq_regs,
            'LD_BYTE': self._set_vk,
            'ADD_BYTE': self._add_to_vk,
            'LD_REG': self._set_vx_to_vy,
            'OR': self._set_vx_or_vy,
            'AND': self._set_vx_and_vy,
            'XOR': self._set_vx_xor_vy,
            'ADD_REG': self._add_vx_vy,
            'SUB': self._sub_vx_vy,
            'SHR': self._shr,
            'SUBN': self._subn_vx_vy,
            'SHL': self._shl,
            'SNE_REG': self._skip_if_not_eq_regs,
            'LD_I': self._set_idx,
            'JP_V0': self._jump_plus,
            'RND': self._random_byte_and,
            'DRW': self._to_screen,
            'SKP': self._skip_if_pressed,
            'SKNP': self._skip_if_not_pressed,
            'LD_VX_DT': self._set_vx_dt,
            'LD_VX_K': self._wait_keypress,
            'LD_DT_VX': self._set_dt_vx,
            'LD_ST_VX': self._set_st,
            'ADD_I': self._add_to_idx,
            'LD_F': self._select_char,
            'LD_B': self._bcd_repr,
            'LD_MEM_VX': self._store_vregs,
            'LD_VX_MEM': self._load_vregs,
        }
        self.mem.load_font()

    def __str__(self):
        registers = " ".join(f"V{i:X}:0x{v:02x}" for i, v in enumerate(self.v_regs))
        pointers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | DT:{self.dt} | ST:{self.st}"
        stack = f"STACK:{self.stack}"
        flags = f"DRAW: {self.draw}"
        return f"{pointers}\n{registers}\n{stack}\n{flags}"

    def load_rom(self, rom):
        self.mem.load_rom(rom)

    def pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        return self.video[y * SCREEN_WIDTH + x]

    @property
    def sound_on(self):
        return self.st != 0

    @asm("CLS")
    def _clear_screen(self, ins):
        for i in range(len(self.video)):
            self.video[i] = 0
        self.draw = True
        return locals()

    @asm("RET")
    def _return(self, ins):
        """return from a subroutine"""
        self.pc = self.stack.pop(self.pc - 2)
        return locals()

    @asm("JP 0x{ins.nnn:04x}")
    def _jump(self, ins):
        self.pc = ins.nnn
        return locals()

    @asm("CALL 0x{ins.nnn:04x}")
    def _call_addr(self, ins):
        self.stack.push(self.pc, self.pc - 2)
        self.pc = ins.nnn
        return locals()

    @asm("SE V{ins.x:X}, {ins.kk}")
    def _skip_if_eq(self, ins):
        if self.v_regs[ins.x] == ins.kk:
            self._goto_next_instruction()
        return locals()

    @asm("SNE V{ins.x:X}, {ins.kk}")
    def _skip_if_not_eq(self, ins):
        if self.v_regs[ins.x] != ins.kk:
            self._goto_next_instruction()
        return locals()

    @asm("SE V{ins.x:X}, V{ins.y:X}")
    def _skip_if_eq_regs(self, ins):
        if self.v_regs[ins.x] == self.v_regs[ins.y]:
            self._goto_next_instruction()
        return locals()

    @asm("SNE V{ins.x:X}, V{ins.y:X}")
    def _skip_if_not_eq_regs(self, ins):
        if self.v_regs[ins.x] != self.v_regs[ins.y]:
            self._goto_next_instruction()
        return locals()

    @asm("LD V{ins.x:X}, {ins.kk}")
    def _set_vk(self, ins):
        """set the value of one of the 16 variable registers, Vx"""
        self.v_regs[ins.x] = ins.kk
        return locals()

    @asm("ADD V{ins.x:X}, {ins.kk}")
    def _add_to_vk(self, ins):
        """add to the value already present in one of the variable registers, VF is left untouched"""
        self.v_regs[ins.x] = (self.v_regs[ins.x] + ins.kk) & 0xFF
        return locals()

    @asm("LD V{ins.x:X}, V{ins.y:X}")
    def _set_vx_to_vy(self, ins):
        self.v_regs[ins.x] = self.v_regs[ins.y]
        return locals()

    @asm("OR V{ins.x:X}, V{ins.y:X}")
    def _set_vx_or_vy(self, ins):
        self.v_regs[ins.x] |= self.v_regs[ins.y]
        return locals()

    @asm("AND V{ins.x:X}, V{ins.y:X}")
    def _set_vx_and_vy(self, ins):
        self.v_regs[ins.x] &= self.v_regs[ins.y]
        return locals()

    @asm("XOR V{ins.x:X}, V{ins.y:X}")
    def _set_vx_xor_vy(self, ins):
        self.v_regs[ins.x] ^= self.v_regs[ins.y]
        return locals()

    # the flag-setting arithmetic below computes result and flag from the operands
    # before writing either, then writes VF last so the flag survives when x is F

    @asm("ADD V{ins.x:X}, V{ins.y:X}")
    def _add_vx_vy(self, ins):
        """set Vx = Vx + Vy, VF = carry"""
        total = self.v_regs[ins.x] + self.v_regs[ins.y]
        self.v_regs[ins.x] = total & 0xFF
        self.v_regs[0xF] = 1 if total > 0xFF else 0
        return locals()

    @asm("SUB V{ins.x:X}, V{ins.y:X}")
    def _sub_vx_vy(self, ins):
        """set Vx = Vx - Vy, VF = NOT borrow"""
        vx, vy = self.v_regs[ins.x], self.v_regs[ins.y]
        self.v_regs[ins.x] = (vx - vy) & 0xFF
        self.v_regs[0xF] = 1 if vx > vy else 0
        return locals()

    @asm("SHR V{ins.x:X}")
    def _shr(self, ins):
        vx = self.v_regs[ins.x]
        self.v_regs[ins.x] = vx >> 1
        self.v_regs[0xF] = vx & 0x1
        return locals()

    @asm("SUBN V{ins.x:X}, V{ins.y:X}")
    def _subn_vx_vy(self, ins):
        """set Vx = Vy - Vx, VF = NOT borrow"""
        vx, vy = self.v_regs[ins.x], self.v_regs[ins.y]
        self.v_regs[ins.x] = (vy - vx) & 0xFF
        self.v_regs[0xF] = 1 if vy > vx else 0
        return locals()

    @asm("SHL V{ins.x:X}")
    def _shl(self, ins):
        vx = self.v_regs[ins.x]
        self.v_regs[ins.x] = (vx << 1) & 0xFF
        self.v_regs[0xF] = (vx & 0x80) >> 7
        return locals()

    @asm("LD I, 0x{ins.nnn:04x}")
    def _set_idx(self, ins):
        self.idx = ins.nnn
        return locals()

    @asm("JP V0, 0x{ins.nnn:04x}")
    def _jump_plus(self, ins):
        self.pc = self.v_regs[0x0] + ins.nnn
        return locals()

    @asm("RND V{ins.x:X}, 0x{ins.kk:02x}")
    def _random_byte_and(self, ins):
        rnd = self.rng.randint(0, 255)
        self.v_regs[ins.x] = rnd & ins.kk
        return locals()

    @asm("DRW V{ins.x:X}, V{ins.y:X}, {ins.n}")
    def _to_screen(self, ins):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x = self.v_regs[ins.x] % SCREEN_WIDTH
        y = self.v_regs[ins.y] % SCREEN_HEIGHT
        collision = 0
        for row in range(ins.n):
            y_coordinate = y + row
            if y_coordinate >= SCREEN_HEIGHT:
                break       # clipped at the bottom edge, no wrap around
            sprite_byte = self.mem[self.idx + row]
            for col in range(8):
                x_coordinate = x + col
                if x_coordinate >= SCREEN_WIDTH:
                    break   # clipped at the right edge
                if sprite_byte & (0x80 >> col):
                    pos = y_coordinate * SCREEN_WIDTH + x_coordinate
                    # the only case when a pixel gets erased is when it was ON and is turned ON again
                    if self.video[pos]:
                        collision = 1
                    self.video[pos] ^= 1
        self.v_regs[0xF] = collision
        self.draw = True
        return locals()

    @asm("SKP V{ins.x:X}")
    def _skip_if_pressed(self, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        if self.keypad[self.v_regs[ins.x] & 0xF]:
            self._goto_next_instruction()
        return locals()

    @asm("SKNP V{ins.x:X}")
    def _skip_if_not_pressed(self, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        if not self.keypad[self.v_regs[ins.x] & 0xF]:
            self._goto_next_instruction()
        return locals()

    @asm("LD V{ins.x:X}, DT")
    def _set_vx_dt(self, ins):
        self.v_regs[ins.x] = self.dt
        return locals()

    @asm("LD V{ins.x:X}, K")
    def _wait_keypress(self, ins):
        """wait for a key press and store the lowest held key in Vx"""
        pressed = [key for key, held in enumerate(self.keypad) if held]
        if pressed:
            self.v_regs[ins.x] = pressed[0]
        else:
            self.pc = (self.pc - 0x2) & 0xFFFF    # stay on the same instruction until a key is pressed
        return locals()

    @asm("LD DT, V{ins.x:X}")
    def _set_dt_vx(self, ins):
        self.dt = self.v_regs[ins.x]
        return locals()

    @asm("LD ST, V{ins.x:X}")
    def _set_st(self, ins):
        self.st = self.v_regs[ins.x]
        return locals()

    @asm("ADD I, V{ins.x:X}")
    def _add_to_idx(self, ins):
        self.idx = (self.idx + self.v_regs[ins.x]) & 0xFFFF
        return locals()

    @asm("LD F, V{ins.x:X}")
    def _select_char(self, ins):
        """set I to location of sprite for digit Vx"""
        digit = self.v_regs[ins.x] & 0xF
        self.idx = FONT_START_ADDRESS + digit * FONT_GLYPH_SIZE
        return locals()

    @asm("LD B, V{ins.x:X}")
    def _bcd_repr(self, ins):
        """store hundreds, tens and ones digits of Vx at I, I+1 and I+2"""
        value = self.v_regs[ins.x]
        self.mem[self.idx] = value // 100
        self.mem[self.idx + 1] = (value // 10) % 10
        self.mem[self.idx + 2] = value % 10
        return locals()

    @asm("LD [I], V{ins.x:X}")
    def _store_vregs(self, ins):
        """store registers V0 through Vx (included) in memory starting at location I"""
        for i in range(ins.x + 1):
            self.mem[self.idx + i] = self.v_regs[i]
        return locals()

    @asm("LD V{ins.x:X}, [I]")
    def _load_vregs(self, ins):
        """read registers V0 through Vx (included) from memory starting at location I"""
        for i in range(ins.x + 1):
            self.v_regs[i] = self.mem[self.idx + i]
        return locals()

    def _goto_next_instruction(self):
        self.pc = (self.pc + 0x2) & 0xFFFF

    def fetch(self):
        # each instruction is two bytes long, big-endian
        return self.mem[self.pc] << 8 | self.mem[self.pc + 1]

    def step(self):
        """execute exactly one instruction, return True if the framebuffer changed"""
        self.draw = False
        opcode = self.fetch()
        self._goto_next_instruction()
        ins = decode(opcode)
        if ins.name is None:
            logger.debug(f"0x{(self.pc - 2) & 0xFFFF:04x}    unknown opcode 0x{opcode:04x}, skipped")
        else:
            self.instructions[ins.name](ins)
        return self.draw

    def tick_timers(self):
        """delay/sound timers (dt/st), meant to be called at 60Hz"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1

    def cycle(self):
        """one instruction followed by one timer tick, for drivers that run both at the same rate"""
        draw = self.step()
        self.tick_timers()
        return draw
