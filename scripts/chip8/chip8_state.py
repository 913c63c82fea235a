import random
from typing import Protocol


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

FONT_BYTES = 5                  # each hex glyph is 5 rows tall
FONT_START_ADDRESS = 0x000
MEMORY_SIZE = 0x1000
ADDRESS_MASK = 0xFFF
ROM_START_ADDRESS = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
REGISTER_COUNT = 16
FLAG_REGISTER = 0xF
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """errors caused by the program being run, reported to whoever drives the machine"""


class IllegalOpcode(Chip8Error):
    def __init__(self, opcode, reason="illegal opcode"):
        super().__init__(f"{reason}: 0x{opcode:04x}")
        self.opcode = opcode


class UnsupportedOpcode(IllegalOpcode):
    """a Super-CHIP/CHIP-48 opcode, recognised but not emulated"""
    def __init__(self, opcode, mnemonic):
        super().__init__(opcode, reason=f"unsupported extended opcode {mnemonic}")
        self.mnemonic = mnemonic


class RomTooLarge(Chip8Error):
    pass


class KeyWaitInterrupted(Chip8Error):
    """the host gave up waiting for a key press (window closed, no input left...)"""


class EngineFault(Exception):
    """
    broken invariant inside the decoder/engine pair
    never raised by valid or invalid ROM content, only by a bug in this code,
    so nothing in the emulator catches it
    """


class StackUnderflow(EngineFault):
    pass


# ******************** INTERFACE SECTION
class Chip8State(Protocol):
    """everything the decoder/engine are allowed to touch, any host can provide it"""

    def read_register(self, r: int) -> int: ...
    def write_register(self, r: int, v: int) -> None: ...
    def get_pc(self) -> int: ...
    def set_pc(self, address: int) -> None: ...
    def get_index(self) -> int: ...
    def set_index(self, address: int) -> None: ...
    def stack_push(self, address: int) -> None: ...
    def stack_pop(self) -> int: ...
    def read_mem(self, address: int) -> int: ...
    def write_mem(self, address: int, v: int) -> None: ...
    def get_delay_timer(self) -> int: ...
    def set_delay_timer(self, v: int) -> None: ...
    def set_sound_timer(self, v: int) -> None: ...
    def clear_screen(self) -> None: ...
    def screen_xor_line(self, x: int, y: int, bits: int) -> bool: ...
    def is_key_pressed(self, k: int) -> bool: ...
    def wait_for_keypress(self) -> int: ...
    def get_hex_char_addr(self, digit: int) -> int: ...
    def random_byte(self) -> int: ...


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT THE CALL STACK, UNBOUNDED
class Stack:
    def __init__(self):
        self.addr_list = []

    def __len__(self):
        return len(self.addr_list)

    def __str__(self):
        return "[" + ", ".join(f"0x{a:03x}" for a in self.addr_list) + "]"

    def append(self, address):
        self.addr_list.append(address & ADDRESS_MASK)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflow("return with an empty call stack")
        return self.addr_list.pop()


# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self, font_address=FONT_START_ADDRESS):
        self.inner = bytearray(MEMORY_SIZE)
        self.font_address = font_address
        self.inner[font_address:font_address+len(C8_FONTS)] = bytes(C8_FONTS)

    def __setitem__(self, key, value):
        self.inner[key & ADDRESS_MASK] = value & 0xFF

    def __getitem__(self, index):
        return self.inner[index & ADDRESS_MASK]

    def load_bytes(self, data, address=ROM_START_ADDRESS):
        """copy a program image into memory, the image has to fit below 0x1000"""
        if len(data) > MEMORY_SIZE - address:
            raise RomTooLarge(f"a program of {len(data)} bytes does not fit at 0x{address:03x} "
                              f"(at most {MEMORY_SIZE - address} bytes)")
        self.inner[address:address+len(data)] = data

    def load_rom(self, path):
        """load ROM file from user specified path"""
        with open(path, mode='rb') as f:
            rom = f.read()
        self.load_bytes(rom)
        return len(rom)


# ******************** I/O SECTION
class FrameBuffer:
    """headless 64x32 display, one int per pixel, row major"""

    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.buffer = [0] * h * w

    def read_pixel(self, x, y):
        return self.buffer[y * self.w + x]

    def write_pixel(self, x, y, color):
        self.buffer[y * self.w + x] = color

    def clear(self):
        self.buffer = [0] * self.h * self.w

    def xor_line(self, x, y, bits):
        """
        XOR the 8 pixels of bits (MSB first) onto row y starting at column x
        pixels falling past the right edge are dropped
        return True if a pixel that was ON got turned OFF
        """
        collision = False
        for j in range(8):
            if x + j >= self.w:
                break
            bit = (bits >> (7 - j)) & 0x1
            if not bit:
                continue
            pixel_state = self.read_pixel(x + j, y)
            if pixel_state:
                collision = True
            self.write_pixel(x + j, y, pixel_state ^ bit)
        return collision

    def lit(self):
        return sum(self.buffer)

    def render(self, on="#", off="."):
        rows = []
        for y in range(self.h):
            rows.append("".join(on if self.read_pixel(x, y) else off for x in range(self.w)))
        return "\n".join(rows)


class HeadlessKeypad:
    """
    keypad fed programmatically
    held keys answer is_pressed, queued presses answer wait
    """

    def __init__(self):
        self.held = set()
        self.pending = []

    def press(self, key):
        self.held.add(key)
        self.pending.append(key)

    def release(self, key):
        self.held.discard(key)

    def is_pressed(self, key):
        return key in self.held

    def wait(self):
        if not self.pending:
            raise KeyWaitInterrupted("waiting for a key press but no key press is queued")
        return self.pending.pop(0)


# ******************** MACHINE SECTION
class Machine:
    """
    concrete Chip8State, owns memory, registers, timers and the call stack
    display and keypad are pluggable so the same machine runs headless or in a window
    """

    def __init__(self, screen=None, keypad=None, seed=None, font_address=FONT_START_ADDRESS):
        self.mem = Memory(font_address)
        self.stack = Stack()
        self.v_regs = [0] * REGISTER_COUNT
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.screen = screen if screen is not None else FrameBuffer()
        self.keypad = keypad if keypad is not None else HeadlessKeypad()
        self.rng = random.Random(seed)
        self.draw = False

    def __str__(self):
        registers = " ".join(f"V{i:X}:0x{v:02x}" for i, v in enumerate(self.v_regs))
        return (f"PC_REGISTER:0x{self.pc:03x} | IDX_REGISTER:0x{self.idx:03x} | DT:{self.dt} | ST:{self.st}\n"
                f"VARIABLE_REGISTERS:{registers}\n"
                f"STACK:{self.stack}")

    def load_rom(self, path):
        return self.mem.load_rom(path)

    def tick_timers(self):
        """one 60Hz tick, the host decides when"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1

    # registers
    def read_register(self, r):
        return self.v_regs[r & 0xF]

    def write_register(self, r, v):
        self.v_regs[r & 0xF] = v & 0xFF

    def get_pc(self):
        return self.pc

    def set_pc(self, address):
        self.pc = address & ADDRESS_MASK

    def get_index(self):
        return self.idx

    def set_index(self, address):
        self.idx = address & ADDRESS_MASK

    # call stack
    def stack_push(self, address):
        self.stack.append(address)

    def stack_pop(self):
        return self.stack.pop()

    # memory
    def read_mem(self, address):
        return self.mem[address]

    def write_mem(self, address, v):
        self.mem[address] = v

    def get_hex_char_addr(self, digit):
        return self.mem.font_address + (digit & 0xF) * FONT_BYTES

    # timers
    def get_delay_timer(self):
        return self.dt

    def set_delay_timer(self, v):
        self.dt = v & 0xFF

    def set_sound_timer(self, v):
        self.st = v & 0xFF

    # display
    def clear_screen(self):
        self.screen.clear()
        self.draw = True

    def screen_xor_line(self, x, y, bits):
        self.draw = True
        return self.screen.xor_line(x, y, bits)

    # keyboard
    def is_key_pressed(self, k):
        return self.keypad.is_pressed(k & 0xF)

    def wait_for_keypress(self):
        return self.keypad.wait()

    def random_byte(self):
        return self.rng.randint(0, 255)
