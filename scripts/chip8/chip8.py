# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# COMPATIBILITY QUIRKS TABLE
# https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import argparse
import sys
from functools import wraps

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8_decoder import decode, disassemble
from chip8_il import DEFAULT_QUIRKS, Engine, Quirks
from chip8_state import (
    ADDRESS_MASK,
    Chip8Error,
    Chip8State,
    FrameBuffer,
    KeyWaitInterrupted,
    Machine,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
)


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False
SCALE = 15
SPEED = 500         # instructions per second
TIMER_HZ = 60
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to print out the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = args[0].state.get_pc()   # args[0] equals self of the decorated method
            vals = fn(*args, **kwargs)          # the decorated method returns the values used in the print
            if DEBUG: print(msg.format(mem_addr=mem_addr, instruction=disassemble(vals['opcode']), **vals))
            return vals
        return wrapper_fn
    return decorator

def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--speed", type=int, default=SPEED, help="instructions executed per second")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in pixels of a CHIP-8 pixel")
    parser.add_argument("--seed", type=int, default=None, help="seed of the random number generator used by RND")
    parser.add_argument("--shift-vy", action="store_true", help="8xy6/8xyE shift Vy into Vx")
    parser.add_argument("--logic-resets-vf", action="store_true", help="8xy1/8xy2/8xy3 clear VF")
    parser.add_argument("--wrap-sprites", action="store_true", help="sprites wrap around the screen edges instead of being clipped")
    parser.add_argument("--index-overflow-vf", action="store_true", help="Fx1E sets VF when I overflows 0xFFF")
    parser.add_argument("--no-index-increment", action="store_true", help="Fx55/Fx65 leave I unchanged")
    return parser.parse_args(argv)

def get_quirks(args):
    return Quirks(
        shift_uses_vy=args.shift_vy,
        logic_resets_vf=args.logic_resets_vf,
        wrap_sprites=args.wrap_sprites,
        index_overflow_sets_vf=args.index_overflow_vf,
        load_store_increments_index=not args.no_index_increment,
    )


# ******************** I/O SECTION
class Screen(FrameBuffer):
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        super().__init__(w, h)
        self.scale = s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def write_pixel(self, x, y, color):
        """
        set a pixel on the screen, being it a foreground pixel or a background one
        the change won't be immediatly visible because it'll require a call to refresh
        """
        super().write_pixel(x, y, color)
        pygame.draw.rect(
            self.surface,
            self.background if color==0 else self.foreground,
            (x * self.scale, y * self.scale, self.scale, self.scale)
        )

    def refresh(self):
        pygame.display.flip()

    def clear(self):
        super().clear()
        self.surface.fill(self.background)

class Keypad:
    """keypad state fed by the pygame event queue"""

    def __init__(self, idle=None):
        self.held = set()
        self.idle = idle    # called while blocked in wait, keeps timers and screen going

    def handle(self, event):
        """update the keypad from an event, return False if the user asked to quit"""
        if event.type == pygame.QUIT:
            return False
        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key in KEY_MAPPINGS:
                self.held.add(KEY_MAPPINGS[event.key])     # register keypress
        elif event.type == pygame.KEYUP and event.key in KEY_MAPPINGS:
            self.held.discard(KEY_MAPPINGS[event.key])
        return True

    def pump(self):
        """loop through the event queue, return False if the user asked to quit"""
        run = True
        for event in pygame.event.get():
            run = self.handle(event) and run
        return run

    def is_pressed(self, key):
        return key in self.held

    def wait(self):
        """block until a keypad key goes down and return it"""
        while True:
            for event in pygame.event.get():
                if not self.handle(event):
                    raise KeyWaitInterrupted("window closed while waiting for a key press")
                if event.type == pygame.KEYDOWN and event.key in KEY_MAPPINGS:
                    return KEY_MAPPINGS[event.key]
            if self.idle:
                self.idle()
            pygame.time.wait(1)

class TimerPacer:
    """decrement the delay and sound timers at 60Hz of wall clock time"""

    def __init__(self, machine, hz=TIMER_HZ):
        self.machine = machine
        self.period = 1000.0 / hz
        self.last = pygame.time.get_ticks()
        self.budget = 0.0

    def update(self):
        now = pygame.time.get_ticks()
        self.budget += now - self.last
        self.last = now
        while self.budget >= self.period:
            self.machine.tick_timers()
            self.budget -= self.period


# ******************** CPU SECTION
class Chip8:
    """fetch-execute driver, any Chip8State can be plugged in"""

    def __init__(self, state: Chip8State = None, quirks=DEFAULT_QUIRKS):
        self.state = state if state is not None else Machine()
        self.quirks = quirks
        self.engine = Engine(quirks)

    def __str__(self):
        return str(self.state)

    def fetch(self):
        """each instruction is two bytes long, big endian"""
        pc = self.state.get_pc()
        return self.state.read_mem(pc) << 8 | self.state.read_mem((pc + 1) & ADDRESS_MASK)

    @asm("mem_addr: 0x{mem_addr:04x}    opcode: 0x{opcode:04x}    instruction: {instruction}")
    def cycle(self):
        """
        emulate one machine cycle: fetch, decode, execute
        an illegal opcode raises before anything is executed, the PC keeps pointing at it
        """
        opcode = self.fetch()
        program = decode(opcode, self.quirks)
        redirected = self.engine.execute(program, self.state)
        if not redirected:
            self.state.set_pc((self.state.get_pc() + 0x2) & ADDRESS_MASK)
        return {'opcode': opcode, 'redirected': redirected}

    def run(self, cycles):
        """execute a fixed number of cycles, handy without a host loop"""
        for _ in range(cycles):
            self.cycle()


# ******************** ENTRY POINT SECTION
def step(chip, k, pacer, s):
    """one pass of the emulation loop, return False once the user asked to quit"""
    if not k.pump():    # process user input
        return False
    pacer.update()
    chip.cycle()        # emulate one machine cycle (fetch opcode, decode opcode, execute opcode)
    # refresh screen if needed
    if chip.state.draw:
        s.refresh()
        chip.state.draw = False
    return True

def main(argv=None):
    args = get_args(argv)
    # pygame initialization
    pygame.init()
    clock = pygame.time.Clock()
    pygame.display.set_caption(os.path.basename(args.file))
    # IO
    s = Screen(s=args.scale)
    k = Keypad()
    # CPU
    machine = Machine(screen=s, keypad=k, seed=args.seed)
    chip = Chip8(machine, get_quirks(args))
    pacer = TimerPacer(machine)
    k.idle = lambda: (pacer.update(), s.refresh())
    try:
        size = machine.load_rom(args.file)
    except Chip8Error as e:
        pygame.quit()
        sys.exit(f"cannot load {args.file}: {e}")
    if DEBUG: print(f"The ROM at path {args.file} ({size} bytes) has been loaded successfully")
    # emulation loop
    run = True
    while run:
        clock.tick(args.speed)
        try:
            run = step(chip, k, pacer, s)
        except KeyWaitInterrupted:
            run = False
        except Chip8Error as e:
            pygame.quit()
            sys.exit(f"********** THE EMULATOR CRASHED ({e}) WITH THE FOLLOWING STATE\n{chip}")
    pygame.quit()


if __name__ == "__main__":
    main()
