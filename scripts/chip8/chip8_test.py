import unittest

from chip8 import Chip8, get_args, get_quirks, step
from chip8_il import Quirks
from chip8_state import (
    FLAG_REGISTER,
    IllegalOpcode,
    KeyWaitInterrupted,
    Machine,
    StackUnderflow,
    UnsupportedOpcode,
)


def program(*opcodes):
    return b"".join(op.to_bytes(2, "big") for op in opcodes)

def chip_with(*opcodes, quirks=Quirks(), seed=None):
    """a headless machine with the opcodes loaded at 0x200"""
    chip = Chip8(Machine(seed=seed), quirks)
    chip.state.mem.load_bytes(program(*opcodes))
    return chip


class TestCycle(unittest.TestCase):
    def test_pc_advances_by_two(self):
        chip = chip_with(0x6101)
        self.assertEqual(chip.cycle(),
                         {'opcode': 0x6101, 'redirected': False})
        self.assertEqual(chip.state.pc,
                         0x202)

    def test_fetch_is_big_endian(self):
        chip = chip_with(0xA2F0)
        self.assertEqual(chip.fetch(),
                         0xA2F0)

    def test_illegal_opcode_halts_the_instruction(self):
        chip = chip_with(0x5001)
        with self.assertRaises(IllegalOpcode):
            chip.cycle()
        self.assertEqual(chip.state.pc,
                         0x200)

    def test_sys_call_is_illegal(self):
        with self.assertRaises(IllegalOpcode):
            chip_with(0x0300).cycle()

    def test_super_chip_opcode_is_unsupported(self):
        with self.assertRaises(UnsupportedOpcode):
            chip_with(0x00FF).cycle()

    def test_run(self):
        chip = chip_with(0x6001, 0x7001, 0x7001)
        chip.run(3)
        self.assertEqual(chip.state.v_regs[0],
                         3)


class TestArithmetic(unittest.TestCase):
    def test_add_with_carry(self):
        for a, b in ((0, 0), (1, 2), (200, 55), (200, 56), (128, 128), (255, 255)):
            with self.subTest(a=a, b=b):
                chip = chip_with(0x6100 | a, 0x6200 | b, 0x8124)
                chip.run(3)
                self.assertEqual(chip.state.v_regs[1],
                                 (a + b) % 256)
                self.assertEqual(chip.state.v_regs[FLAG_REGISTER],
                                 1 if a + b >= 256 else 0)

    def test_add_and_sub_into_vf_rejected(self):
        for opcode in (0x8F14, 0x8F15):
            with self.subTest(opcode=hex(opcode)):
                chip = chip_with(0x6F10, 0x6120, opcode)
                chip.run(2)
                with self.assertRaises(IllegalOpcode):
                    chip.cycle()
                self.assertEqual((chip.state.v_regs[FLAG_REGISTER], chip.state.pc),
                                 (0x10, 0x204))

    def test_add_immediate_leaves_vf_alone(self):
        chip = chip_with(0x6F05, 0x61FF, 0x7102)
        chip.run(3)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                         (0x01, 0x05))

    def test_sub(self):
        for a, b, result, flag in ((10, 3, 7, 1), (3, 10, 249, 0), (7, 7, 0, 1)):
            with self.subTest(a=a, b=b):
                chip = chip_with(0x6100 | a, 0x6200 | b, 0x8125)
                chip.run(3)
                self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                                 (result, flag))

    def test_subn(self):
        chip = chip_with(0x6103, 0x620A, 0x8127)
        chip.run(3)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                         (7, 1))

    def test_shifts_ignore_vy(self):
        chip = chip_with(0x6105, 0x6280, 0x8126)
        chip.run(3)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                         (0x02, 1))
        chip = chip_with(0x6181, 0x6201, 0x812E)
        chip.run(3)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                         (0x02, 1))

    def test_shifts_use_vy_with_quirk(self):
        chip = chip_with(0x6105, 0x6280, 0x8126, quirks=Quirks(shift_uses_vy=True))
        chip.run(3)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                         (0x40, 0))

    def test_logic(self):
        for opcode, result in ((0x8121, 0x0E), (0x8122, 0x08), (0x8123, 0x06)):
            with self.subTest(opcode=hex(opcode)):
                chip = chip_with(0x6F07, 0x610C, 0x620A, opcode)
                chip.run(4)
                self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[FLAG_REGISTER]),
                                 (result, 0x07))

    def test_logic_resets_vf_with_quirk(self):
        chip = chip_with(0x6F07, 0x610C, 0x620A, 0x8121, quirks=Quirks(logic_resets_vf=True))
        chip.run(4)
        self.assertEqual(chip.state.v_regs[FLAG_REGISTER],
                         0)

    def test_random_masked(self):
        chip = chip_with(*[0xC10F] * 16, seed=3)
        for _ in range(16):
            chip.cycle()
            self.assertEqual(chip.state.v_regs[1] & 0xF0,
                             0)

    def test_random_reproducible_from_seed(self):
        a = chip_with(0xC1FF, seed=42)
        b = chip_with(0xC1FF, seed=42)
        a.cycle()
        b.cycle()
        self.assertEqual(a.state.v_regs[1],
                         b.state.v_regs[1])


class TestMemoryOps(unittest.TestCase):
    def test_bcd(self):
        for value in (0, 7, 42, 100, 199, 255):
            with self.subTest(value=value):
                chip = chip_with(0x6100 | value, 0xA300, 0xF133)
                chip.run(3)
                self.assertEqual([chip.state.read_mem(0x300 + i) for i in range(3)],
                                 [value // 100, (value // 10) % 10, value % 10])
                self.assertEqual(chip.state.idx,
                                 0x300)

    def test_store_then_load_restores_registers(self):
        chip = chip_with(0x6011, 0x6122, 0x6233, 0x6344, 0x64AA, 0xA400, 0xF355,
                         0x6000, 0x6100, 0x6200, 0x6300, 0xA400, 0xF365)
        chip.run(7)
        self.assertEqual([chip.state.read_mem(0x400 + i) for i in range(5)],
                         [0x11, 0x22, 0x33, 0x44, 0x00])
        self.assertEqual(chip.state.idx,
                         0x404)
        chip.run(6)
        self.assertEqual(chip.state.v_regs[:5],
                         [0x11, 0x22, 0x33, 0x44, 0xAA])
        self.assertEqual(chip.state.idx,
                         0x404)

    def test_index_not_incremented_with_quirk(self):
        chip = chip_with(0x6011, 0xA400, 0xF355, quirks=Quirks(load_store_increments_index=False))
        chip.run(3)
        self.assertEqual(chip.state.idx,
                         0x400)

    def test_add_to_index_wraps(self):
        chip = chip_with(0xAFFF, 0x6102, 0xF11E)
        chip.run(3)
        self.assertEqual((chip.state.idx, chip.state.v_regs[FLAG_REGISTER]),
                         (0x001, 0))

    def test_add_to_index_overflow_flag_with_quirk(self):
        chip = chip_with(0xAFFF, 0x6102, 0xF11E, quirks=Quirks(index_overflow_sets_vf=True))
        chip.run(3)
        self.assertEqual((chip.state.idx, chip.state.v_regs[FLAG_REGISTER]),
                         (0x001, 1))

    def test_hex_char(self):
        chip = chip_with(0x611A, 0xF129)
        chip.run(2)
        self.assertEqual(chip.state.idx,
                         0xA * 5)


class TestDisplay(unittest.TestCase):
    def test_first_draw_after_clear_has_no_collision(self):
        chip = chip_with(0x6FFF, 0x00E0, 0xA000, 0xD015)
        chip.run(4)
        self.assertEqual(chip.state.v_regs[FLAG_REGISTER],
                         0)
        self.assertEqual(chip.state.screen.lit(),
                         14)     # the "0" glyph

    def test_drawing_twice_erases_and_collides(self):
        chip = chip_with(0x00E0, 0xA000, 0x6205, 0x6306, 0xD235, 0xD235)
        chip.run(5)
        self.assertEqual(chip.state.v_regs[FLAG_REGISTER],
                         0)
        chip.cycle()
        self.assertEqual(chip.state.v_regs[FLAG_REGISTER],
                         1)
        self.assertEqual(chip.state.screen.lit(),
                         0)

    def test_sixteen_rows_when_n_is_zero(self):
        chip = chip_with(0xA300, 0xD010)
        for i in range(16):
            chip.state.write_mem(0x300 + i, 0x80)
        chip.run(2)
        self.assertEqual([chip.state.screen.read_pixel(0, y) for y in range(17)],
                         [1] * 16 + [0])

    def test_sprite_clipped_at_the_corner(self):
        chip = chip_with(0xA300, 0x603C, 0x611F, 0xD012)
        chip.state.write_mem(0x300, 0xFF)
        chip.state.write_mem(0x301, 0xFF)
        chip.run(4)
        self.assertEqual(chip.state.screen.lit(),
                         4)

    def test_sprite_wraps_with_quirk(self):
        chip = chip_with(0xA300, 0x603C, 0x611F, 0xD012, quirks=Quirks(wrap_sprites=True))
        chip.state.write_mem(0x300, 0xFF)
        chip.state.write_mem(0x301, 0xFF)
        chip.run(4)
        self.assertEqual(chip.state.screen.lit(),
                         16)
        self.assertEqual([chip.state.screen.read_pixel(x, y) for x, y in ((0, 0), (3, 31), (4, 0))],
                         [1, 1, 0])


class TestFlow(unittest.TestCase):
    def test_skip_if_equal(self):
        chip = chip_with(0x6105, 0x3105)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x206)

    def test_no_skip_if_different(self):
        chip = chip_with(0x6105, 0x3106)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x204)

    def test_skip_if_not_equal(self):
        chip = chip_with(0x6105, 0x4106)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x206)

    def test_skip_on_registers(self):
        for opcode, pc in ((0x5120, 0x208), (0x9120, 0x206)):
            with self.subTest(opcode=hex(opcode)):
                chip = chip_with(0x6107, 0x6207, opcode)
                chip.run(3)
                self.assertEqual(chip.state.pc,
                                 pc)

    def test_call_and_return(self):
        chip = chip_with(0x2206, 0x6101, 0x1204, 0x6202, 0x00EE)
        chip.run(4)
        self.assertEqual((chip.state.v_regs[1], chip.state.v_regs[2], chip.state.pc),
                         (1, 2, 0x204))
        self.assertEqual(len(chip.state.stack),
                         0)

    def test_return_with_empty_stack_is_fatal(self):
        with self.assertRaises(StackUnderflow):
            chip_with(0x00EE).cycle()

    def test_jump(self):
        chip = chip_with(0x1ABC)
        chip.cycle()
        self.assertEqual(chip.state.pc,
                         0xABC)

    def test_jump_plus_v0(self):
        chip = chip_with(0x6004, 0xB300)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x304)

    def test_jump_plus_v0_wraps(self):
        chip = chip_with(0x60FF, 0xBFFF)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x0FE)


class TestKeyboardAndTimers(unittest.TestCase):
    def test_skip_if_pressed(self):
        chip = chip_with(0x610B, 0xE19E)
        chip.state.keypad.press(0xB)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x206)

    def test_skip_if_not_pressed(self):
        chip = chip_with(0x610B, 0xE1A1)
        chip.run(2)
        self.assertEqual(chip.state.pc,
                         0x206)

    def test_wait_for_key(self):
        chip = chip_with(0xF30A)
        chip.state.keypad.press(0xC)
        chip.cycle()
        self.assertEqual((chip.state.v_regs[3], chip.state.pc),
                         (0xC, 0x202))

    def test_interrupted_wait_keeps_pc(self):
        chip = chip_with(0xF30A)
        with self.assertRaises(KeyWaitInterrupted):
            chip.cycle()
        self.assertEqual(chip.state.pc,
                         0x200)

    def test_timers(self):
        chip = chip_with(0x6120, 0xF115, 0xF118, 0xF207)
        chip.run(3)
        self.assertEqual((chip.state.dt, chip.state.st),
                         (0x20, 0x20))
        chip.state.tick_timers()
        chip.cycle()
        self.assertEqual(chip.state.v_regs[2],
                         0x1F)


class TestCommandLine(unittest.TestCase):
    def test_defaults(self):
        args = get_args(["-f", "pong.ch8"])
        self.assertEqual((args.file, args.seed),
                         ("pong.ch8", None))
        self.assertEqual(get_quirks(args),
                         Quirks())

    def test_quirk_flags(self):
        args = get_args(["-f", "pong.ch8", "--shift-vy", "--wrap-sprites", "--no-index-increment"])
        self.assertEqual(get_quirks(args),
                         Quirks(shift_uses_vy=True, wrap_sprites=True, load_store_increments_index=False))


class DictState:
    """bare Chip8State: nothing but the interface methods, everything kept in dicts"""

    def __init__(self, code):
        self.regs = {}
        self.memory = {0x200 + i: b for i, b in enumerate(code)}
        self.calls = []
        self.pixels = {}
        self.pc = 0x200
        self.i = 0
        self.dt = 0
        self.st = 0

    def read_register(self, r):
        return self.regs.get(r, 0)

    def write_register(self, r, v):
        self.regs[r] = v

    def get_pc(self):
        return self.pc

    def set_pc(self, address):
        self.pc = address

    def get_index(self):
        return self.i

    def set_index(self, address):
        self.i = address

    def stack_push(self, address):
        self.calls.append(address)

    def stack_pop(self):
        return self.calls.pop()

    def read_mem(self, address):
        return self.memory.get(address, 0)

    def write_mem(self, address, v):
        self.memory[address] = v

    def get_delay_timer(self):
        return self.dt

    def set_delay_timer(self, v):
        self.dt = v

    def set_sound_timer(self, v):
        self.st = v

    def clear_screen(self):
        self.pixels = {}

    def screen_xor_line(self, x, y, bits):
        collision = False
        for j in range(8):
            if (bits >> (7 - j)) & 0x1 and x + j < 64:
                old = self.pixels.get((x + j, y), 0)
                collision = collision or old == 1
                self.pixels[(x + j, y)] = old ^ 1
        return collision

    def is_key_pressed(self, k):
        return False

    def wait_for_keypress(self):
        return 0x7

    def get_hex_char_addr(self, digit):
        return 0x50 + digit * 5

    def random_byte(self):
        return 0xA5


class TestOtherHosts(unittest.TestCase):
    def test_core_runs_on_any_chip8_state(self):
        state = DictState(program(0x6120, 0x62F0, 0x8124, 0xA300, 0xD121, 0x2210, 0x120C, 0x0000,
                                  0x6305, 0x00EE))
        state.write_mem(0x300, 0xC0)
        chip = Chip8(state)
        chip.run(3)
        self.assertEqual((state.regs[1], state.regs[FLAG_REGISTER]),
                         (0x10, 1))
        chip.run(2)
        self.assertEqual(state.regs[FLAG_REGISTER],
                         0)
        self.assertEqual(sorted(p for p, on in state.pixels.items() if on),
                         [(16, 16), (17, 16)])
        chip.run(3)
        self.assertEqual((state.regs[3], state.pc, state.calls),
                         (5, 0x20C, []))


class QuitKeypad:
    def __init__(self, run):
        self.run = run

    def pump(self):
        return self.run

class CountingPacer:
    def __init__(self):
        self.updates = 0

    def update(self):
        self.updates += 1

class CountingScreen:
    def __init__(self):
        self.refreshes = 0

    def refresh(self):
        self.refreshes += 1


class TestEmulationLoop(unittest.TestCase):
    def test_quit_stops_before_the_next_instruction(self):
        chip = chip_with(0x7001)
        pacer = CountingPacer()
        self.assertFalse(step(chip, QuitKeypad(False), pacer, CountingScreen()))
        self.assertEqual((chip.state.v_regs[0], chip.state.pc, pacer.updates),
                         (0, 0x200, 0))

    def test_step_runs_one_cycle_and_refreshes_after_drawing(self):
        chip = chip_with(0x00E0, 0x7001)
        screen = CountingScreen()
        self.assertTrue(step(chip, QuitKeypad(True), CountingPacer(), screen))
        self.assertEqual((chip.state.pc, screen.refreshes, chip.state.draw),
                         (0x202, 1, False))
        step(chip, QuitKeypad(True), CountingPacer(), screen)
        self.assertEqual(screen.refreshes,
                         1)


if __name__ == "__main__":
    unittest.main()
