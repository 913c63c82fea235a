# CHIP-8 INSTRUCTION SET
# http://devernay.free.fr/hacks/chip8/C8TECH10.HTM#3.1
#
# SUPER-CHIP EXTENSIONS (recognised, not emulated)
# https://chip-8.github.io/extensions/#super-chip-10

from collections import namedtuple
from functools import lru_cache

from chip8_il import DEFAULT_QUIRKS, IL, Op
from chip8_state import FLAG_REGISTER, IllegalOpcode, UnsupportedOpcode


Fields = namedtuple("Fields", ["x", "y", "n", "kk", "nnn"])

# WATCH OUT: masks order is important!!!
# the lookup stops at the first mask whose table knows the masked opcode
MASKS = (0xFFFF, 0xFFF0, 0xF0FF, 0xF00F, 0xF000)
INSTRUCTIONS = {mask: {} for mask in MASKS}


# ******************** UTILITIES SECTION
def instruction(mask, pattern, mnemonic):
    """decorator registering a micro-program builder for the opcodes where opcode & mask == pattern"""
    def decorator(fn):
        INSTRUCTIONS[mask][pattern] = (mnemonic, fn)
        return fn
    return decorator


def unsupported(mask, pattern, mnemonic):
    """register a Super-CHIP opcode, decoding it reports it as unsupported"""
    def reject(f, quirks, opcode):
        raise UnsupportedOpcode(opcode, mnemonic.format(**f._asdict()))
    INSTRUCTIONS[mask][pattern] = (mnemonic, reject)


def split(opcode):
    """break the opcode in the fields every instruction format is made of"""
    return Fields(
        x=(opcode & 0x0F00) >> 8,
        y=(opcode & 0x00F0) >> 4,
        n=opcode & 0x000F,
        kk=opcode & 0x00FF,
        nnn=opcode & 0x0FFF,
    )


def lookup(opcode):
    for mask in MASKS:
        entry = INSTRUCTIONS[mask].get(opcode & mask)
        if entry is not None:
            return entry
    raise IllegalOpcode(opcode)


@lru_cache(maxsize=None)
def decode(opcode, quirks=DEFAULT_QUIRKS):
    """
    translate a 16-bit opcode into its micro-program, a tuple of IL operations
    raise IllegalOpcode (or UnsupportedOpcode) when there is nothing to run
    """
    if not 0 <= opcode <= 0xFFFF:
        raise IllegalOpcode(opcode & 0xFFFF, reason=f"not a 16-bit opcode ({opcode})")
    _, build = lookup(opcode)
    return tuple(build(split(opcode), quirks, opcode))


def disassemble(opcode):
    mnemonic, _ = lookup(opcode)
    return mnemonic.format(**split(opcode)._asdict())


# ******************** FLOW SECTION
@instruction(0xFFFF, 0x00E0, "CLS")
def _clear_screen(f, quirks, opcode):
    return [Op(IL.CLEAR)]


@instruction(0xFFFF, 0x00EE, "RET")
def _return(f, quirks, opcode):
    return [Op(IL.CALL_POP), Op(IL.WRITE_PC)]


@instruction(0xF000, 0x1000, "JP 0x{nnn:03x}")
def _jump(f, quirks, opcode):
    return [Op(IL.PUSH_ADDR, f.nnn), Op(IL.WRITE_PC)]


@instruction(0xF000, 0x2000, "CALL 0x{nnn:03x}")
def _call_addr(f, quirks, opcode):
    # the return address is the instruction after the call
    return [Op(IL.READ_PC), Op(IL.PUSH_ADDR, 0x2), Op(IL.ADD_ADDR), Op(IL.CALL_PUSH),
            Op(IL.PUSH_ADDR, f.nnn), Op(IL.WRITE_PC)]


@instruction(0xF000, 0xB000, "JP V0, 0x{nnn:03x}")
def _jump_plus(f, quirks, opcode):
    return [Op(IL.PUSH_ADDR, f.nnn), Op(IL.READ_REG, 0x0), Op(IL.WIDEN), Op(IL.ADD_ADDR), Op(IL.WRITE_PC)]


# ******************** SKIP SECTION
@instruction(0xF000, 0x3000, "SE V{x:X}, 0x{kk:02x}")
def _skip_if_eq(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.PUSH_BYTE, f.kk), Op(IL.EQ), Op(IL.SKIP_IF)]


@instruction(0xF000, 0x4000, "SNE V{x:X}, 0x{kk:02x}")
def _skip_if_not_eq(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.PUSH_BYTE, f.kk), Op(IL.EQ), Op(IL.NOT), Op(IL.SKIP_IF)]


@instruction(0xF00F, 0x5000, "SE V{x:X}, V{y:X}")
def _skip_if_eq_regs(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y), Op(IL.EQ), Op(IL.SKIP_IF)]


@instruction(0xF00F, 0x9000, "SNE V{x:X}, V{y:X}")
def _skip_if_not_eq_regs(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y), Op(IL.EQ), Op(IL.NOT), Op(IL.SKIP_IF)]


@instruction(0xF0FF, 0xE09E, "SKP V{x:X}")
def _skip_if_pressed(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.KEY_DOWN), Op(IL.SKIP_IF)]


@instruction(0xF0FF, 0xE0A1, "SKNP V{x:X}")
def _skip_if_not_pressed(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.KEY_DOWN), Op(IL.NOT), Op(IL.SKIP_IF)]


# ******************** REGISTERS SECTION
@instruction(0xF000, 0x6000, "LD V{x:X}, 0x{kk:02x}")
def _set_vk(f, quirks, opcode):
    return [Op(IL.PUSH_BYTE, f.kk), Op(IL.WRITE_REG, f.x)]


@instruction(0xF000, 0x7000, "ADD V{x:X}, 0x{kk:02x}")
def _add_to_vk(f, quirks, opcode):
    # no carry, VF is left alone
    return [Op(IL.READ_REG, f.x), Op(IL.PUSH_BYTE, f.kk), Op(IL.ADD), Op(IL.WRITE_REG, f.x)]


@instruction(0xF00F, 0x8000, "LD V{x:X}, V{y:X}")
def _set_vx_to_vy(f, quirks, opcode):
    return [Op(IL.READ_REG, f.y), Op(IL.WRITE_REG, f.x)]


def _logic(code, f, quirks):
    ops = [Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y), Op(code), Op(IL.WRITE_REG, f.x)]
    if quirks.logic_resets_vf:
        ops += [Op(IL.PUSH_BYTE, 0), Op(IL.WRITE_REG, FLAG_REGISTER)]
    return ops


@instruction(0xF00F, 0x8001, "OR V{x:X}, V{y:X}")
def _set_vx_or_vy(f, quirks, opcode):
    return _logic(IL.OR, f, quirks)


@instruction(0xF00F, 0x8002, "AND V{x:X}, V{y:X}")
def _set_vx_and_vy(f, quirks, opcode):
    return _logic(IL.AND, f, quirks)


@instruction(0xF00F, 0x8003, "XOR V{x:X}, V{y:X}")
def _set_vx_xor_vy(f, quirks, opcode):
    return _logic(IL.XOR, f, quirks)


def _with_flag(f, *ops):
    """ops leave a flag and a result on the stack, result goes to Vx, flag to VF"""
    return list(ops) + [Op(IL.WRITE_REG, f.x), Op(IL.WRITE_REG, FLAG_REGISTER)]


def _not_into_flag(f, opcode):
    """the carry/borrow owns VF, a result going there too would be lost"""
    if f.x == FLAG_REGISTER:
        raise IllegalOpcode(opcode, reason="VF cannot be the destination of ADD/SUB")


@instruction(0xF00F, 0x8004, "ADD V{x:X}, V{y:X}")
def _add_vx_vy(f, quirks, opcode):
    _not_into_flag(f, opcode)
    return _with_flag(f, Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y), Op(IL.ADD_CARRY))


@instruction(0xF00F, 0x8005, "SUB V{x:X}, V{y:X}")
def _sub_vx_vy(f, quirks, opcode):
    _not_into_flag(f, opcode)
    return _with_flag(f, Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y), Op(IL.SUB_BORROW))


@instruction(0xF00F, 0x8007, "SUBN V{x:X}, V{y:X}")
def _subn_vx_vy(f, quirks, opcode):
    return _with_flag(f, Op(IL.READ_REG, f.y), Op(IL.READ_REG, f.x), Op(IL.SUB_BORROW))


@instruction(0xF00F, 0x8006, "SHR V{x:X}, V{y:X}")
def _shr(f, quirks, opcode):
    source = f.y if quirks.shift_uses_vy else f.x     # compatibility quirk 2
    return _with_flag(f, Op(IL.READ_REG, source), Op(IL.SHR))


@instruction(0xF00F, 0x800E, "SHL V{x:X}, V{y:X}")
def _shl(f, quirks, opcode):
    source = f.y if quirks.shift_uses_vy else f.x     # compatibility quirk 2
    return _with_flag(f, Op(IL.READ_REG, source), Op(IL.SHL))


@instruction(0xF000, 0xC000, "RND V{x:X}, 0x{kk:02x}")
def _random_byte_and(f, quirks, opcode):
    return [Op(IL.RANDOM), Op(IL.PUSH_BYTE, f.kk), Op(IL.AND), Op(IL.WRITE_REG, f.x)]


# ******************** INDEX SECTION
@instruction(0xF000, 0xA000, "LD I, 0x{nnn:03x}")
def _set_idx(f, quirks, opcode):
    return [Op(IL.PUSH_ADDR, f.nnn), Op(IL.WRITE_I)]


@instruction(0xF0FF, 0xF01E, "ADD I, V{x:X}")
def _add_to_idx(f, quirks, opcode):
    ops = [Op(IL.READ_I), Op(IL.READ_REG, f.x), Op(IL.WIDEN)]
    if quirks.index_overflow_sets_vf:
        return ops + [Op(IL.ADD_ADDR_CARRY), Op(IL.WRITE_I), Op(IL.WRITE_REG, FLAG_REGISTER)]
    return ops + [Op(IL.ADD_ADDR), Op(IL.WRITE_I)]


@instruction(0xF0FF, 0xF029, "LD F, V{x:X}")
def _select_char(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.HEX_CHAR), Op(IL.WRITE_I)]


# ******************** MEMORY SECTION
def _at_index(offset):
    return [Op(IL.READ_I), Op(IL.PUSH_ADDR, offset), Op(IL.ADD_ADDR)]


_BUMP_INDEX = [Op(IL.READ_I), Op(IL.PUSH_ADDR, 0x1), Op(IL.ADD_ADDR), Op(IL.WRITE_I)]


@instruction(0xF0FF, 0xF033, "LD B, V{x:X}")
def _bcd_repr(f, quirks, opcode):
    """hundreds digit at I, tens digit at I+1, ones digit at I+2"""
    ops = []
    for offset, place in enumerate((100, 10, 1)):
        ops += _at_index(offset) + [Op(IL.READ_REG, f.x), Op(IL.DIGIT, place), Op(IL.STORE)]
    return ops


@instruction(0xF0FF, 0xF055, "LD [I], V{x:X}")
def _store_vregs(f, quirks, opcode):
    """store registers V0 through Vx (included) in memory starting at location I"""
    ops = []
    for r in range(f.x + 1):
        if quirks.load_store_increments_index:     # compatibility quirk 6
            ops += [Op(IL.READ_I), Op(IL.READ_REG, r), Op(IL.STORE)] + _BUMP_INDEX
        else:
            ops += _at_index(r) + [Op(IL.READ_REG, r), Op(IL.STORE)]
    return ops


@instruction(0xF0FF, 0xF065, "LD V{x:X}, [I]")
def _load_vregs(f, quirks, opcode):
    """read registers V0 through Vx (included) from memory starting at location I"""
    ops = []
    for r in range(f.x + 1):
        if quirks.load_store_increments_index:     # compatibility quirk 6
            ops += [Op(IL.READ_I), Op(IL.LOAD), Op(IL.WRITE_REG, r)] + _BUMP_INDEX
        else:
            ops += _at_index(r) + [Op(IL.LOAD), Op(IL.WRITE_REG, r)]
    return ops


# ******************** DISPLAY SECTION
@instruction(0xF000, 0xD000, "DRW V{x:X}, V{y:X}, {n}")
def _to_screen(f, quirks, opcode):
    """
    display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision
    n = 0 draws a 16 rows sprite
    """
    rows = f.n or 16
    ops = [Op(IL.PUSH_BOOL, False)]
    for i in range(rows):
        ops += [Op(IL.READ_REG, f.x), Op(IL.READ_REG, f.y)]
        ops += _at_index(i) + [Op(IL.LOAD), Op(IL.DRAW_ROW, i), Op(IL.OR)]
    return ops + [Op(IL.TO_BYTE), Op(IL.WRITE_REG, FLAG_REGISTER)]


# ******************** TIMERS AND KEYBOARD SECTION
@instruction(0xF0FF, 0xF007, "LD V{x:X}, DT")
def _set_vx_dt(f, quirks, opcode):
    return [Op(IL.READ_DT), Op(IL.WRITE_REG, f.x)]


@instruction(0xF0FF, 0xF00A, "LD V{x:X}, K")
def _wait_keypress(f, quirks, opcode):
    return [Op(IL.WAIT_KEY), Op(IL.WRITE_REG, f.x)]


@instruction(0xF0FF, 0xF015, "LD DT, V{x:X}")
def _set_dt_vx(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.WRITE_DT)]


@instruction(0xF0FF, 0xF018, "LD ST, V{x:X}")
def _set_st(f, quirks, opcode):
    return [Op(IL.READ_REG, f.x), Op(IL.WRITE_ST)]


# ******************** SUPER-CHIP SECTION
unsupported(0xFFF0, 0x00C0, "SCD {n}")
unsupported(0xFFFF, 0x00FB, "SCR")
unsupported(0xFFFF, 0x00FC, "SCL")
unsupported(0xFFFF, 0x00FD, "EXIT")
unsupported(0xFFFF, 0x00FE, "LOW")
unsupported(0xFFFF, 0x00FF, "HIGH")
unsupported(0xF0FF, 0xF030, "LD HF, V{x:X}")
unsupported(0xF0FF, 0xF075, "LD R, V{x:X}")
unsupported(0xF0FF, 0xF085, "LD V{x:X}, R")
