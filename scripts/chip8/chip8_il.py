"""
Intermediate language executed by the CHIP-8 core

Every opcode decodes into a short list of IL operations working on a small
operand stack. Stack entries are tagged (Bool, Addr or Byte): an operation
popping the wrong tag, popping an empty stack or leaving something behind
is an EngineFault, i.e. a bug in the decoder, never something a ROM can cause.

Binary operations pop b (top of the stack) then a and compute "a op b".
Operations producing a carry/borrow/shifted-out bit push that flag first and
the result last, so the decoder writes the result and then VF: when the
destination is VF itself the flag is what survives.
"""

from collections import namedtuple
from dataclasses import dataclass
from enum import Enum, auto

from chip8_state import (
    ADDRESS_MASK,
    Chip8State,
    EngineFault,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
)


# ******************** CONFIGURATION SECTION
@dataclass(frozen=True)
class Quirks:
    """
    behaviours CHIP-8 interpreters disagree on
    https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
    """
    shift_uses_vy: bool = False                 # 8xy6/8xyE shift Vy into Vx (COSMAC) instead of Vx in place
    logic_resets_vf: bool = False               # 8xy1/8xy2/8xy3 clear VF (COSMAC)
    wrap_sprites: bool = False                  # sprites wrap around the screen edges instead of being clipped
    index_overflow_sets_vf: bool = False        # Fx1E sets VF when I + Vx leaves the 12-bit range (Amiga)
    load_store_increments_index: bool = True    # Fx55/Fx65 leave I at I + x + 1


DEFAULT_QUIRKS = Quirks()


# ******************** ERRORS SECTION
class OperandUnderflow(EngineFault):
    pass


class OperandTypeError(EngineFault):
    pass


class OperandStackNotEmpty(EngineFault):
    pass


# ******************** VALUES SECTION
@dataclass(frozen=True)
class Bool:
    value: bool

    def __post_init__(self):
        if not isinstance(self.value, bool):
            raise OperandTypeError(f"Bool built from {self.value!r}")


@dataclass(frozen=True)
class Addr:
    value: int

    def __post_init__(self):
        if not 0 <= self.value <= ADDRESS_MASK:
            raise OperandTypeError(f"Addr out of the 12-bit range: {self.value!r}")


@dataclass(frozen=True)
class Byte:
    value: int

    def __post_init__(self):
        if not 0 <= self.value <= 0xFF:
            raise OperandTypeError(f"Byte out of the 8-bit range: {self.value!r}")


class OperandStack:
    def __init__(self):
        self.items = []

    def __len__(self):
        return len(self.items)

    def push(self, value):
        self.items.append(value)

    def pop(self, *tags):
        """pop the top entry, which must be one of the given tags"""
        if not self.items:
            raise OperandUnderflow(f"pop of {'/'.join(t.__name__ for t in tags)} from an empty operand stack")
        value = self.items.pop()
        if type(value) not in tags:
            raise OperandTypeError(f"expected {'/'.join(t.__name__ for t in tags)}, got {value!r}")
        return value

    def pop_pair(self, *tags):
        """pop b then a, both carrying the same tag, and return (a, b)"""
        b = self.pop(*tags)
        a = self.pop(type(b))
        return a, b

    def expect_empty(self):
        if self.items:
            raise OperandStackNotEmpty(f"operand stack left with {self.items!r}")


# ******************** OPERATIONS SECTION
class IL(Enum):
    PUSH_BOOL = auto()      # arg: bool                 -> Bool
    PUSH_BYTE = auto()      # arg: int                  -> Byte
    PUSH_ADDR = auto()      # arg: int                  -> Addr
    READ_REG = auto()       # arg: register             -> Byte
    WRITE_REG = auto()      # arg: register     Byte    ->
    READ_PC = auto()        #                           -> Addr
    WRITE_PC = auto()       #                   Addr    ->              redirects
    READ_I = auto()         #                           -> Addr
    WRITE_I = auto()        #                   Addr    ->
    CALL_PUSH = auto()      #                   Addr    ->
    CALL_POP = auto()       #                           -> Addr
    LOAD = auto()           #                   Addr    -> Byte
    STORE = auto()          #             Addr Byte     ->
    ADD = auto()            #             Byte Byte     -> Byte
    ADD_CARRY = auto()      #             Byte Byte     -> Byte(carry) Byte
    SUB_BORROW = auto()     #             Byte Byte     -> Byte(no borrow) Byte
    SHR = auto()            #                   Byte    -> Byte(bit out) Byte
    SHL = auto()            #                   Byte    -> Byte(bit out) Byte
    OR = auto()             #              T T          -> T    (T is Bool or Byte)
    AND = auto()            #              T T          -> T
    XOR = auto()            #              T T          -> T
    EQ = auto()             #              T T          -> Bool (any tag)
    NOT = auto()            #                   Bool    -> Bool
    TO_BYTE = auto()        #                   Bool    -> Byte
    WIDEN = auto()          #                   Byte    -> Addr
    ADD_ADDR = auto()       #             Addr Addr     -> Addr
    ADD_ADDR_CARRY = auto() #             Addr Addr     -> Byte(overflow) Addr
    SKIP_IF = auto()        #                   Bool    ->              redirects
    RANDOM = auto()         #                           -> Byte
    CLEAR = auto()          #                           ->
    DRAW_ROW = auto()       # arg: row   Byte Byte Byte -> Bool         (x, y, bits)
    KEY_DOWN = auto()       #                   Byte    -> Bool
    WAIT_KEY = auto()       #                           -> Byte
    READ_DT = auto()        #                           -> Byte
    WRITE_DT = auto()       #                   Byte    ->
    WRITE_ST = auto()       #                   Byte    ->
    HEX_CHAR = auto()       #                   Byte    -> Addr
    DIGIT = auto()          # arg: 100/10/1     Byte    -> Byte


Op = namedtuple("Op", ["code", "arg"], defaults=[None])


# ******************** ENGINE SECTION
class Engine:
    """runs decoded micro-programs against a Chip8State"""

    def __init__(self, quirks=DEFAULT_QUIRKS):
        self.quirks = quirks
        self.operations = {
            IL.PUSH_BOOL: self._push_bool,
            IL.PUSH_BYTE: self._push_byte,
            IL.PUSH_ADDR: self._push_addr,
            IL.READ_REG: self._read_reg,
            IL.WRITE_REG: self._write_reg,
            IL.READ_PC: self._read_pc,
            IL.WRITE_PC: self._write_pc,
            IL.READ_I: self._read_i,
            IL.WRITE_I: self._write_i,
            IL.CALL_PUSH: self._call_push,
            IL.CALL_POP: self._call_pop,
            IL.LOAD: self._load,
            IL.STORE: self._store,
            IL.ADD: self._add,
            IL.ADD_CARRY: self._add_carry,
            IL.SUB_BORROW: self._sub_borrow,
            IL.SHR: self._shr,
            IL.SHL: self._shl,
            IL.OR: self._or,
            IL.AND: self._and,
            IL.XOR: self._xor,
            IL.EQ: self._eq,
            IL.NOT: self._not,
            IL.TO_BYTE: self._to_byte,
            IL.WIDEN: self._widen,
            IL.ADD_ADDR: self._add_addr,
            IL.ADD_ADDR_CARRY: self._add_addr_carry,
            IL.SKIP_IF: self._skip_if,
            IL.RANDOM: self._random,
            IL.CLEAR: self._clear,
            IL.DRAW_ROW: self._draw_row,
            IL.KEY_DOWN: self._key_down,
            IL.WAIT_KEY: self._wait_key,
            IL.READ_DT: self._read_dt,
            IL.WRITE_DT: self._write_dt,
            IL.WRITE_ST: self._write_st,
            IL.HEX_CHAR: self._hex_char,
            IL.DIGIT: self._digit,
        }

    def execute(self, program, state: Chip8State, stack=None):
        """
        run every operation of program in order
        return True if one of them redirected the program counter
        """
        stack = OperandStack() if stack is None else stack
        stack.expect_empty()
        redirected = False
        for operation in program:
            if self.operations[operation.code](operation.arg, stack, state):
                redirected = True
        stack.expect_empty()
        return redirected

    # ********** constants
    def _push_bool(self, arg, stack, state):
        stack.push(Bool(arg))

    def _push_byte(self, arg, stack, state):
        stack.push(Byte(arg))

    def _push_addr(self, arg, stack, state):
        stack.push(Addr(arg))

    # ********** registers
    def _read_reg(self, register, stack, state):
        stack.push(Byte(state.read_register(register)))

    def _write_reg(self, register, stack, state):
        state.write_register(register, stack.pop(Byte).value)

    def _read_pc(self, arg, stack, state):
        stack.push(Addr(state.get_pc() & ADDRESS_MASK))

    def _write_pc(self, arg, stack, state):
        state.set_pc(stack.pop(Addr).value)
        return True

    def _read_i(self, arg, stack, state):
        stack.push(Addr(state.get_index() & ADDRESS_MASK))

    def _write_i(self, arg, stack, state):
        state.set_index(stack.pop(Addr).value)

    def _call_push(self, arg, stack, state):
        state.stack_push(stack.pop(Addr).value)

    def _call_pop(self, arg, stack, state):
        stack.push(Addr(state.stack_pop() & ADDRESS_MASK))

    # ********** memory
    def _load(self, arg, stack, state):
        stack.push(Byte(state.read_mem(stack.pop(Addr).value)))

    def _store(self, arg, stack, state):
        value = stack.pop(Byte).value
        state.write_mem(stack.pop(Addr).value, value)

    # ********** 8-bit arithmetic
    def _add(self, arg, stack, state):
        a, b = stack.pop_pair(Byte)
        stack.push(Byte((a.value + b.value) & 0xFF))

    def _add_carry(self, arg, stack, state):
        a, b = stack.pop_pair(Byte)
        total = a.value + b.value
        stack.push(Byte(1 if total > 0xFF else 0))
        stack.push(Byte(total & 0xFF))     # keep only the lowest 8 bits

    def _sub_borrow(self, arg, stack, state):
        a, b = stack.pop_pair(Byte)
        stack.push(Byte(1 if a.value >= b.value else 0))    # VF is NOT borrow
        stack.push(Byte((a.value - b.value) & 0xFF))

    def _shr(self, arg, stack, state):
        value = stack.pop(Byte).value
        stack.push(Byte(value & 0x1))
        stack.push(Byte(value >> 1))

    def _shl(self, arg, stack, state):
        value = stack.pop(Byte).value
        stack.push(Byte((value & 0x80) >> 7))
        stack.push(Byte((value << 1) & 0xFF))

    # ********** logic, works on Bool and Byte alike
    def _or(self, arg, stack, state):
        a, b = stack.pop_pair(Bool, Byte)
        stack.push(type(a)(a.value | b.value))

    def _and(self, arg, stack, state):
        a, b = stack.pop_pair(Bool, Byte)
        stack.push(type(a)(a.value & b.value))

    def _xor(self, arg, stack, state):
        a, b = stack.pop_pair(Bool, Byte)
        stack.push(type(a)(a.value ^ b.value))

    def _eq(self, arg, stack, state):
        a, b = stack.pop_pair(Bool, Addr, Byte)
        stack.push(Bool(a.value == b.value))

    def _not(self, arg, stack, state):
        stack.push(Bool(not stack.pop(Bool).value))

    def _to_byte(self, arg, stack, state):
        stack.push(Byte(1 if stack.pop(Bool).value else 0))

    # ********** 12-bit arithmetic
    def _widen(self, arg, stack, state):
        stack.push(Addr(stack.pop(Byte).value))

    def _add_addr(self, arg, stack, state):
        a, b = stack.pop_pair(Addr)
        stack.push(Addr((a.value + b.value) & ADDRESS_MASK))

    def _add_addr_carry(self, arg, stack, state):
        a, b = stack.pop_pair(Addr)
        total = a.value + b.value
        stack.push(Byte(1 if total > ADDRESS_MASK else 0))
        stack.push(Addr(total & ADDRESS_MASK))

    # ********** control flow
    def _skip_if(self, arg, stack, state):
        step = 0x4 if stack.pop(Bool).value else 0x2
        state.set_pc((state.get_pc() + step) & ADDRESS_MASK)
        return True

    def _random(self, arg, stack, state):
        stack.push(Byte(state.random_byte() & 0xFF))

    # ********** display
    def _clear(self, arg, stack, state):
        state.clear_screen()

    def _draw_row(self, row, stack, state):
        """
        XOR one sprite row at (x, y + row)
        the starting position always wraps, what falls past the edges is clipped
        unless wrap_sprites is set, in which case it reappears on the other side
        """
        bits = stack.pop(Byte).value
        y = stack.pop(Byte).value % SCREEN_HEIGHT + row
        x = stack.pop(Byte).value % SCREEN_WIDTH
        if y >= SCREEN_HEIGHT:
            if not self.quirks.wrap_sprites:
                stack.push(Bool(False))
                return
            y %= SCREEN_HEIGHT
        collision = state.screen_xor_line(x, y, bits)
        if self.quirks.wrap_sprites and x + 8 > SCREEN_WIDTH:
            # the pixels cut on the right edge, redrawn from column 0
            spilled = (bits << (SCREEN_WIDTH - x)) & 0xFF
            collision = state.screen_xor_line(0, y, spilled) or collision
        stack.push(Bool(bool(collision)))

    # ********** keyboard and timers
    def _key_down(self, arg, stack, state):
        stack.push(Bool(bool(state.is_key_pressed(stack.pop(Byte).value & 0xF))))

    def _wait_key(self, arg, stack, state):
        stack.push(Byte(state.wait_for_keypress() & 0xF))

    def _read_dt(self, arg, stack, state):
        stack.push(Byte(state.get_delay_timer() & 0xFF))

    def _write_dt(self, arg, stack, state):
        state.set_delay_timer(stack.pop(Byte).value)

    def _write_st(self, arg, stack, state):
        state.set_sound_timer(stack.pop(Byte).value)

    def _hex_char(self, arg, stack, state):
        stack.push(Addr(state.get_hex_char_addr(stack.pop(Byte).value & 0xF) & ADDRESS_MASK))

    def _digit(self, place, stack, state):
        stack.push(Byte((stack.pop(Byte).value // place) % 10))
