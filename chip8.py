"""
CHIP-8 Interpreter Core
========================
A fetch/decode/execute engine for the classic CHIP-8 virtual machine:
4 KiB of memory, sixteen 8-bit V registers, a 16-bit index register,
a 16-deep call stack, two 60 Hz timers, a 64x32 monochrome framebuffer
and a 16-key hex keypad.

Every instruction is two bytes, big-endian.  The high nibble selects a
family; families 0x0, 0x8, 0xE and 0xF dispatch again on the low nibble
or low byte.  The engine never touches a window, a clock or a keyboard:
the driver (system.py) calls step() and tick_60hz() and feeds key state.

VF is both a general register and the flags output.  When an ALU opcode
targets VF as its destination, the result overwrites the flag.
"""

from __future__ import annotations

import enum
import logging
import random
from typing import Callable, Optional

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEMORY_SIZE    = 4096
REGISTER_COUNT = 16
STACK_SIZE     = 16
KEY_COUNT      = 16

DISPLAY_WIDTH  = 64
DISPLAY_HEIGHT = 32
DISPLAY_PIXELS = DISPLAY_WIDTH * DISPLAY_HEIGHT

PROGRAM_START  = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START

FONT_START     = 0x50
GLYPH_SIZE     = 5

# Hex digit glyphs 0-F, 4 pixels wide (high nibble), 5 rows each
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

VF = 0xF


class State(enum.IntEnum):
    """Coarse engine state."""
    RUNNING      = 0
    AWAITING_KEY = 1   # FX0A issued, pc frozen until a key is down
    HALTED       = 2   # unrecoverable fault


# ---------------------------------------------------------------------------
#  Opcode field helpers
# ---------------------------------------------------------------------------

def op_x(opcode: int) -> int:
    return (opcode >> 8) & 0xF

def op_y(opcode: int) -> int:
    return (opcode >> 4) & 0xF

def op_n(opcode: int) -> int:
    return opcode & 0xF

def op_nn(opcode: int) -> int:
    return opcode & 0xFF

def op_nnn(opcode: int) -> int:
    return opcode & 0xFFF

def bcd(value: int) -> tuple[int, int, int]:
    """Split an 8-bit value into (hundreds, tens, ones)."""
    return value // 100, (value // 10) % 10, value % 10

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter errors."""
    pass

class LoadError(Chip8Error):
    """Program image rejected; engine state is unchanged."""
    pass

class ProgramTooLargeError(LoadError):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"Program is {size} bytes; at most "
                         f"{MAX_PROGRAM_SIZE} bytes fit above {PROGRAM_START:#05x}")

class FaultError(Chip8Error):
    """Runtime fault.  Halts the engine."""

    def __init__(self, message: str, pc: int = 0, opcode: int = 0):
        self.pc = pc
        self.opcode = opcode
        super().__init__(message)

class StackOverflowError(FaultError):
    pass

class StackUnderflowError(FaultError):
    pass

class MemoryFaultError(FaultError):
    def __init__(self, addr: int, pc: int = 0, opcode: int = 0):
        self.addr = addr
        super().__init__(f"Memory access out of range @ {addr:#06x}", pc, opcode)

class KeyFaultError(FaultError):
    pass

class HaltError(Chip8Error):
    pass


# ---------------------------------------------------------------------------
#  Interpreter
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 interpreter state machine."""

    def __init__(self, seed: Optional[int] = None,
                 rng: Optional[random.Random] = None):
        self.mem = bytearray(MEMORY_SIZE)

        # 16 x 8-bit general registers, V[F] doubles as flags
        self.v: bytearray = bytearray(REGISTER_COUNT)
        self.i: int  = 0
        self.pc: int = PROGRAM_START

        self.stack: list[int] = [0] * STACK_SIZE
        self.sp: int = 0

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        self.display = bytearray(DISPLAY_PIXELS)
        self.keypad: list[bool] = [False] * KEY_COUNT

        self.opcode: int = 0

        # State
        self.state: State = State.RUNNING
        self.fault: Optional[FaultError] = None
        self.cycle_count: int = 0
        self.unknown_opcodes: int = 0
        self.program_size: int = 0

        # One generator per instance, seeded once
        self.rng = rng if rng is not None else random.Random(seed)

        # Callbacks
        self.on_sound: Optional[Callable[[], None]] = None
        self.on_halt: Optional[Callable[[FaultError], None]] = None

        self.mem[FONT_START:FONT_START + len(FONTSET)] = FONTSET

        # Primary dispatch: high nibble -> family executor
        self._families: list[Callable[[int], None]] = [
            self._exec_sys,    self._exec_jp,    self._exec_call,
            self._exec_se_imm, self._exec_sne_imm, self._exec_se_reg,
            self._exec_ld_imm, self._exec_add_imm, self._exec_alu,
            self._exec_sne_reg, self._exec_ld_i,  self._exec_jp_v0,
            self._exec_rnd,    self._exec_drw,   self._exec_key,
            self._exec_misc,
        ]
        # Secondary dispatch
        self._alu_ops: dict[int, Callable[[int, int], None]] = {
            0x0: self._alu_ld,   0x1: self._alu_or,   0x2: self._alu_and,
            0x3: self._alu_xor,  0x4: self._alu_add,  0x5: self._alu_sub,
            0x6: self._alu_shr,  0x7: self._alu_subn, 0xE: self._alu_shl,
        }
        self._misc_ops: dict[int, Callable[[int], None]] = {
            0x07: self._ld_vx_dt,  0x0A: self._ld_vx_k,   0x15: self._ld_dt_vx,
            0x18: self._ld_st_vx,  0x1E: self._add_i_vx,  0x29: self._ld_f_vx,
            0x33: self._ld_b_vx,   0x55: self._ld_mem_vx, 0x65: self._ld_vx_mem,
        }

    # -- State shortcuts --

    @property
    def halted(self) -> bool:
        return self.state == State.HALTED

    @property
    def awaiting_key(self) -> bool:
        return self.state == State.AWAITING_KEY

    # -- Program loading --

    def load_program(self, data: bytes | bytearray):
        """Copy a program image into memory at 0x200.

        Raises ProgramTooLargeError without touching memory if the
        image does not fit.
        """
        size = len(data)
        if size > MAX_PROGRAM_SIZE:
            raise ProgramTooLargeError(size)
        self.mem[PROGRAM_START:PROGRAM_START + size] = data
        self.program_size = size
        log.debug("loaded %d bytes at %#05x", size, PROGRAM_START)

    # -- Keypad (owned by the input collaborator) --

    def set_key(self, key: int, pressed: bool):
        if not 0 <= key < KEY_COUNT:
            raise ValueError(f"Invalid key index: {key!r}")
        self.keypad[key] = bool(pressed)

    def press_key(self, key: int):
        self.set_key(key, True)

    def release_key(self, key: int):
        self.set_key(key, False)

    def release_all_keys(self):
        self.keypad = [False] * KEY_COUNT

    # -- Framebuffer (read-only to the renderer) --

    def framebuffer(self) -> bytes:
        """Snapshot of the 64x32 display, one 0/1 byte per pixel, row-major."""
        return bytes(self.display)

    def pixel(self, x: int, y: int) -> int:
        return self.display[(y % DISPLAY_HEIGHT) * DISPLAY_WIDTH
                            + (x % DISPLAY_WIDTH)]

    # -- Memory access --

    def _check_addr(self, addr: int, size: int = 1):
        if addr < 0 or addr + size > MEMORY_SIZE:
            raise MemoryFaultError(addr, self.pc, self.opcode)

    def mem_read8(self, addr: int) -> int:
        """Checked byte read; raises MemoryFaultError outside 0..0xFFF."""
        self._check_addr(addr)
        return self.mem[addr]

    def mem_write8(self, addr: int, val: int):
        self._check_addr(addr)
        self.mem[addr] = val & 0xFF

    # -- Stack helpers --

    def push(self, addr: int):
        if self.sp >= STACK_SIZE:
            raise StackOverflowError(
                f"Stack overflow calling {op_nnn(self.opcode):#05x}",
                self.pc, self.opcode)
        self.stack[self.sp] = addr
        self.sp += 1

    def pop(self) -> int:
        if self.sp == 0:
            raise StackUnderflowError("Stack underflow on return",
                                      self.pc, self.opcode)
        self.sp -= 1
        return self.stack[self.sp]

    # -- Fetch --

    def fetch(self) -> int:
        """Read the opcode at pc.  Does not advance pc."""
        self._check_addr(self.pc, 2)
        return (self.mem[self.pc] << 8) | self.mem[self.pc + 1]

    # =====================================================================
    #  STEP: one fetch/decode/execute cycle
    # =====================================================================

    def step(self):
        """Execute one instruction.

        A runtime fault moves the engine to HALTED instead of
        propagating; calling step() again afterwards raises HaltError.
        """
        if self.state == State.HALTED:
            raise HaltError("Interpreter is halted")

        try:
            self.opcode = self.fetch()
            self._families[self.opcode >> 12](self.opcode)
        except FaultError as e:
            self._halt(e)
            return
        self.cycle_count += 1

    def _halt(self, fault: FaultError):
        fault.pc = self.pc
        fault.opcode = self.opcode
        self.fault = fault
        self.state = State.HALTED
        log.error("halted at %#05x (opcode %04X): %s",
                  self.pc, self.opcode, fault)
        if self.on_halt:
            self.on_halt(fault)

    def _skip_if(self, cond: bool):
        self.pc += 4 if cond else 2

    def _unknown(self, opcode: int):
        self.unknown_opcodes += 1
        log.warning("unknown opcode %04X at %#05x", opcode, self.pc)
        self.pc += 2

    # =====================================================================
    #  Family executors
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _exec_sys(self, opcode: int):
        if opcode == 0x00E0:
            self.display[:] = bytes(DISPLAY_PIXELS)
            self.pc += 2
        elif opcode == 0x00EE:
            # The stack holds the address of the CALL itself
            self.pc = self.pop() + 2
        else:
            self._unknown(opcode)

    # -- 0x1: JP addr --
    def _exec_jp(self, opcode: int):
        self.pc = op_nnn(opcode)

    # -- 0x2: CALL addr --
    def _exec_call(self, opcode: int):
        self.push(self.pc)
        self.pc = op_nnn(opcode)

    # -- 0x3 / 0x4: SE / SNE Vx, byte --
    def _exec_se_imm(self, opcode: int):
        self._skip_if(self.v[op_x(opcode)] == op_nn(opcode))

    def _exec_sne_imm(self, opcode: int):
        self._skip_if(self.v[op_x(opcode)] != op_nn(opcode))

    # -- 0x5 / 0x9: SE / SNE Vx, Vy --
    def _exec_se_reg(self, opcode: int):
        if op_n(opcode) != 0:
            self._unknown(opcode)
            return
        self._skip_if(self.v[op_x(opcode)] == self.v[op_y(opcode)])

    def _exec_sne_reg(self, opcode: int):
        if op_n(opcode) != 0:
            self._unknown(opcode)
            return
        self._skip_if(self.v[op_x(opcode)] != self.v[op_y(opcode)])

    # -- 0x6: LD Vx, byte --
    def _exec_ld_imm(self, opcode: int):
        self.v[op_x(opcode)] = op_nn(opcode)
        self.pc += 2

    # -- 0x7: ADD Vx, byte (no flag) --
    def _exec_add_imm(self, opcode: int):
        x = op_x(opcode)
        self.v[x] = (self.v[x] + op_nn(opcode)) & 0xFF
        self.pc += 2

    # -- 0x8: register ALU --
    def _exec_alu(self, opcode: int):
        handler = self._alu_ops.get(op_n(opcode))
        if handler is None:
            self._unknown(opcode)
            return
        handler(op_x(opcode), op_y(opcode))
        self.pc += 2

    def _alu_ld(self, x: int, y: int):
        self.v[x] = self.v[y]

    def _alu_or(self, x: int, y: int):
        self.v[x] |= self.v[y]

    def _alu_and(self, x: int, y: int):
        self.v[x] &= self.v[y]

    def _alu_xor(self, x: int, y: int):
        self.v[x] ^= self.v[y]

    # Flag ops: result from the pre-op operands, then VF, then VX.

    def _alu_add(self, x: int, y: int):
        total = self.v[x] + self.v[y]
        self.v[VF] = 1 if total > 0xFF else 0
        self.v[x] = total & 0xFF

    def _alu_sub(self, x: int, y: int):
        vx, vy = self.v[x], self.v[y]
        self.v[VF] = 1 if vx >= vy else 0
        self.v[x] = (vx - vy) & 0xFF

    def _alu_shr(self, x: int, y: int):
        vx = self.v[x]
        self.v[VF] = vx & 0x1
        self.v[x] = vx >> 1

    def _alu_subn(self, x: int, y: int):
        vx, vy = self.v[x], self.v[y]
        self.v[VF] = 1 if vy >= vx else 0
        self.v[x] = (vy - vx) & 0xFF

    def _alu_shl(self, x: int, y: int):
        vx = self.v[x]
        self.v[VF] = (vx >> 7) & 0x1
        self.v[x] = (vx << 1) & 0xFF

    # -- 0xA: LD I, addr --
    def _exec_ld_i(self, opcode: int):
        self.i = op_nnn(opcode)
        self.pc += 2

    # -- 0xB: JP V0, addr --
    def _exec_jp_v0(self, opcode: int):
        # Out-of-range targets fault on the next fetch
        self.pc = op_nnn(opcode) + self.v[0]

    # -- 0xC: RND Vx, byte --
    def _exec_rnd(self, opcode: int):
        self.v[op_x(opcode)] = self.rng.randrange(256) & op_nn(opcode)
        self.pc += 2

    # -- 0xD: DRW Vx, Vy, nibble --
    def _exec_drw(self, opcode: int):
        height = op_n(opcode)
        if height:
            # Whole sprite must be in memory before any pixel changes
            self._check_addr(self.i, height)
        x0 = self.v[op_x(opcode)] % DISPLAY_WIDTH
        y0 = self.v[op_y(opcode)] % DISPLAY_HEIGHT
        display = self.display
        collision = 0

        for row in range(height):
            sprite = self.mem_read8(self.i + row)
            if not sprite:
                continue
            base = ((y0 + row) % DISPLAY_HEIGHT) * DISPLAY_WIDTH
            for col in range(8):
                if sprite & (0x80 >> col):
                    idx = base + (x0 + col) % DISPLAY_WIDTH
                    if display[idx]:
                        collision = 1
                    display[idx] ^= 1

        self.v[VF] = collision
        self.pc += 2

    # -- 0xE: SKP / SKNP Vx --
    def _exec_key(self, opcode: int):
        nn = op_nn(opcode)
        if nn not in (0x9E, 0xA1):
            self._unknown(opcode)
            return
        key = self.v[op_x(opcode)]
        if key >= KEY_COUNT:
            raise KeyFaultError(f"Key index {key:#04x} out of range")
        pressed = self.keypad[key]
        self._skip_if(pressed if nn == 0x9E else not pressed)

    # -- 0xF: timers, keypad wait, I arithmetic, BCD, register dumps --
    def _exec_misc(self, opcode: int):
        handler = self._misc_ops.get(op_nn(opcode))
        if handler is None:
            self._unknown(opcode)
            return
        handler(op_x(opcode))

    def _ld_vx_dt(self, x: int):
        self.v[x] = self.delay_timer
        self.pc += 2

    def _ld_vx_k(self, x: int):
        for key in range(KEY_COUNT):
            if self.keypad[key]:
                self.v[x] = key
                self.state = State.RUNNING
                self.pc += 2
                return
        # No key down: leave pc on this instruction and poll again
        self.state = State.AWAITING_KEY

    def _ld_dt_vx(self, x: int):
        self.delay_timer = self.v[x]
        self.pc += 2

    def _ld_st_vx(self, x: int):
        self.sound_timer = self.v[x]
        self.pc += 2

    def _add_i_vx(self, x: int):
        self.i = (self.i + self.v[x]) & 0xFFFF
        self.pc += 2

    def _ld_f_vx(self, x: int):
        self.i = FONT_START + self.v[x] * GLYPH_SIZE
        self.pc += 2

    def _ld_b_vx(self, x: int):
        self._check_addr(self.i, 3)
        for offset, digit in enumerate(bcd(self.v[x])):
            self.mem_write8(self.i + offset, digit)
        self.pc += 2

    def _ld_mem_vx(self, x: int):
        self._check_addr(self.i, x + 1)
        self.mem[self.i:self.i + x + 1] = self.v[:x + 1]
        self.pc += 2

    def _ld_vx_mem(self, x: int):
        self._check_addr(self.i, x + 1)
        self.v[:x + 1] = self.mem[self.i:self.i + x + 1]
        self.pc += 2

    # =====================================================================
    #  Timers
    # =====================================================================

    def tick_60hz(self) -> bool:
        """Decrement both timers once.

        Returns True, after calling on_sound, exactly when the sound
        timer goes from 1 to 0 on this call.
        """
        if self.delay_timer > 0:
            self.delay_timer -= 1
        edge = False
        if self.sound_timer > 0:
            edge = self.sound_timer == 1
            self.sound_timer -= 1
        if edge and self.on_sound:
            self.on_sound()
        return edge

    # -- Run loop --

    def run(self, max_steps: int = 1_000_000) -> int:
        """Step until halted, blocked on FX0A, or max_steps.  Returns steps run."""
        steps = 0
        for _ in range(max_steps):
            if self.halted:
                break
            self.step()
            steps += 1
            if self.state == State.AWAITING_KEY:
                break
        return steps
