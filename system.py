"""
CHIP-8 System Driver
=====================
Wires together:
  - one Chip8 interpreter (chip8.py)
  - ROM loading from disk
  - frame pacing: a fixed number of instructions per 60 Hz frame,
    followed by exactly one timer tick
  - the sound-edge notification

The driver holds no clock of its own.  Something outside it (the pygame
loop in display.py, or a plain loop for headless runs) decides when a
frame is due and calls run_frame().
"""

from __future__ import annotations

import logging
import random
from typing import Callable, Optional

from chip8 import Chip8, State

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Timing constants
# ---------------------------------------------------------------------------

TIMER_HZ = 60

# Instructions per frame.  10 x 60 Hz gives the customary ~600 IPS.
DEFAULT_CYCLES_PER_FRAME = 10


class Chip8System:
    """
    Complete CHIP-8 machine: interpreter + ROM + frame pacing.

    The interpreter is owned exclusively by this object; the display and
    input shell reach it only through the methods below or through
    ``self.cpu`` on the same thread.
    """

    def __init__(self, cycles_per_frame: int = DEFAULT_CYCLES_PER_FRAME,
                 seed: Optional[int] = None,
                 rng: Optional[random.Random] = None,
                 on_beep: Optional[Callable[[], None]] = None):
        if cycles_per_frame < 1:
            raise ValueError("cycles_per_frame must be >= 1")
        self.cycles_per_frame = cycles_per_frame
        self.cpu = Chip8(seed=seed, rng=rng)
        self.cpu.on_sound = self._sound_edge
        self.on_beep = on_beep

        self.rom_path: Optional[str] = None
        self.frame_count: int = 0
        self.instructions: int = 0
        self.beeps: int = 0

    # -- Loading --

    def load_rom(self, path: str):
        """Read a ROM file and load it at 0x200.

        Raises OSError if the file cannot be read and LoadError if the
        image does not fit in memory.
        """
        with open(path, "rb") as f:
            data = f.read()
        self.cpu.load_program(data)
        self.rom_path = path
        log.info("loaded ROM %s (%d bytes)", path, len(data))

    def load_bytes(self, data: bytes | bytearray):
        self.cpu.load_program(data)

    # -- Input --

    def set_key(self, key: int, pressed: bool):
        self.cpu.set_key(key, pressed)

    # -- Execution --

    @property
    def halted(self) -> bool:
        return self.cpu.halted

    @property
    def state(self) -> State:
        return self.cpu.state

    def run_frame(self) -> int:
        """Run one 60 Hz frame.  Returns instructions executed.

        Steps stop early only on a halt; a pending FX0A keeps polling
        for the rest of the frame.  Timers tick even while the engine
        waits on a key, but not once it has halted.
        """
        cpu = self.cpu
        executed = 0
        for _ in range(self.cycles_per_frame):
            if cpu.halted:
                break
            cpu.step()
            executed += 1
        if not cpu.halted:
            cpu.tick_60hz()
        self.instructions += executed
        self.frame_count += 1
        return executed

    def run(self, max_frames: int = 600) -> int:
        """Run frames until halted or max_frames.  Returns frames run."""
        frames = 0
        for _ in range(max_frames):
            if self.cpu.halted:
                break
            self.run_frame()
            frames += 1
        return frames

    # -- Sound --

    def _sound_edge(self):
        self.beeps += 1
        log.info("BEEP")
        if self.on_beep:
            self.on_beep()
