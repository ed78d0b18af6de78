"""
CHIP-8 Framebuffer Display
===========================
Renders the interpreter's 64x32 framebuffer in a pygame window and maps
host keyboard events onto the 16-key hex keypad.

Unlike a threaded console display, the window loop here IS the driver:
it runs on the calling thread, pumps pygame events, runs one system
frame per 60 Hz tick and blits the result.  The engine is never touched
from two threads.

Host keyboard layout (left four columns of a QWERTY board):

    1 2 3 4        1 2 3 C
    Q W E R   ->   4 5 6 D
    A S D F        7 8 9 E
    Z X C V        A 0 B F

Usage (programmatic):
    from display import FramebufferDisplay
    disp = FramebufferDisplay(system, scale=10)
    disp.run()          # returns when the window closes

Usage (CLI):
    python cli.py rom.ch8 --scale 10
"""

from __future__ import annotations

import logging

import numpy as np

from chip8 import DISPLAY_WIDTH, DISPLAY_HEIGHT
from system import Chip8System, TIMER_HZ

log = logging.getLogger(__name__)

DEFAULT_SCALE = 10          # 640x320 window
FRAME_RATE = TIMER_HZ       # one system frame per timer tick

FG_COLOR = (255, 255, 255)
BG_COLOR = (0, 0, 0)

# Host key name (pygame.key.name) -> logical keypad index
KEYMAP: dict[str, int] = {
    "x": 0x0, "1": 0x1, "2": 0x2, "3": 0x3,
    "q": 0x4, "w": 0x5, "e": 0x6, "a": 0x7,
    "s": 0x8, "d": 0x9, "z": 0xA, "c": 0xB,
    "4": 0xC, "r": 0xD, "f": 0xE, "v": 0xF,
}


def framebuffer_to_rgb(fb: bytes | bytearray,
                       fg: tuple[int, int, int] = FG_COLOR,
                       bg: tuple[int, int, int] = BG_COLOR) -> np.ndarray:
    """Convert a row-major 0/1 framebuffer into a (W, H, 3) uint8 array.

    The (x, y) axis order is what pygame.surfarray expects.
    """
    bits = np.frombuffer(bytes(fb), dtype=np.uint8,
                         count=DISPLAY_WIDTH * DISPLAY_HEIGHT)
    bits = bits.reshape(DISPLAY_HEIGHT, DISPLAY_WIDTH).T
    lut = np.array([bg, fg], dtype=np.uint8)
    return lut[bits & 1]


def key_index(name: str) -> int | None:
    """Logical key for a host key name, or None if unmapped."""
    return KEYMAP.get(name.lower())


class FramebufferDisplay:
    """pygame window that drives a Chip8System at 60 frames per second."""

    def __init__(self, system: "Chip8System", scale: int = DEFAULT_SCALE,
                 title: str = "CHIP-8"):
        self.sys = system
        self.scale = max(1, scale)
        self.title = title
        self.fps = FRAME_RATE
        self._running = False

    # -- public API -------------------------------------------------------

    def run(self, max_frames: int | None = None) -> int:
        """Open the window and drive the system until it closes.

        Returns the number of frames shown.
        """
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode(
            (DISPLAY_WIDTH * self.scale, DISPLAY_HEIGHT * self.scale))
        clock = pygame.time.Clock()
        fb_surface = pygame.Surface((DISPLAY_WIDTH, DISPLAY_HEIGHT))
        log.debug("window open at scale %d", self.scale)

        self._running = True
        frames = 0
        halted_reported = False
        try:
            while self._running:
                for event in pygame.event.get():
                    self._handle_event(pygame, event)
                if not self._running:
                    break

                if not self.sys.halted:
                    self.sys.run_frame()
                elif not halted_reported:
                    halted_reported = True
                    pygame.display.set_caption(f"{self.title} [halted]")

                self._render(pygame, screen, fb_surface)
                pygame.display.flip()
                clock.tick(self.fps)

                frames += 1
                if max_frames is not None and frames >= max_frames:
                    break
        finally:
            self._running = False
            pygame.quit()
        log.debug("window closed after %d frames", frames)
        return frames

    def stop(self):
        """Ask the window loop to exit after the current frame."""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- internals --------------------------------------------------------

    def _handle_event(self, pygame, event):
        if event.type == pygame.QUIT:
            self._running = False
        elif event.type in (pygame.KEYDOWN, pygame.KEYUP):
            if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self._running = False
                return
            key = key_index(pygame.key.name(event.key))
            if key is not None:
                self.sys.set_key(key, event.type == pygame.KEYDOWN)
        elif event.type == pygame.WINDOWFOCUSLOST:
            # Key-up events are lost while unfocused
            self.sys.cpu.release_all_keys()

    def _render(self, pygame, screen, fb_surface):
        pixels = framebuffer_to_rgb(self.sys.cpu.framebuffer())
        pygame.surfarray.blit_array(fb_surface, pixels)
        scaled = pygame.transform.scale(fb_surface, screen.get_size())
        screen.blit(scaled, (0, 0))


class HeadlessDisplay:
    """No-window display for tests and --headless runs.

    Drives the system the same way as FramebufferDisplay but without a
    clock, and records framebuffer snapshots.
    """

    def __init__(self, system: "Chip8System", keep: int = 1):
        self.sys = system
        self.keep = max(1, keep)
        self.snapshots: list[bytes] = []
        self._running = False

    def run(self, max_frames: int = 600) -> int:
        self._running = True
        frames = 0
        try:
            for _ in range(max_frames):
                if self.sys.halted or not self._running:
                    break
                self.sys.run_frame()
                frames += 1
        finally:
            self._running = False
        self.snapshot()
        return frames

    def stop(self):
        """End run() before its next frame."""
        self._running = False

    def snapshot(self) -> bytes:
        """Capture the current framebuffer."""
        data = self.sys.cpu.framebuffer()
        self.snapshots.append(data)
        del self.snapshots[:-self.keep]
        return data

    def as_text(self, on: str = "#", off: str = ".") -> str:
        """Render the current framebuffer as 32 lines of 64 characters."""
        fb = self.sys.cpu.framebuffer()
        rows = []
        for y in range(DISPLAY_HEIGHT):
            row = fb[y * DISPLAY_WIDTH:(y + 1) * DISPLAY_WIDTH]
            rows.append("".join(on if px else off for px in row))
        return "\n".join(rows)

    @property
    def running(self) -> bool:
        return self._running
