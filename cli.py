#!/usr/bin/env python3
"""
CHIP-8 Command-Line Runner
===========================
Loads a ROM and runs it, in a pygame window or headless.

Usage:
  python cli.py ROM [--scale N] [--ipf N] [--seed N]
                    [--headless] [--frames N] [--verbose]

Exit status:
  0  normal exit (window closed, frame limit reached)
  1  ROM could not be read or does not fit in memory, or the
     interpreter halted on a fault
  2  usage error (argparse)
"""

from __future__ import annotations

import argparse
import logging
import sys

from chip8 import LoadError
from display import DEFAULT_SCALE
from system import Chip8System, DEFAULT_CYCLES_PER_FRAME

DEFAULT_HEADLESS_FRAMES = 600


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py roms/pong.ch8\n"
               "  python cli.py roms/pong.ch8 --scale 12 --ipf 15\n"
               "  python cli.py test.ch8 --headless --frames 120\n"
    )
    parser.add_argument("rom", help="Path to the ROM image")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE, metavar="N",
                        help=f"Pixel scale factor for the window "
                             f"(default: {DEFAULT_SCALE})")
    parser.add_argument("--ipf", type=int, default=DEFAULT_CYCLES_PER_FRAME,
                        metavar="N",
                        help=f"Instructions per 60 Hz frame "
                             f"(default: {DEFAULT_CYCLES_PER_FRAME})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed the random generator for reproducible runs")
    parser.add_argument("--headless", action="store_true",
                        help="Run without opening a window")
    parser.add_argument("--frames", type=int, default=None, metavar="N",
                        help="Stop after N frames (headless default: "
                             f"{DEFAULT_HEADLESS_FRAMES})")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.ipf < 1:
        parser.error("--ipf must be at least 1")
    if args.frames is not None and args.frames < 1:
        parser.error("--frames must be at least 1")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s")

    system = Chip8System(cycles_per_frame=args.ipf, seed=args.seed,
                         on_beep=lambda: print("\a", end="", file=sys.stderr,
                                               flush=True))

    try:
        system.load_rom(args.rom)
    except OSError as e:
        print(f"[chip8] cannot read ROM '{args.rom}': {e.strerror or e}",
              file=sys.stderr)
        return 1
    except LoadError as e:
        print(f"[chip8] cannot load ROM '{args.rom}': {e}", file=sys.stderr)
        return 1

    if args.headless:
        from display import HeadlessDisplay
        display = HeadlessDisplay(system)
        frames = display.run(max_frames=args.frames or DEFAULT_HEADLESS_FRAMES)
        print(display.as_text())
        print(f"[chip8] {frames} frames, {system.instructions} instructions")
    else:
        try:
            from display import FramebufferDisplay
            display = FramebufferDisplay(system, scale=args.scale)
            display.run(max_frames=args.frames)
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame, "
                  "or run with --headless", file=sys.stderr)
            return 1

    if system.halted:
        print(f"[chip8] halted: {system.cpu.fault}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
