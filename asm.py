"""
CHIP-8 Assembler
=================
Translates assembly text in the conventional CHIP-8 mnemonics into a
program image loadable at 0x200.

Supports:
  - Labels (terminated with ':')
  - Every instruction the interpreter executes (CLS, RET, JP, CALL, SE,
    SNE, LD, ADD, OR, AND, XOR, SUB, SHR, SUBN, SHL, RND, DRW, SKP, SKNP)
  - Immediate literals (decimal, hex with 0x or # prefix, binary with 0b)
  - Comments (';' to end of line)
  - .org, .db, .dw directives (.dw is big-endian, like opcodes)

Usage:
  from asm import assemble
  rom = assemble(source_text)
"""

from __future__ import annotations

import argparse
import logging
import sys

from chip8 import PROGRAM_START

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Operand tables
# ---------------------------------------------------------------------------

# 8XYn register ALU sub-ops
ALU_SUB = {
    "or": 0x1, "and": 0x2, "xor": 0x3, "sub": 0x5,
    "shr": 0x6, "subn": 0x7, "shl": 0xE,
}

# FX.. forms keyed by (dest, src) operand kinds
LD_SPECIAL = {
    ("v", "dt"):  0x07,
    ("v", "k"):   0x0A,
    ("dt", "v"):  0x15,
    ("st", "v"):  0x18,
    ("f", "v"):   0x29,
    ("b", "v"):   0x33,
    ("[i]", "v"): 0x55,
    ("v", "[i]"): 0x65,
}

# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

def _parse_reg(tok: str) -> int:
    """Parse 'V0'-'VF'. Returns register index."""
    tok = tok.strip().lower()
    if len(tok) == 2 and tok[0] == "v" and tok[1] in "0123456789abcdef":
        return int(tok[1], 16)
    raise ValueError(f"Invalid register: {tok!r}")

def _is_reg(tok: str) -> bool:
    try:
        _parse_reg(tok)
    except ValueError:
        return False
    return True

def _parse_imm(tok: str) -> int:
    """Parse an immediate value (decimal, 0x/# hex, 0b binary)."""
    tok = tok.strip()
    if tok.startswith("#"):
        return int(tok[1:], 16)
    return int(tok, 0)

def _split_ops(rest: str) -> list[str]:
    """Split operand string by comma, trimming whitespace."""
    return [s.strip() for s in rest.split(",") if s.strip()]

def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' -> (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]

def _kind(tok: str) -> str:
    """Classify an LD operand: 'v', 'i', 'dt', 'st', 'k', 'f', 'b', '[i]', or 'imm'."""
    low = tok.strip().lower()
    if _is_reg(low):
        return "v"
    if low in ("i", "dt", "st", "k", "f", "b", "[i]"):
        return low
    return "imm"

# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


def assemble(source: str, base_addr: int = PROGRAM_START,
             listing: bool = False) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute sizes.
    Pass 2: emit big-endian opcodes with resolved addresses.
    The returned image starts at base_addr.
    If listing=True, print an address/hex/source listing to stdout.
    """
    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = raw.split(";", 1)[0].strip()
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: labels and sizes ----
    labels: dict[str, int] = {}
    sizes: list[tuple[int, str, int]] = []
    pc = base_addr

    for lineno, text in cleaned:
        # A label may share its line with an instruction
        if ":" in text:
            lbl, text = text.split(":", 1)
            lbl = lbl.strip()
            if not lbl or not (lbl[0].isalpha() or lbl[0] == "_"):
                raise AsmError(lineno, f"Invalid label: {lbl!r}")
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
            text = text.strip()
            if not text:
                continue

        lower = text.lower()
        if lower.startswith(".org"):
            target = _parse_imm_line(lineno, text[4:])
            if target < pc:
                raise AsmError(lineno, f".org {target:#x} moves backwards "
                                       f"(at {pc:#x})")
            sizes.append((lineno, text, target - pc))
            pc = target
            continue
        if lower.startswith(".db"):
            n = len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue
        if lower.startswith(".dw"):
            n = len(_split_ops(text[3:])) * 2
            sizes.append((lineno, text, n))
            pc += n
            continue

        sizes.append((lineno, text, 2))
        pc += 2

    # ---- Pass 2: emit ----
    code = bytearray()
    pc = base_addr
    listing_lines: list[tuple[int, str, str]] = []

    for lineno, text, sz in sizes:
        start_pc = pc
        lower = text.lower()

        if lower.startswith(".org"):
            code.extend(bytes(sz))
            pc += sz
            if listing:
                listing_lines.append((start_pc, "", text))
            continue

        if lower.startswith(".db"):
            emitted = bytearray(
                _resolve(lineno, tok, labels) & 0xFF
                for tok in _split_ops(text[3:]))
        elif lower.startswith(".dw"):
            emitted = bytearray()
            for tok in _split_ops(text[3:]):
                v = _resolve(lineno, tok, labels) & 0xFFFF
                emitted.append((v >> 8) & 0xFF)
                emitted.append(v & 0xFF)
        else:
            word = _encode(lineno, text, labels)
            emitted = bytearray([(word >> 8) & 0xFF, word & 0xFF])

        assert len(emitted) == sz, f"Size mismatch line {lineno}"
        if listing:
            hexstr = " ".join(f"{b:02X}" for b in emitted[:8])
            if len(emitted) > 8:
                hexstr += " ..."
            listing_lines.append((start_pc, hexstr, text))
        code.extend(emitted)
        pc += sz

    if listing:
        addr_labels: dict[int, list[str]] = {}
        for lbl, addr in labels.items():
            addr_labels.setdefault(addr, []).append(lbl)
        for addr, hexstr, src in listing_lines:
            for lbl in addr_labels.pop(addr, []):
                print(f"              {lbl}:")
            print(f"  {addr:04X}  {hexstr:<24s}  {src}")

    log.debug("assembled %d bytes, %d labels", len(code), len(labels))
    return code


def _parse_imm_line(lineno: int, tok: str) -> int:
    try:
        return _parse_imm(tok)
    except ValueError:
        raise AsmError(lineno, f"Bad immediate: {tok.strip()!r}") from None


def _resolve(lineno: int, tok: str, labels: dict[str, int]) -> int:
    """Resolve a token that is either an immediate or a label reference."""
    tok = tok.strip()
    if tok in labels:
        return labels[tok]
    try:
        return _parse_imm(tok)
    except ValueError:
        raise AsmError(lineno, f"Unknown label or bad immediate: {tok!r}") from None


def _field(lineno: int, tok: str, labels: dict[str, int], bits: int) -> int:
    val = _resolve(lineno, tok, labels)
    if not 0 <= val < (1 << bits):
        raise AsmError(lineno, f"Value {val:#x} does not fit in {bits} bits")
    return val


def _encode(lineno: int, text: str, labels: dict[str, int]) -> int:
    """Encode one instruction as a 16-bit opcode."""
    mnem, rest = _split_mnemonic(text)
    m = mnem.lower()
    ops = _split_ops(rest)

    def want(n: int):
        if len(ops) != n:
            raise AsmError(lineno, f"{mnem.upper()} takes {n} operand(s), "
                                   f"got {len(ops)}")

    def reg(tok: str) -> int:
        try:
            return _parse_reg(tok)
        except ValueError as e:
            raise AsmError(lineno, str(e)) from None

    if m == "cls":
        want(0)
        return 0x00E0
    if m == "ret":
        want(0)
        return 0x00EE

    if m == "jp":
        if len(ops) == 2:
            if reg(ops[0]) != 0:
                raise AsmError(lineno, "JP with offset only accepts V0")
            return 0xB000 | _field(lineno, ops[1], labels, 12)
        want(1)
        return 0x1000 | _field(lineno, ops[0], labels, 12)
    if m == "call":
        want(1)
        return 0x2000 | _field(lineno, ops[0], labels, 12)

    if m in ("se", "sne"):
        want(2)
        x = reg(ops[0])
        if _is_reg(ops[1]):
            base = 0x5000 if m == "se" else 0x9000
            return base | (x << 8) | (reg(ops[1]) << 4)
        base = 0x3000 if m == "se" else 0x4000
        return base | (x << 8) | _field(lineno, ops[1], labels, 8)

    if m == "ld":
        want(2)
        dst, src = _kind(ops[0]), _kind(ops[1])
        if dst == "v" and src == "v":
            return 0x8000 | (reg(ops[0]) << 8) | (reg(ops[1]) << 4)
        if dst == "v" and src == "imm":
            return 0x6000 | (reg(ops[0]) << 8) | _field(lineno, ops[1], labels, 8)
        if dst == "i" and src == "imm":
            return 0xA000 | _field(lineno, ops[1], labels, 12)
        code = LD_SPECIAL.get((dst, src))
        if code is None:
            raise AsmError(lineno, f"Unsupported LD form: {rest.strip()}")
        x = reg(ops[0] if dst == "v" else ops[1])
        return 0xF000 | (x << 8) | code

    if m == "add":
        want(2)
        if ops[0].strip().lower() == "i":
            return 0xF01E | (reg(ops[1]) << 8)
        x = reg(ops[0])
        if _is_reg(ops[1]):
            return 0x8004 | (x << 8) | (reg(ops[1]) << 4)
        return 0x7000 | (x << 8) | _field(lineno, ops[1], labels, 8)

    if m in ALU_SUB:
        # SHR/SHL accept an optional Vy that the interpreter ignores
        if m in ("shr", "shl") and len(ops) == 1:
            ops.append("V0")
        want(2)
        return 0x8000 | (reg(ops[0]) << 8) | (reg(ops[1]) << 4) | ALU_SUB[m]

    if m == "rnd":
        want(2)
        return 0xC000 | (reg(ops[0]) << 8) | _field(lineno, ops[1], labels, 8)

    if m == "drw":
        want(3)
        return (0xD000 | (reg(ops[0]) << 8) | (reg(ops[1]) << 4)
                | _field(lineno, ops[2], labels, 4))

    if m == "skp":
        want(1)
        return 0xE09E | (reg(ops[0]) << 8)
    if m == "sknp":
        want(1)
        return 0xE0A1 | (reg(ops[0]) << 8)

    raise AsmError(lineno, f"Unknown mnemonic: {mnem}")


# ---------------------------------------------------------------------------
#  Command-line entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="chip8-asm",
        description="Assemble CHIP-8 source into a ROM image")
    parser.add_argument("source", help="Assembly source file")
    parser.add_argument("output", help="ROM file to write")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print an assembly listing")
    args = parser.parse_args(argv)

    try:
        with open(args.source, "r") as f:
            source = f.read()
    except OSError as e:
        print(f"[chip8-asm] cannot read {args.source}: {e}", file=sys.stderr)
        return 1
    try:
        code = assemble(source, listing=args.listing)
    except AsmError as e:
        print(f"Assembly error: {e}", file=sys.stderr)
        return 1
    with open(args.output, "wb") as f:
        f.write(code)
    print(f"Assembled {args.source} -> {args.output} ({len(code)} bytes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
