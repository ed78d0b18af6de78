"""
Assembler tests: encodings, labels, directives, and error reporting.
"""

import os
import tempfile
import unittest

from asm import assemble, AsmError, main as asm_main


def ops(source: str) -> list[int]:
    """Assemble and return the image as a list of 16-bit words."""
    code = assemble(source)
    return [(code[i] << 8) | code[i + 1] for i in range(0, len(code), 2)]


class TestEncoding(unittest.TestCase):
    def test_flow(self):
        self.assertEqual(ops("cls\nret\njp 0x345\ncall 0x456\njp v0, 0x300"),
                         [0x00E0, 0x00EE, 0x1345, 0x2456, 0xB300])

    def test_skips(self):
        self.assertEqual(ops("se v3, 0x42\nsne v3, 0x42\nse v1, v2\nsne v1, v2"),
                         [0x3342, 0x4342, 0x5120, 0x9120])

    def test_loads(self):
        src = """
            ld v5, 0xAB
            ld v1, v2
            ld i, 0x123
            ld v4, dt
            ld v4, k
            ld dt, v6
            ld st, v7
            ld f, v8
            ld b, v9
            ld [i], va
            ld vb, [i]
        """
        self.assertEqual(ops(src), [
            0x65AB, 0x8120, 0xA123, 0xF407, 0xF40A, 0xF615, 0xF718,
            0xF829, 0xF933, 0xFA55, 0xFB65,
        ])

    def test_alu(self):
        src = """
            add v1, 0x10
            add v1, v2
            add i, v3
            or v1, v2
            and v1, v2
            xor v1, v2
            sub v1, v2
            shr v1
            subn v1, v2
            shl v1, v2
        """
        self.assertEqual(ops(src), [
            0x7110, 0x8124, 0xF31E, 0x8121, 0x8122, 0x8123, 0x8125,
            0x8106, 0x8127, 0x812E,
        ])

    def test_rnd_drw_keys(self):
        self.assertEqual(ops("rnd v2, 0x0F\ndrw v0, v1, 5\nskp ve\nsknp vf"),
                         [0xC20F, 0xD015, 0xEE9E, 0xEFA1])

    def test_case_insensitive_and_hash_hex(self):
        self.assertEqual(ops("LD VA, #FF\nJP #200"), [0x6AFF, 0x1200])

    def test_decimal_and_binary(self):
        self.assertEqual(ops("ld v0, 10\nld v1, 0b1010"), [0x600A, 0x610A])


class TestLabels(unittest.TestCase):
    def test_forward_and_backward(self):
        src = """
        start:
            jp end
        mid: ld v0, 1
        end:
            jp start
        """
        self.assertEqual(ops(src), [0x1204, 0x6001, 0x1200])

    def test_label_as_data_address(self):
        code = assemble("ld i, sprite\nsprite: .db 0xFF, 0x81")
        self.assertEqual(bytes(code), b"\xA2\x02\xFF\x81")

    def test_base_address(self):
        code = assemble("here: jp here", base_addr=0x600)
        self.assertEqual(bytes(code), b"\x16\x00")

    def test_duplicate_label(self):
        with self.assertRaises(AsmError) as ctx:
            assemble("a:\na:\ncls")
        self.assertEqual(ctx.exception.line, 2)

    def test_unknown_label(self):
        with self.assertRaises(AsmError):
            assemble("jp nowhere")


class TestDirectives(unittest.TestCase):
    def test_db(self):
        self.assertEqual(bytes(assemble(".db 1, 2, 0xFF")), b"\x01\x02\xFF")

    def test_dw_is_big_endian(self):
        self.assertEqual(bytes(assemble(".dw 0x1234, 0xABCD")),
                         b"\x12\x34\xAB\xCD")

    def test_org_pads(self):
        code = assemble("cls\n.org 0x206\nret")
        self.assertEqual(bytes(code), b"\x00\xE0\x00\x00\x00\x00\x00\xEE")

    def test_org_backwards(self):
        with self.assertRaises(AsmError):
            assemble("cls\ncls\n.org 0x200")

    def test_comments_and_blank_lines(self):
        self.assertEqual(ops("; header\n\n  cls ; clear\n"), [0x00E0])


class TestErrors(unittest.TestCase):
    def test_unknown_mnemonic(self):
        with self.assertRaises(AsmError) as ctx:
            assemble("cls\nfrob v1")
        self.assertEqual(ctx.exception.line, 2)
        self.assertIn("frob", str(ctx.exception))

    def test_bad_register(self):
        with self.assertRaises(AsmError):
            assemble("ld vg, 1")

    def test_immediate_too_wide(self):
        with self.assertRaises(AsmError):
            assemble("ld v0, 0x100")
        with self.assertRaises(AsmError):
            assemble("jp 0x1000")
        with self.assertRaises(AsmError):
            assemble("drw v0, v1, 16")

    def test_wrong_operand_count(self):
        with self.assertRaises(AsmError):
            assemble("cls v0")
        with self.assertRaises(AsmError):
            assemble("drw v0, v1")

    def test_jp_offset_requires_v0(self):
        with self.assertRaises(AsmError):
            assemble("jp v1, 0x300")

    def test_unsupported_ld_form(self):
        with self.assertRaises(AsmError):
            assemble("ld dt, 5")


class TestCommandLine(unittest.TestCase):
    def test_assemble_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "prog.asm")
            out = os.path.join(tmp, "prog.ch8")
            with open(src, "w") as f:
                f.write("ld v0, 1\nloop: jp loop\n")
            self.assertEqual(asm_main([src, out]), 0)
            with open(out, "rb") as f:
                self.assertEqual(f.read(), b"\x60\x01\x12\x02")

    def test_assembly_error_exit_status(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "bad.asm")
            with open(src, "w") as f:
                f.write("bogus\n")
            self.assertEqual(asm_main([src, os.path.join(tmp, "out.ch8")]), 1)

    def test_missing_source(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(
                asm_main([os.path.join(tmp, "nope.asm"),
                          os.path.join(tmp, "out.ch8")]), 1)
