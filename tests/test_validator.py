import unittest

from isadb.config import load_config
from isadb.database import InstructionDatabase
from isadb.parser import parse_instruction
from isadb.validator import encoded_immediate_count

X86 = load_config(target="x86")
ARM = load_config(target="arm")


class X86ValidatorTestCase(unittest.TestCase):

    def test_valid_record(self):
        record = parse_instruction("enter", "iw, ib", "II", "C8 iw ib", "", X86)
        self.assertEqual(encoded_immediate_count(record.operands), 2)
        self.assertEqual(record.invalid, 0)

    def test_immediates_missing_in_encoding(self):
        record = parse_instruction("enter", "iw, ib", "NONE", "C8 iw ib", "", X86)
        self.assertGreaterEqual(record.invalid, 1)
        self.assertTrue(any("missing in encoding" in msg for msg in record.diagnostics))

    def test_flagged_record_is_still_inserted(self):
        db = InstructionDatabase(X86)
        db.add_instructions([["enter", "iw, ib", "NONE", "C8 iw ib", ""]])
        records = db.query("enter")
        self.assertEqual(len(records), 1)
        self.assertGreaterEqual(records[0].invalid, 1)
        self.assertEqual(db.stats.invalid, records[0].invalid)

    def test_immediates_missing_in_opcode(self):
        record = parse_instruction("add", "X:al, ib", "I", "04", "", X86)
        self.assertEqual(record.invalid, 1)
        self.assertIn("not found in opcode", record.diagnostics.messages[0])

    def test_unexpected_immediate_in_opcode(self):
        record = parse_instruction("add", "X:al", "NONE", "04 ib", "", X86)
        self.assertEqual(record.invalid, 1)

    def test_literal_one_is_not_counted(self):
        record = parse_instruction("shl", "X:r8/m8, 1", "M1", "D0 /4", "", X86)
        self.assertEqual(encoded_immediate_count(record.operands), 0)
        self.assertEqual(record.invalid, 0)

    def test_multiple_vector_memory_operands(self):
        record = parse_instruction("vbogus", "W:xmm, vm32x, vm32y", "RMV", "VEX.128.66.0F38.W0 90 /r", "", X86)
        self.assertEqual(record.invalid, 1)
        self.assertIn("Multiple vector memory operands", record.diagnostics.messages[0])

    def test_diagnostics_name_the_record(self):
        record = parse_instruction("add", "X:al, ib", "I", "04", "", X86)
        self.assertTrue(record.diagnostics.messages[0].startswith("add X:al, ib: "))


class ArmValidatorTestCase(unittest.TestCase):

    def test_immediate_without_field(self):
        record = parse_instruction("adc", "Rd, Rn, #ImmB", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12", "", ARM)
        self.assertEqual(record.invalid, 1)
        self.assertIn("ImmB", record.diagnostics.messages[0])

    def test_encoding_tag_is_not_checked(self):
        record = parse_instruction("adc", "Rd, Rn, #ImmA", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12", "", ARM)
        self.assertEqual(record.invalid, 0)


if __name__ == "__main__":
    unittest.main()
