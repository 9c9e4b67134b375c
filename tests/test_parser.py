import unittest

from isadb.config import load_config
from isadb.metadata import AssignmentKind
from isadb.opcodes import BitTemplate, ComponentOpcode, PrefixClass
from isadb.operands import Access
from isadb.parser import (
    ArmInstructionParser, Dialect, X86InstructionParser, create_parser,
    parse_fixture, parse_instruction,
)

X86 = load_config(target="x86")
ARM = load_config(target="arm")


class X86RecordTestCase(unittest.TestCase):

    def test_create_parser(self):
        self.assertIsInstance(create_parser(X86), X86InstructionParser)
        self.assertIsInstance(create_parser(ARM), ArmInstructionParser)
        self.assertEqual(create_parser(ARM).dialect, Dialect.ARM)

    def test_evex_record(self):
        record = parse_instruction("vaddpd", "W:zmm {kz}, zmm, zmm/m512/b64 {er}", "RVM-FV",
                                   "EVEX.512.66.0F.W1 58 /r", "AVX512F", X86)
        self.assertEqual(record.encoding, "RVM")
        self.assertEqual(record.tuple_type, "FV")
        self.assertEqual(record.arch, "ANY")
        self.assertEqual(record.prefix, "EVEX")
        self.assertIsInstance(record.opcode, ComponentOpcode)
        self.assertEqual(len(record.operands), 3)
        self.assertEqual(record.operands[2].broadcast, 64)
        self.assertEqual(record.attributes,
                         {"kz": True, "k": True, "er": True, "sae": True, "broadcast": "64",
                          "PRIVILEGE": "L3"})
        self.assertEqual(record.extensions, {"AVX512F": True})
        self.assertEqual(record.invalid, 0)

    def test_default_access(self):
        record = parse_instruction("adc", "r32/m32, r32", "MR", "11 /r", "", X86)
        self.assertEqual([op.access for op in record.operands], [Access.READ_WRITE, Access.READ])

    def test_architecture_from_metadata(self):
        record = parse_instruction("salc", "W:<al>", "NONE", "D6", "X86 ?", X86)
        self.assertEqual(record.arch, "X86")
        self.assertTrue(record.unspecified)
        self.assertTrue(record.implicit)
        self.assertEqual(record.invalid, 0)

    def test_fpu_record(self):
        record = parse_instruction("fstsw", "W:<ax>", "NONE", "9B DF E0", "FPU C0=U C1=U C2=U C3=U", X86)
        self.assertEqual(record.prefix, PrefixClass.FPU_ESCAPE.value)
        self.assertEqual(record.special_regs, {"C0": "U", "C1": "U", "C2": "U", "C3": "U"})
        self.assertEqual(record.attributes, {"FPU": True, "PRIVILEGE": "L3"})

    def test_aliases(self):
        records = parse_fixture(["sal/shl", "X:r8/m8, ib", "MI", "C0 /4 ib", "OF=W"], X86)
        self.assertEqual([r.name for r in records], ["sal", "shl"])
        self.assertEqual([r.alias_of for r in records], ["", "sal"])
        self.assertEqual(records[0].operands, records[1].operands)

    def test_idempotence(self):
        fixture = ["vaddpd", "W:xmm {kz}, xmm, xmm/m128/b64", "RVM-FV", "EVEX.128.66.0F.W1 58 /r", "AVX512F-VL"]
        self.assertEqual(parse_fixture(fixture, X86), parse_fixture(fixture, X86))

    def test_fixture_must_have_five_fields(self):
        with self.assertRaises(SyntaxError):
            parse_fixture(["nop", "", "NONE", "90"], X86)

    def test_malformed_operands_are_fatal(self):
        with self.assertRaises(SyntaxError):
            parse_instruction("add", "X:al,, ib", "I", "04 ib", "", X86)

    def test_assignments_are_kept(self):
        record = parse_instruction("add", "X:r32/m32, r32", "MR", "01 /r", "OSZAPC=W Bogus", X86)
        kinds = [a.kind for a in record.assignments]
        self.assertEqual(kinds.count(AssignmentKind.SPECIAL_REG), 6)
        self.assertEqual(kinds.count(AssignmentKind.UNKNOWN), 1)
        self.assertEqual(record.invalid, 1)

    def test_default_privilege(self):
        self.assertEqual(parse_instruction("nop", "", "NONE", "90", "", X86).attributes["PRIVILEGE"], "L3")
        self.assertEqual(parse_instruction("hlt", "", "NONE", "F4", "PRIVILEGE=L0", X86).attributes["PRIVILEGE"], "L0")


class ArmRecordTestCase(unittest.TestCase):

    def test_a32_record(self):
        record = parse_instruction("adc", "Rd, Rn, #ImmA", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12",
                                   "Op=Adc APSR.C=R", ARM)
        self.assertEqual(record.arch, "A32")
        self.assertIsNone(record.prefix)
        self.assertIsInstance(record.opcode, BitTemplate)
        self.assertEqual(record.operands[2].imm.width, 12)
        self.assertEqual(record.operations, ("Adc",))
        self.assertEqual(record.special_regs, {"APSR.C": "R"})
        self.assertEqual(record.invalid, 0)

    def test_thumb_record(self):
        record = parse_instruction("bl", "#RelA", "T32", "11110|RelA[24]|RelA[21:12]|11|J1|1|J2|RelA[11:1]",
                                   "Op=Call", ARM)
        self.assertEqual(record.arch, "THUMB")
        self.assertEqual(record.operands[0].imm.width, 25)
        self.assertEqual(record.invalid, 0)

    def test_signed_post_indexed_offset(self):
        record = parse_instruction("ldr", "Rd, [Rn], #+/-ImmA", "A32", "Cond|010|0|U|0|0|1|Rn|Rd|ImmA:12",
                                   "Op=Load", ARM)
        self.assertEqual(len(record.operands), 3)
        imm = record.operands[2].imm
        self.assertEqual(imm.name, "ImmA")
        self.assertTrue(imm.sign)
        self.assertEqual(imm.width, 12)
        self.assertEqual(record.invalid, 0)

    def test_arm_records_have_no_privilege(self):
        record = parse_instruction("nop", "", "T16", "1011111100000000", "", ARM)
        self.assertNotIn("PRIVILEGE", record.attributes)

    def test_describe(self):
        record = parse_instruction("adcs", "Rx, Rm", "T16", "0100000101|Rm:3|Rx:3", "Op=Adc", ARM)
        lines = record.describe()
        self.assertEqual(lines[0], "adcs Rx, Rm")
        self.assertIn("   Layout: 0100000101[15:6] Rm[5:3] Rx[2:0]", lines)
        self.assertEqual(str(record), "adcs Rx, Rm")


if __name__ == "__main__":
    unittest.main()
