import unittest

from isadb.diagnostics import Diagnostics
from isadb.opcodes import (
    LEGACY_RULES, VEX_BODY_RULES, ComponentOpcode, PrefixClass,
    classify_component, parse_bit_template, parse_component_opcode, split_bit_fields,
)


class ComponentOpcodeTestCase(unittest.TestCase):

    def parse(self, s):
        self.diag = Diagnostics()
        return parse_component_opcode(s, self.diag.report)

    def test_vex(self):
        op = self.parse("VEX.128.66.0F38.W0 01 /r")
        self.assertEqual(op.prefix, PrefixClass.VEX)
        self.assertEqual(op.vector_length, "128")
        self.assertEqual(op.mandatory_prefix, "66")
        self.assertEqual(op.escape_map, "0F38")
        self.assertEqual(op.width, "W0")
        self.assertEqual(op.opcode, "01")
        self.assertEqual(op.modrm, "r")
        self.assertIsNone(op.modrm_digit)
        self.assertEqual(op.opcode_value, 1)
        self.assertEqual(len(self.diag), 0)

    def test_xop_with_is4(self):
        op = self.parse("XOP.L0.P0.M8.W0 A2 /r /is4")
        self.assertEqual(op.prefix, PrefixClass.XOP)
        self.assertEqual(op.vector_length, "128")
        self.assertEqual(op.mandatory_prefix, "")
        self.assertEqual(op.escape_map, "M8")
        self.assertEqual(op.imm_width, 4)
        self.assertTrue(op.is_vex_like)
        self.assertEqual(len(self.diag), 0)

    def test_evex_vector_lengths(self):
        for marker, length in (("LIG", "LIG"), ("LZ", "128"), ("L1", "256"), ("512", "512")):
            with self.subTest(marker=marker):
                op = self.parse(f"EVEX.{marker}.F3.0F.W1 7F /r")
                self.assertEqual(op.vector_length, length)

    def test_vex_unhandled_component(self):
        op = self.parse("VEX.NDS.128.66.0F.W9 58 /r")
        self.assertEqual(op.vvvv, "NDS")
        self.assertEqual(len(self.diag), 1)
        self.assertIn("W9", self.diag.messages[0])

    def test_opcode_fixup_for_0f01(self):
        op = self.parse("0F 01 /7")
        self.assertEqual(op.opcode, "01")
        self.assertEqual(op.escape_map, "0F")
        self.assertEqual(op.modrm_digit, 7)
        self.assertEqual(len(self.diag), 0)

    def test_0f01_with_opcode(self):
        op = self.parse("0F 01 C1")
        self.assertEqual(op.escape_map, "0F01")
        self.assertEqual(op.opcode, "C1")

    def test_0f_ae_form(self):
        op = self.parse("0F AE E8")
        self.assertEqual(op.escape_map, "0FAE")
        self.assertEqual(op.opcode, "E8")

    def test_fpu_escapes(self):
        op = self.parse("9B DF E0")
        self.assertEqual(op.prefix, PrefixClass.FPU_ESCAPE)
        self.assertEqual(op.mandatory_prefix, "9B")
        self.assertEqual(op.escape_map, "DF")
        self.assertEqual(op.opcode, "E0")
        self.assertEqual(len(self.diag), 0)

        op = self.parse("D8 C0+i")
        self.assertEqual(op.escape_map, "D8")
        self.assertEqual(op.opcode, "C0")
        self.assertTrue(op.embeds_register)

    def test_3dnow(self):
        op = self.parse("0F 0F /r 9E")
        self.assertEqual(op.prefix, PrefixClass.LEGACY_ESCAPE)
        self.assertEqual(op.escape_map, "0F")
        self.assertEqual(op.opcode, "9E")

    def test_address_size_override(self):
        op = self.parse("67 E3 cb")
        self.assertTrue(op.address_size_override)
        self.assertEqual(op.opcode, "E3")
        self.assertEqual(op.disp_width, 8)
        self.assertEqual(len(self.diag), 0)

    def test_multiple_opcodes(self):
        op = self.parse("E8 E9")
        self.assertEqual(op.opcode, "E9")
        self.assertEqual(len(self.diag), 1)
        self.assertIn("Multiple opcodes", self.diag.messages[0])

    def test_immediates_are_summed(self):
        self.assertEqual(self.parse("C8 iw ib").imm_width, 24)

    def test_rex_w_and_register_suffix(self):
        op = self.parse("REX.W B8+r iq")
        self.assertEqual(op.width, "W1")
        self.assertTrue(op.embeds_register)
        self.assertEqual(op.opcode, "B8")
        self.assertEqual(op.imm_width, 64)

    def test_combined_mandatory_prefix(self):
        op = self.parse("66 F2 0F 38 F1 /r")
        self.assertEqual(op.mandatory_prefix, "66F2")
        self.assertEqual(op.escape_map, "0F38")
        self.assertEqual(op.opcode, "F1")

    def test_missing_opcode(self):
        op = self.parse("zz")
        self.assertEqual(op.opcode, "")
        self.assertIsNone(op.opcode_value)
        self.assertEqual(len(self.diag), 2)
        self.assertIn("Couldn't parse", self.diag.messages[-1])


class ComponentRuleTestCase(unittest.TestCase):

    def test_rule_order(self):
        self.assertEqual([rule.name for rule in LEGACY_RULES],
                         ["rex.w", "mandatory-prefix", "escape-map", "3dnow",
                          "opcode", "modrm", "immediate", "displacement"])

    def test_classification_depends_on_state(self):
        self.assertEqual(classify_component("F2"), "mandatory-prefix")
        self.assertEqual(classify_component("F2", ComponentOpcode(escape_map="0F")), "opcode")
        self.assertEqual(classify_component("0F"), "escape-map")
        self.assertEqual(classify_component("0F", ComponentOpcode(escape_map="0F")), "3dnow")
        self.assertEqual(classify_component("38"), "opcode")
        self.assertEqual(classify_component("38", ComponentOpcode(escape_map="0F")), "escape-map")
        self.assertEqual(classify_component("/r", ComponentOpcode(modrm="r")), None)

    def test_classification(self):
        self.assertEqual(classify_component("ib"), "immediate")
        self.assertEqual(classify_component("cd"), "displacement")
        self.assertEqual(classify_component("REX.W"), "rex.w")
        self.assertIsNone(classify_component("/is4"))
        self.assertEqual(classify_component("/is4", rules=VEX_BODY_RULES), "immediate")


class BitTemplateTestCase(unittest.TestCase):

    def parse(self, s, encoding):
        self.diag = Diagnostics()
        return parse_bit_template(s, encoding, self.diag.report)

    def test_a32_template(self):
        t = self.parse("Cond|0010101|S|Rn|Rd|ImmA:12", "A32")
        self.assertEqual(t.width, 32)
        self.assertEqual(t.field_names(), ["Cond", "S", "Rn", "Rd", "ImmA"])
        self.assertEqual(t.field_width("Cond"), 4)
        self.assertEqual(t.field_width("ImmA"), 12)
        self.assertEqual(t.field_width("Rm"), 0)
        self.assertEqual(t.value, 0x02A00000)
        self.assertEqual(t.mask, 0x0FE00000)
        self.assertEqual(t.fields[0].lsb, 28)
        self.assertEqual(t.fields[-1].lsb, 0)
        self.assertEqual(len(self.diag), 0)

    def test_fields_keep_source_order(self):
        t = self.parse("Cond|0010101|S|Rn|Rd|ImmA:12", "A32")
        self.assertEqual(t.layout(),
                         "Cond[31:28] 0010101[27:21] S[20:20] Rn[19:16] Rd[15:12] ImmA[11:0]")

    def test_sliced_field(self):
        t = self.parse("11110|ImmA[11]|01010|S|Rn|0|ImmA[10:8]|Rd|ImmA[7:0]", "T32")
        self.assertEqual(t.width, 32)
        self.assertEqual(t.field_width("ImmA"), 12)
        self.assertEqual(t.fields[1].slice, (11, 11))
        self.assertEqual(t.fields[1].lsb, 26)
        self.assertEqual(len(self.diag), 0)

    def test_t16_template(self):
        t = self.parse("0100000101|Rm:3|Rx:3", "T16")
        self.assertEqual(t.width, 16)
        self.assertEqual(t.field_width("Rm"), 3)
        self.assertEqual(len(self.diag), 0)

    def test_word_size_mismatch(self):
        t = self.parse("0100000101|Rm|Rx", "T16")
        self.assertEqual(t.width, 18)
        self.assertEqual(len(self.diag), 1)

    def test_mixed_segment_is_split(self):
        self.assertEqual(split_bit_fields("Cond|0010111S|Rn"), ["Cond", "0010111", "S", "Rn"])
        self.assertEqual(split_bit_fields("SOP|J1|11"), ["SOP", "J1", "11"])
        t = self.parse("Cond|0010111S|Rn|Rd|ImmA:12", "A32")
        self.assertEqual(t.width, 32)
        self.assertTrue(t.has_field("S"))

    def test_unknown_field_defaults_to_one_bit(self):
        t = self.parse("X|0000000000000000000000000000000", "A32")
        self.assertEqual(t.field_width("X"), 1)
        self.assertEqual(len(self.diag), 0)

    def test_quote_adds_an_implied_bit(self):
        t = self.parse("Vd:4'|0000000000000000000000000000", "A32")
        self.assertEqual(t.width, 32)
        self.assertEqual(t.field_width("Vd"), 5)
        self.assertTrue(t.fields[0].high_quote)

    def test_invalid_bit_range(self):
        self.parse("Imm[3:7]|000000000000000000000000000", "A32")
        self.assertTrue(any("Invalid bit range" in msg for msg in self.diag))


if __name__ == "__main__":
    unittest.main()
