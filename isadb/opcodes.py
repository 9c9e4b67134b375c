#!/usr/bin/env python3
"""
Opcode grammars.

Bit-template dialect (ARM):
    "Cond|0010101|S|Rn|Rd|ImmA:12" is a '|' separated list of literal bit runs
    and named fields, most significant bit first. A named field takes an
    explicit width (":N"), a bit slice ("[hi:lo]" or "[bit]"), or the default
    width of a well known field (Rd, Cond, ...), else 1 bit.

Component dialect (x86):
    "VEX.128.66.0F38.W0 01 /r" or "66 0F 3A 0F /r ib" is a whitespace
    separated list of components. Each component is classified by the first
    matching rule of an ordered rule table (LEGACY_RULES, VEX_PREFIX_RULES,
    VEX_BODY_RULES).
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .encodings import (
    FIELD_INFO, DISPLACEMENT_SIZES, immediate_size, word_size,
    set_field, create_field_mask, field_layout,
)

Report = Callable[[str], None]

# ============================================================================
# Bit-template dialect
# ============================================================================

@dataclass(frozen=True)
class BitField:
    """One '|' segment of a bit template.

    `name` is None for a literal run, whose bits are in `bits`.
    """
    name: Optional[str]
    width: int
    bits: str = ""
    lsb: int = 0
    slice: Optional[Tuple[int, int]] = None  # (hi, lo) bits of the operand value
    low_quote: bool = False
    high_quote: bool = False

    @property
    def is_literal(self) -> bool:
        return self.name is None


@dataclass(frozen=True)
class BitTemplate:
    text: str
    fields: Tuple[BitField, ...]
    width: int
    value: int
    mask: int

    def field_names(self) -> List[str]:
        names = []
        for f in self.fields:
            if f.name is not None and f.name not in names:
                names.append(f.name)
        return names

    def has_field(self, name: str) -> bool:
        return any(f.name == name for f in self.fields)

    def field_width(self, name: str) -> int:
        """Width of the value carried by field `name`, 0 if not present.

        Sliced fields are as wide as their highest selected bit, a quote
        marker adds one implied bit on its side.
        """
        parts = [f for f in self.fields if f.name == name]
        if not parts:
            return 0

        sliced = [f.slice for f in parts if f.slice is not None]
        if sliced:
            width = max(hi for hi, _ in sliced) + 1
        else:
            width = sum(f.width for f in parts)

        width += sum(f.low_quote for f in parts) + sum(f.high_quote for f in parts)
        return width

    def layout(self) -> str:
        return field_layout([(f.name or f.bits, f.lsb, f.width) for f in self.fields])

    def __str__(self):
        return self.text


_BINARY = re.compile(r"^[01]+$")
_MIXED_SEGMENT = re.compile(r"^[01A-Z]{2,}$")
_MIXED_PART = re.compile(r"[01]+|[A-Z]")
_BIT_RANGE = re.compile(r"\[\s*(\d+)\s*:\s*(\d+)\s*\]$")
_BIT_INDEX = re.compile(r"\[\s*(\d+)\s*\]$")
_BIT_WIDTH = re.compile(r":\s*(\d+)$")


def split_bit_fields(s: str) -> List[str]:
    """Split a bit template on '|', breaking "0010101S" style segments apart"""
    result = []
    for segment in s.split("|"):
        segment = segment.strip()
        if segment not in FIELD_INFO and _MIXED_SEGMENT.match(segment):
            result.extend(_MIXED_PART.findall(segment))
        else:
            result.append(segment)
    return result


def parse_bit_template(s: str, encoding: str, report: Report) -> BitTemplate:
    fields: List[BitField] = []

    for key in split_bit_fields(s):
        if _BINARY.match(key):
            fields.append(BitField(None, len(key), bits=key))
            continue

        low_quote = key.startswith("'")
        high_quote = key.endswith("'") and len(key) > 1
        key = key.strip("'")

        bit_slice = None
        range_match = _BIT_RANGE.search(key)
        index_match = _BIT_INDEX.search(key)
        width_match = _BIT_WIDTH.search(key)
        if range_match:
            hi, lo = int(range_match.group(1)), int(range_match.group(2))
            if hi < lo:
                report(f"Invalid bit range '{key}' in opcode '{s}'")
                hi, lo = lo, hi
            bit_slice = (hi, lo)
            width = hi - lo + 1
            key = key[:range_match.start()].strip()
        elif index_match:
            bit = int(index_match.group(1))
            bit_slice = (bit, bit)
            width = 1
            key = key[:index_match.start()].strip()
        elif width_match:
            width = int(width_match.group(1))
            key = key[:width_match.start()].strip()
        elif key in FIELD_INFO:
            width = FIELD_INFO[key].bits
        else:
            width = 1

        if not key:
            report(f"Empty field in opcode '{s}'")
            continue

        fields.append(BitField(key, width, slice=bit_slice,
                               low_quote=low_quote, high_quote=high_quote))

    total = sum(f.width for f in fields)

    # Assign bit positions, the first segment holds the most significant bits
    value = 0
    mask = 0
    pos = total
    placed = []
    for f in fields:
        pos -= f.width
        placed.append(replace(f, lsb=pos))
        if f.is_literal:
            value = set_field(value, pos, f.width, int(f.bits, 2))
            mask |= create_field_mask(pos, f.width)

    for name in {f.name for f in fields if f.name is not None}:
        parts = [f for f in fields if f.name == name]
        if any(f.slice for f in parts) and not all(f.slice for f in parts):
            report(f"Part '{name}' of opcode '{s}' contains both size and slice")

    expected = word_size(encoding) or 32
    if total != expected:
        report(f"The number of bits '{total}' used by opcode '{s}' doesn't match {expected}")

    return BitTemplate(s, tuple(placed), total, value, mask)

# ============================================================================
# Component dialect
# ============================================================================

class PrefixClass(Enum):
    NONE = ""
    LEGACY_ESCAPE = "3DNOW"
    VEX = "VEX"
    XOP = "XOP"
    EVEX = "EVEX"
    FPU_ESCAPE = "FPU"


@dataclass
class ComponentOpcode:
    text: str = ""
    prefix: PrefixClass = PrefixClass.NONE
    vvvv: str = ""                  # NDS, NDD or DDS
    vector_length: str = ""         # LIG, 128, 256 or 512
    width: str = ""                 # WIG, W0 or W1
    mandatory_prefix: str = ""      # 66, F2, F3, 66F2, 66F3 (or the 9B FPU escape)
    escape_map: str = ""            # 0F, 0F38, 0F3A, M8, M9 (or a D8..DF FPU escape)
    opcode: str = ""                # Opcode byte as two upper-case hex digits
    modrm: str = ""                 # "r" or "0".."7"
    embeds_register: bool = False   # "+r" / "+i" suffix
    imm_width: int = 0              # Sum of all immediate-size components
    disp_width: int = 0
    address_size_override: bool = False

    @property
    def opcode_value(self) -> Optional[int]:
        return int(self.opcode, 16) if self.opcode else None

    @property
    def modrm_digit(self) -> Optional[int]:
        return int(self.modrm) if self.modrm.isdigit() else None

    @property
    def is_vex_like(self) -> bool:
        return self.prefix in (PrefixClass.VEX, PrefixClass.XOP, PrefixClass.EVEX)

    def __str__(self):
        return self.text


@dataclass(frozen=True)
class ComponentRule:
    """One token classification rule: `matches` decides, `apply` commits."""
    name: str
    matches: Callable[[ComponentOpcode, str], bool]
    apply: Callable[[ComponentOpcode, str, Report], None]


def _set(attr: str, convert: Callable[[str], object] = lambda c: c):
    def apply(op, comp, report):
        setattr(op, attr, convert(comp))
    return apply


def _ignore(op, comp, report):
    pass


def _add_immediate(op, comp, report):
    op.imm_width += immediate_size(comp)


_VECTOR_LENGTHS = {
    "LIG": "LIG",
    "128": "128",
    "L0":  "128",
    "LZ":  "128",
    "256": "256",
    "L1":  "256",
    "512": "512",
}

VEX_PREFIX_RULES: Tuple[ComponentRule, ...] = (
    ComponentRule("prefix",
                  lambda op, c: c in ("VEX", "XOP", "EVEX"),
                  _set("prefix", PrefixClass)),
    ComponentRule("vvvv",
                  lambda op, c: c in ("NDS", "NDD", "DDS"),
                  _set("vvvv")),
    ComponentRule("vector-length",
                  lambda op, c: c in _VECTOR_LENGTHS,
                  _set("vector_length", _VECTOR_LENGTHS.get)),
    ComponentRule("no-mandatory-prefix",
                  lambda op, c: c == "P0",
                  _ignore),
    ComponentRule("mandatory-prefix",
                  lambda op, c: c in ("66", "F2", "F3"),
                  _set("mandatory_prefix")),
    ComponentRule("escape-map",
                  lambda op, c: c in ("0F", "0F3A", "0F38", "M8", "M9"),
                  _set("escape_map")),
    ComponentRule("width",
                  lambda op, c: c in ("WIG", "W0", "W1"),
                  _set("width")),
)

_HEX_BYTE = re.compile(r"^[0-9A-Fa-f]{2}$")
_MODRM = re.compile(r"^/[r0-7]$")

VEX_BODY_RULES: Tuple[ComponentRule, ...] = (
    ComponentRule("opcode",
                  lambda op, c: bool(_HEX_BYTE.match(c)),
                  _set("opcode", str.upper)),
    ComponentRule("modrm",
                  lambda op, c: bool(_MODRM.match(c)),
                  _set("modrm", lambda c: c[1])),
    ComponentRule("immediate",
                  lambda op, c: c in ("ib", "iw", "id", "iq", "/is4"),
                  _add_immediate),
)


_LEGACY_OPCODE = re.compile(r"^[0-9A-F]{2}(?:\+[ri])?$")
_FPU_ESCAPES = ("D8", "D9", "DA", "DB", "DC", "DD", "DE", "DF")


def _is_legacy_mandatory_prefix(op: ComponentOpcode, comp: str) -> bool:
    if op.escape_map:
        return False
    return ((op.mandatory_prefix == "" and comp in ("66", "F2", "F3")) or
            (op.mandatory_prefix == "66" and comp in ("F2", "F3")))


def _is_legacy_escape_map(op: ComponentOpcode, comp: str) -> bool:
    return ((op.escape_map == "" and comp == "0F") or
            (op.escape_map == "0F" and comp in ("01", "3A", "38")))


def _apply_legacy_opcode(op: ComponentOpcode, comp: str, report: Report):
    if len(comp) > 2:
        op.embeds_register = True
        comp = comp[:2]

    # "0F AE xx": the last byte is the opcode
    if op.escape_map == "0F" and op.opcode == "AE":
        op.escape_map += op.opcode
        op.opcode = comp
        return

    # FPU escapes "9B xx" and "D8..DF xx"
    if not op.mandatory_prefix and op.opcode == "9B":
        op.mandatory_prefix = op.opcode
        op.opcode = comp
        op.prefix = PrefixClass.FPU_ESCAPE
        return

    if not op.escape_map and op.opcode in _FPU_ESCAPES:
        op.escape_map = op.opcode
        op.opcode = comp
        op.prefix = PrefixClass.FPU_ESCAPE
        return

    if op.opcode:
        if op.opcode == "67":
            op.address_size_override = True
        else:
            report(f"'{op.text}' Multiple opcodes, have {op.opcode}, found {comp}")

    op.opcode = comp


def _apply_legacy_escape(op, comp, report):
    op.prefix = PrefixClass.LEGACY_ESCAPE


def _apply_displacement(op, comp, report):
    op.disp_width = DISPLACEMENT_SIZES[comp]


LEGACY_RULES: Tuple[ComponentRule, ...] = (
    ComponentRule("rex.w",
                  lambda op, c: c == "REX.W",
                  _set("width", lambda c: "W1")),
    ComponentRule("mandatory-prefix",
                  _is_legacy_mandatory_prefix,
                  lambda op, c, report: setattr(op, "mandatory_prefix", op.mandatory_prefix + c)),
    ComponentRule("escape-map",
                  _is_legacy_escape_map,
                  lambda op, c, report: setattr(op, "escape_map", op.escape_map + c)),
    ComponentRule("3dnow",
                  lambda op, c: op.escape_map == "0F" and c == "0F",
                  _apply_legacy_escape),
    ComponentRule("opcode",
                  lambda op, c: bool(_LEGACY_OPCODE.match(c)),
                  _apply_legacy_opcode),
    ComponentRule("modrm",
                  lambda op, c: bool(_MODRM.match(c)) and not op.modrm,
                  _set("modrm", lambda c: c[1])),
    ComponentRule("immediate",
                  lambda op, c: c in ("ib", "iw", "id", "iq"),
                  _add_immediate),
    ComponentRule("displacement",
                  lambda op, c: c in DISPLACEMENT_SIZES and not op.disp_width,
                  _apply_displacement),
)

_VEX_LIKE = re.compile(r"^(VEX|XOP|EVEX)\.")


def match_rule(rules: Sequence[ComponentRule], op: ComponentOpcode, comp: str) -> Optional[ComponentRule]:
    """First rule of `rules` matching `comp` in the current state of `op`"""
    for rule in rules:
        if rule.matches(op, comp):
            return rule
    return None


def classify_component(comp: str, op: Optional[ComponentOpcode] = None,
                       rules: Sequence[ComponentRule] = LEGACY_RULES) -> Optional[str]:
    """Name of the rule that would classify `comp`, None if no rule matches"""
    rule = match_rule(rules, op or ComponentOpcode(), comp)
    return rule.name if rule else None


def _apply_rules(rules: Sequence[ComponentRule], op: ComponentOpcode, components: Sequence[str],
                 report: Report, what: str):
    for comp in components:
        rule = match_rule(rules, op, comp)
        if rule is None:
            report(f"'{op.text}' Unhandled {what} {comp}")
            continue
        rule.apply(op, comp, report)


def parse_component_opcode(s: str, report: Report) -> ComponentOpcode:
    op = ComponentOpcode(text=s)
    parts = s.split()

    if _VEX_LIKE.match(s):
        _apply_rules(VEX_PREFIX_RULES, op, parts[0].split("."), report, "component")
        _apply_rules(VEX_BODY_RULES, op, parts[1:], report, "opcode component")
    else:
        _apply_rules(LEGACY_RULES, op, parts, report, "opcode component")

    # "0F 01 /7" style opcodes end up with 01 in the escape map
    if not op.opcode and op.escape_map.endswith("0F01"):
        op.opcode = "01"
        op.escape_map = op.escape_map[:-2]

    if not op.opcode:
        report(f"Couldn't parse instruction's opcode '{s}'")

    return op
