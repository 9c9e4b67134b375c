#!/usr/bin/env python3
"""
Static encoding tables and helpers shared by both instruction dialects.
"""

import re
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

@dataclass(frozen=True)
class FieldInfo:
    """Default layout of a named bit-template opcode field"""
    bits: int
    read: bool = False
    write: bool = False
    is_list: bool = False

# Bit-template (ARM) opcode fields whose width can be assigned automatically.
# THUMB halfword encodings must always spell out register widths, as many of
# them only accept LO registers (r0..r7).
FIELD_INFO: Dict[str, FieldInfo] = {
    "P":      FieldInfo(1),
    "U":      FieldInfo(1),
    "W":      FieldInfo(1),
    "S":      FieldInfo(1),
    "R":      FieldInfo(1),
    "J1":     FieldInfo(1),
    "J2":     FieldInfo(1),
    "SOP":    FieldInfo(2),
    "Cond":   FieldInfo(4),
    "Cn":     FieldInfo(4),
    "Cm":     FieldInfo(4),
    "Rd":     FieldInfo(4, read=False, write=True),
    "Rd2":    FieldInfo(4, read=False, write=True),
    "RdLo":   FieldInfo(4, read=False, write=True),
    "RdHi":   FieldInfo(4, read=False, write=True),
    "RdList": FieldInfo(4, read=False, write=True, is_list=True),
    "Rx":     FieldInfo(4, read=True,  write=True),
    "RxLo":   FieldInfo(4, read=True,  write=True),
    "RxHi":   FieldInfo(4, read=True,  write=True),
    "Rn":     FieldInfo(4, read=True,  write=False),
    "Rm":     FieldInfo(4, read=True,  write=False),
    "Ra":     FieldInfo(4, read=True,  write=False),
    "Rs":     FieldInfo(4, read=True,  write=False),
    "Rs2":    FieldInfo(4, read=True,  write=False),
    "RsList": FieldInfo(4, read=True,  write=False, is_list=True),
    "Dd":     FieldInfo(4, read=False, write=True),
    "Dx":     FieldInfo(4, read=True,  write=True),
    "Dn":     FieldInfo(4, read=True,  write=False),
    "Dm":     FieldInfo(4, read=True,  write=False),
    "Sd":     FieldInfo(4, read=False, write=True),
    "Sx":     FieldInfo(4, read=True,  write=True),
    "Sn":     FieldInfo(4, read=True,  write=False),
    "Sm":     FieldInfo(4, read=True,  write=False),
    "Vd":     FieldInfo(4, read=False, write=True),
    "VdList": FieldInfo(4, read=False, write=True, is_list=True),
    "Vx":     FieldInfo(4, read=True,  write=True),
    "Vn":     FieldInfo(4, read=True,  write=False),
    "Vm":     FieldInfo(4, read=True,  write=False),
    "Vs":     FieldInfo(4, read=True,  write=False),
    "VsList": FieldInfo(4, read=True,  write=False, is_list=True),
}

# Instruction word size (in bits) of each bit-template encoding class
WORD_SIZE = {
    "T16": 16,
    "T32": 32,
    "A32": 32,
    "A64": 32,
}

# Immediate-size tokens of the component dialect -> bit width
IMMEDIATE_SIZES = {
    "1": 8,
    "i4": 4,
    "is4": 4,
    "/is4": 4,
    "ib": 8,
    "iw": 16,
    "id": 32,
    "iq": 64,
}

# Displacement tokens of the component dialect -> bit width
DISPLACEMENT_SIZES = {
    "cb": 8,
    "cd": 32,
}

@dataclass(frozen=True)
class RegisterInfo:
    """One entry of the x86 register table"""
    type: str              # Register type (r32, xmm, k, ...)
    kind: str              # Register kind (gp, vec, mask, ...)
    index: Optional[int]   # Register index, None for "any register of this type"

_REGISTER_RANGE = re.compile(r"^([A-Za-z()]+)(\d+)-(\d+)([A-Za-z()]*)$")

def build_register_map(defs: Dict[str, dict]) -> Dict[str, RegisterInfo]:
    """Expand a {type: {kind, any, names}} table into a name -> RegisterInfo map.

    A name such as "xmm0-31" expands to xmm0..xmm31, the numeric part becoming
    the register index. Other names are indexed by their position.
    """
    regs = {}

    for reg_type, d in defs.items():
        kind = d.get("kind", reg_type)

        if d.get("any"):
            regs[d["any"]] = RegisterInfo(reg_type, kind, None)

        for i, name in enumerate(d.get("names", [])):
            m = _REGISTER_RANGE.match(name)
            if m:
                first, last = int(m.group(2)), int(m.group(3))
                for n in range(first, last + 1):
                    regs[f"{m.group(1)}{n}{m.group(4)}"] = RegisterInfo(reg_type, kind, n)
            else:
                regs[name] = RegisterInfo(reg_type, kind, i)

    return regs

def immediate_size(token: str) -> int:
    """Bit width of an immediate token ("ib", "iw", ...), -1 if unknown"""
    return IMMEDIATE_SIZES.get(token, -1)

def relative_size(token: str) -> int:
    """Bit width of a relative displacement operand ("rel8", "rel32"), -1 if unknown"""
    m = re.match(r"^rel(\d+)$", token)
    return int(m.group(1)) if m else -1

def create_field_mask(field_pos: int, field_width: int) -> int:
    """Create a mask for a specific field"""
    mask = (1 << field_width) - 1
    return mask << field_pos

def set_field(value: int, field_pos: int, field_width: int, field_value: int) -> int:
    """Set a field in an instruction encoding"""
    mask = (1 << field_width) - 1
    field_value = field_value & mask
    return (value & ~(mask << field_pos)) | (field_value << field_pos)

def word_size(encoding: str) -> Optional[int]:
    """Expected instruction word size of a bit-template encoding class"""
    return WORD_SIZE.get(encoding)

def field_layout(fields: List[Tuple[str, int, int]]) -> str:
    """Render (name, lsb, width) items as 'name[hi:lo]', in the given order"""
    return " ".join(f"{name}[{lsb + width - 1}:{lsb}]" for name, lsb, width in fields)
