#!/usr/bin/env python3
"""
Structural consistency checks of parsed instruction records.

Nothing here raises: every problem is reported through the record's
diagnostics and the record is kept.
"""

import re
from typing import Callable, Sequence

from .operands import Operand

Report = Callable[[str], None]

_IMMEDIATE_TOKEN = re.compile(r"(?:^|\s+)(ib|iw|id|iq)")


def encoded_immediate_count(operands: Sequence[Operand]) -> int:
    """Number of immediate operands that are encoded (fixed literals are not)"""
    return sum(1 for op in operands if op.imm is not None and op.imm.value is None)


def validate_x86(record, report: Report):
    imm_count = encoded_immediate_count(record.operands)

    # Every immediate needs an "I" in the encoding tag ("MI", "II", ...)
    if imm_count > 0 and "I" * imm_count not in record.encoding:
        report(f"Immediate(s) [{imm_count}] missing in encoding: {record.encoding}")

    found = len(_IMMEDIATE_TOKEN.findall(record.opcode_string))
    if found != imm_count:
        report(f"Immediate(s) [{imm_count}] not found in opcode: {record.opcode_string}")

    vsib = [op for op in record.operands if op.mem is not None and op.mem.vsib_reg]
    if len(vsib) > 1:
        report(f"Multiple vector memory operands: {', '.join(op.text for op in vsib)}")


def validate_arm(record, report: Report):
    for op in record.operands:
        imm = op.imm
        if imm is not None and not record.opcode.has_field(imm.name):
            report(f"Immediate '{imm.name}' has no field in opcode '{record.opcode_string}'")


VALIDATORS = {
    "x86": validate_x86,
    "arm": validate_arm,
}


def validate(record, dialect: str, report: Report):
    VALIDATORS[dialect](record, report)
