#!/usr/bin/env python3
"""
Instruction record front ends.

Every instruction variant is described by a 5-tuple:

    [name, operands, encoding, opcode, metadata]

    x86: ["vaddpd", "W:xmm {kz}, xmm, xmm/m128/b64", "RVM-FV", "EVEX.128.66.0F.W1 58 /r", "AVX512F-VL"]
    arm: ["adc/adcs", "Rd, Rn, #ImmA", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12", "Op=Adc"]

The name field may hold several '/' separated aliases, each producing its own
record with identical data. A record is built by running the stages in order:

    operands -> opcode -> metadata -> validation

Non-fatal problems end up in the record's diagnostics. A malformed operand
list (empty operand slot, unterminated bracket) raises SyntaxError.
"""

import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import IsaConfig
from .diagnostics import Diagnostics
from .metadata import Assignment, MetadataResolver, Source, X86MetadataResolver
from .opcodes import BitTemplate, ComponentOpcode, parse_bit_template, parse_component_opcode
from .operands import Access, ArmOperandGrammar, Operand, OperandGrammar, X86OperandGrammar
from .tokenizer import split_top_level
from .validator import validate

Fixture = Tuple[str, str, str, str, str]

# ============================================================================
# Records
# ============================================================================

class Dialect(Enum):
    X86 = "x86"
    ARM = "arm"


@dataclass
class InstructionRecord:
    """One parsed variant of one instruction name.

    Only `diagnostics` may grow after construction.
    """
    name: str
    arch: str
    encoding: str
    operands: Tuple[Operand, ...]
    opcode: Union[ComponentOpcode, BitTemplate]
    opcode_string: str
    operands_string: str = ""
    tuple_type: str = ""
    extensions: Dict[str, bool] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    special_regs: Dict[str, Any] = field(default_factory=dict)
    operations: Tuple[str, ...] = ()
    assignments: Tuple[Assignment, ...] = ()
    unspecified: bool = False
    alias_of: str = ""
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def invalid(self) -> int:
        return len(self.diagnostics)

    @property
    def prefix(self) -> Optional[str]:
        """Prefix class name of a component opcode, None for bit templates"""
        if isinstance(self.opcode, ComponentOpcode):
            return self.opcode.prefix.value
        return None

    @property
    def implicit(self) -> bool:
        return any(op.implicit for op in self.operands)

    def operand_signature(self) -> str:
        return ", ".join(op.text for op in self.operands)

    def describe(self) -> List[str]:
        """Multi-line human readable dump used by verbose listings"""
        lines = [f"{self.name} {self.operands_string}".rstrip()]
        if self.alias_of:
            lines.append(f"   Alias of: {self.alias_of}")
        lines.append(f"   Arch: {self.arch}  Encoding: {self.encoding}"
                     + (f"-{self.tuple_type}" if self.tuple_type else ""))
        lines.append(f"   Opcode: {self.opcode_string}")
        if isinstance(self.opcode, BitTemplate):
            lines.append(f"   Layout: {self.opcode.layout()}")
            lines.append(f"   Value:  0x{self.opcode.value:08X} Mask: 0x{self.opcode.mask:08X}")
        for op in self.operands:
            access = op.access.value if op.access else "-"
            kinds = "/".join(type(form).__name__.replace("Form", "") for form in op.forms)
            lines.append(f"   Operand {op.text}: {kinds} access={access}"
                         + (" implicit" if op.implicit else "")
                         + (" optional" if op.optional else ""))
        if self.extensions:
            lines.append(f"   Extensions: {' '.join(self.extensions)}")
        if self.attributes:
            lines.append(f"   Attributes: {' '.join(f'{k}={v}' for k, v in self.attributes.items())}")
        if self.special_regs:
            lines.append(f"   Special: {' '.join(f'{k}={v}' for k, v in self.special_regs.items())}")
        if self.operations:
            lines.append(f"   Operations: {' '.join(self.operations)}")
        for msg in self.diagnostics:
            lines.append(f"   Warning: {msg}")
        return lines

    def __str__(self):
        return f"{self.name} {self.operands_string}".rstrip()

# ============================================================================
# Front ends
# ============================================================================

class InstructionParser:
    """Builds InstructionRecords from fixture tuples.

    The parser keeps no state between records, the same instance may be used
    from several threads.
    """
    dialect: Dialect

    def __init__(self, config: IsaConfig, echo: bool = False):
        self.config = config
        self.echo = echo
        self.grammar = self.create_grammar()
        self.resolver = self.create_resolver()

    def create_grammar(self) -> OperandGrammar:
        raise NotImplementedError

    def create_resolver(self) -> MetadataResolver:
        return MetadataResolver(self.config)

    def parse_fixture(self, fixture: Sequence[str]) -> List[InstructionRecord]:
        """Parse one tuple into one record per alias name"""
        if len(fixture) != 5:
            raise SyntaxError(f"Instruction tuple must have 5 fields, not {len(fixture)}: {fixture!r}")

        names, operands, encoding, opcode, metadata = fixture
        aliases = [n.strip() for n in names.split("/") if n.strip()]
        if not aliases:
            raise SyntaxError(f"Instruction tuple has no name: {fixture!r}")

        records = []
        for i, name in enumerate(aliases):
            records.append(self.parse(name, operands, encoding, opcode, metadata,
                                      alias_of=aliases[0] if i else ""))
        return records

    def parse(self, name: str, operands: str, encoding: str, opcode: str, metadata: str,
              alias_of: str = "") -> InstructionRecord:
        diagnostics = Diagnostics(owner=f"{name} {operands}".rstrip(), echo=self.echo)
        report = diagnostics.report

        ops, decorations = self.parse_operands(operands, report)
        encoding, tuple_type = self.split_encoding(encoding)
        template = self.parse_opcode(opcode, encoding, report)
        ops = self.complete_operands(ops, template)

        meta = self.resolver.resolve(metadata, report)
        for key, value in decorations:
            self.resolver.assign(meta, key, value, Source.EXPLICIT, report)

        record = InstructionRecord(
            name=name,
            arch=meta.arch or self.default_arch(encoding),
            encoding=encoding,
            operands=tuple(ops),
            opcode=template,
            opcode_string=opcode,
            operands_string=operands.strip(),
            tuple_type=tuple_type,
            extensions=meta.extensions,
            attributes=meta.attributes,
            special_regs=meta.special_regs,
            operations=tuple(meta.operations),
            assignments=tuple(meta.assignments),
            unspecified=meta.unspecified,
            alias_of=alias_of,
            diagnostics=diagnostics,
        )

        validate(record, self.dialect.value, report)
        return record

    def parse_operands(self, s: str, report) -> Tuple[List[Operand], List[Tuple[str, Any]]]:
        ops = []
        for i, token in enumerate(split_top_level(s)):
            op = self.grammar.parse(token, report, self.fallback_access(i))
            if op is not None:
                ops.append(op)
        return ops, []

    def fallback_access(self, index: int) -> Optional[Access]:
        return None

    def split_encoding(self, encoding: str) -> Tuple[str, str]:
        return encoding.strip(), ""

    def parse_opcode(self, opcode: str, encoding: str, report):
        raise NotImplementedError

    def complete_operands(self, ops: List[Operand], template) -> List[Operand]:
        return ops

    def default_arch(self, encoding: str) -> str:
        return "ANY"


_X86_DECORATION = re.compile(r"\{([^{}]*)\}")


class X86InstructionParser(InstructionParser):
    dialect = Dialect.X86

    def create_grammar(self):
        return X86OperandGrammar(self.config)

    def create_resolver(self):
        return X86MetadataResolver(self.config)

    def parse_operands(self, s, report):
        # {k}, {kz}, {er} and {sae} are instruction attributes, not operands
        decorations: List[Tuple[str, Any]] = [(key, True) for key in _X86_DECORATION.findall(s)]
        s = _X86_DECORATION.sub("", s)

        ops, _ = super().parse_operands(s, report)
        for op in ops:
            if op.broadcast:
                decorations.append(("broadcast", str(op.broadcast)))
        return ops, decorations

    def fallback_access(self, index):
        return Access.READ_WRITE if index == 0 else Access.READ

    def split_encoding(self, encoding):
        # AVX-512 tuple type follows the encoding: "RVM-FV"
        base, _, tuple_type = encoding.strip().partition("-")
        return base, tuple_type

    def parse_opcode(self, opcode, encoding, report):
        return parse_component_opcode(opcode, report)


class ArmInstructionParser(InstructionParser):
    dialect = Dialect.ARM

    def create_grammar(self):
        return ArmOperandGrammar(self.config)

    def parse_opcode(self, opcode, encoding, report):
        return parse_bit_template(opcode, encoding, report)

    def complete_operands(self, ops, template):
        # Immediate widths come from the opcode fields of the same name
        result = []
        for op in ops:
            width = template.field_width(op.imm.name) if op.imm is not None else 0
            result.append(op.with_immediate_width(width) if width else op)
        return result

    def default_arch(self, encoding):
        return "THUMB" if encoding in ("T16", "T32") else encoding


PARSERS = {
    Dialect.X86: X86InstructionParser,
    Dialect.ARM: ArmInstructionParser,
}


def create_parser(config: IsaConfig, echo: bool = False) -> InstructionParser:
    return PARSERS[Dialect(config.dialect)](config, echo=echo)


def parse_instruction(name: str, operands: str, encoding: str, opcode: str, metadata: str,
                      config: IsaConfig) -> InstructionRecord:
    """Parse a single instruction variant (a single name, no aliases)"""
    return create_parser(config).parse(name, operands, encoding, opcode, metadata)


def parse_fixture(fixture: Sequence[str], config: IsaConfig) -> List[InstructionRecord]:
    return create_parser(config).parse_fixture(fixture)

# ============================================================================
# Main / Testing
# ============================================================================

SMOKE_TEST_FIXTURES = [
    ["adc/adcs", "Rd, Rn, #ImmA", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12", "Op=Adc APSR.NZCV=W"],
    ["adcs", "Rx, Rm", "T16", "0100000101|Rm:3|Rx:3", "Op=Adc APSR.NZCV=W"],
]


def main():
    import argparse
    from pathlib import Path

    from .config import load_config, load_fixture, builtin_path
    from .database import InstructionDatabase

    parser = argparse.ArgumentParser(
        description='Compile an instruction table and report its diagnostics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Compile the builtin x86 table
  python3 -m isadb.parser --target x86

  # Compile a YAML table and show every record
  python3 -m isadb.parser my_table.yaml -v

  # Run built-in test
  python3 -m isadb.parser --test
        '''
    )

    parser.add_argument('file', nargs='?', help='YAML dictionary/fixture file to compile')
    parser.add_argument('-t', '--target', default='x86', help='Builtin table to use when no file is given')
    parser.add_argument('-v', '--verbose', action='store_true',
                       help='Show every parsed record')
    parser.add_argument('--strict', action='store_true',
                       help='Exit with status 1 if any diagnostic was reported')
    parser.add_argument('--test', action='store_true',
                       help='Run built-in test instead of compiling a table')

    args = parser.parse_args()

    # Built-in test mode
    if args.test:
        try:
            db = InstructionDatabase(load_config(target="arm"))
            db.add_instructions(SMOKE_TEST_FIXTURES)
            print("✓ Built-in test passed!")
            print(f"Found {db.stats.insts} records in {db.stats.groups} groups")
        except SyntaxError as e:
            print(f"✗ Test failed: {e}")
            return 1
        return 0

    path = Path(args.file) if args.file else builtin_path(args.target)
    try:
        config = load_config(path)
        fixtures = load_fixture(path)
    except FileNotFoundError:
        print(f"Error: File '{path}' not found")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    try:
        db = InstructionDatabase(config, echo=not args.verbose)
        db.add_instructions(fixtures)
    except SyntaxError as e:
        print(f"✗ Parse error: {e}")
        return 1

    print(f"✓ Compiled {path} successfully!")

    if args.verbose:
        for record in db.records():
            print()
            print("\n".join(record.describe()))
        print()

    stats = db.stats
    print(f"  - {stats.insts} records")
    print(f"  - {stats.groups} instruction groups")
    for prefix, count in sorted(stats.prefixes.items()):
        print(f"  - {count} {prefix or 'legacy'} records")
    print(f"  - {stats.invalid} diagnostics")

    if not args.verbose:
        print("\nUse -v for detailed output")

    if args.strict and stats.invalid:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
