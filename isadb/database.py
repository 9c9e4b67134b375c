#!/usr/bin/env python3
"""
Instruction database.

Records are grouped by instruction name. Groups keep insertion order, and
every iteration walks the groups in sorted name order, so a full listing of
the table is stable and diffable.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .config import IsaConfig
from .opcodes import ComponentOpcode
from .parser import InstructionRecord, create_parser

# Default of `count_attribute`: any value counts
_PRESENT = object()


@dataclass
class DatabaseStats:
    insts: int = 0                  # Number of records
    groups: int = 0                 # Number of distinct names
    invalid: int = 0                # Number of diagnostics over all records
    prefixes: Dict[str, int] = field(default_factory=dict)  # Records per prefix class


class InstructionDatabase:
    """Append-only, name-keyed collection of InstructionRecords"""

    def __init__(self, config: IsaConfig, echo: bool = False):
        self.config = config
        self.parser = create_parser(config, echo=echo)
        self.stats = DatabaseStats()
        self.aliases: Dict[str, str] = {}
        self._groups: Dict[str, List[InstructionRecord]] = {}
        self._names_sorted: Optional[Tuple[str, ...]] = None

    # ------------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------------

    def insert(self, record: InstructionRecord):
        group = self._groups.get(record.name)
        if group is None:
            group = self._groups[record.name] = []
            self._names_sorted = None
            self.stats.groups += 1

        group.append(record)
        self.stats.insts += 1
        self.stats.invalid += record.invalid

        prefix = record.prefix
        if prefix is not None:
            self.stats.prefixes[prefix] = self.stats.prefixes.get(prefix, 0) + 1

        if record.alias_of:
            self.aliases[record.name] = record.alias_of

    def add_instructions(self, fixtures: Iterable[Sequence[str]], jobs: int = 1):
        """Parse and insert every fixture tuple.

        With jobs > 1 the tuples are parsed by a thread pool, records are still
        inserted in input order. A SyntaxError in any tuple aborts the batch
        before anything is inserted.
        """
        fixtures = list(fixtures)

        if jobs > 1:
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                futures = [pool.submit(self._parse_fixture, i, fixture)
                           for i, fixture in enumerate(fixtures)]
                parsed = [future.result() for future in futures]
        else:
            parsed = [self._parse_fixture(i, fixture) for i, fixture in enumerate(fixtures)]

        for records in parsed:
            for record in records:
                self.insert(record)

    def _parse_fixture(self, index: int, fixture: Sequence[str]) -> List[InstructionRecord]:
        try:
            return self.parser.parse_fixture(fixture)
        except SyntaxError as e:
            raise SyntaxError(f"Instruction #{index} {list(fixture)!r}: {e}") from e

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    def names_sorted(self) -> Tuple[str, ...]:
        if self._names_sorted is None:
            self._names_sorted = tuple(sorted(self._groups))
        return self._names_sorted

    def query(self, name: Union[str, Sequence[str], None] = None,
              filter: Optional[Callable[[InstructionRecord], bool]] = None) -> List[InstructionRecord]:
        """Records of one name, of a list of names (concatenated), or all records"""
        if isinstance(name, str):
            result = list(self._groups.get(name, ()))
        elif name is not None:
            result = [record for n in name for record in self._groups.get(n, ())]
        else:
            result = list(self.records())

        if filter is not None:
            result = [record for record in result if filter(record)]
        return result

    def records(self) -> Iterator[InstructionRecord]:
        for name in self.names_sorted():
            yield from self._groups[name]

    def groups(self) -> Iterator[Tuple[str, List[InstructionRecord]]]:
        for name in self.names_sorted():
            yield name, self._groups[name]

    def for_each_group(self, callback: Callable[[str, List[InstructionRecord]], None]):
        for name, group in self.groups():
            callback(name, group)

    def for_each_record(self, callback: Callable[[InstructionRecord], None]):
        for record in self.records():
            callback(record)

    def union_extensions(self, name: str) -> List[str]:
        """Extensions required by any variant of `name`"""
        result = []
        for record in self._groups.get(name, ()):
            for ext in record.extensions:
                if ext not in result:
                    result.append(ext)
        return sorted(result)

    def count_attribute(self, name: str, attr: str, value=_PRESENT) -> int:
        """Number of variants of `name` having attribute `attr`, equal to `value`
        when one is given
        """
        group = self._groups.get(name, ())
        if value is _PRESENT:
            return sum(1 for record in group if attr in record.attributes)
        return sum(1 for record in group if record.attributes.get(attr, _PRESENT) == value)

    def check_vex_evex(self) -> List[Tuple[str, InstructionRecord, InstructionRecord]]:
        """VEX/EVEX variant pairs with the same operands and opcode byte but
        different L or W fields. Some of them are legitimate.
        """
        result = []
        for name, group in self.groups():
            for i, a in enumerate(group):
                for b in group[i + 1:]:
                    if a.operand_signature() != b.operand_signature():
                        continue

                    vex = a if a.prefix == "VEX" else b if b.prefix == "VEX" else None
                    evex = a if a.prefix == "EVEX" else b if b.prefix == "EVEX" else None
                    if vex is None or evex is None:
                        continue

                    vex_op, evex_op = vex.opcode, evex.opcode
                    if not isinstance(vex_op, ComponentOpcode) or vex_op.opcode != evex_op.opcode:
                        continue

                    if vex_op.width != evex_op.width or vex_op.vector_length != evex_op.vector_length:
                        result.append((name, vex, evex))
        return result

    def print_table(self, file=None):
        file = file or sys.stdout
        for record in self.records():
            flag = " !" if record.invalid else ""
            print(f"{str(record):<40} {record.encoding:<6} {record.opcode_string}{flag}", file=file)

    def __len__(self):
        return self.stats.insts

    def __contains__(self, name: str):
        return name in self._groups
