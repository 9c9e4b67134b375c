#!/usr/bin/env python3
"""
Metadata resolution.

The last field of an instruction tuple is a space separated list of
`key` or `key=value` tokens, for example:

    "AVX512F-VL kz broadcast=64 OF|SF|ZF=W APSR.NZCV=W Op=Add PRIVILEGE=L0"

Every token is expanded (shortcuts, then '|' alternation) into one or more
`Assignment`s, and every assignment is classified against the dictionaries of
the `IsaConfig` into a closed set of kinds. Keys matching nothing are kept as
`AssignmentKind.UNKNOWN` and reported.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple, Union

from .config import AttributeKind, IsaConfig

Report = Callable[[str], None]


class AssignmentKind(Enum):
    EXTENSION = "extension"
    ATTRIBUTE = "attribute"
    SPECIAL_REG = "special_reg"
    OPERATION = "operation"
    ARCHITECTURE = "architecture"
    SPECIFIC = "specific"           # Dialect specific key (FPU_POP, PRIVILEGE, kz, ...)
    UNSPECIFIED = "unspecified"     # Bare "?" token
    UNKNOWN = "unknown"


class Source(Enum):
    EXPLICIT = "explicit"
    SHORTCUT = "shortcut"


Value = Union[bool, str, Tuple[str, ...]]


@dataclass(frozen=True)
class Assignment:
    key: str
    value: Value = True
    source: Source = Source.EXPLICIT
    kind: AssignmentKind = AssignmentKind.UNKNOWN


@dataclass
class ResolvedMetadata:
    arch: str = ""
    extensions: Dict[str, bool] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    special_regs: Dict[str, Value] = field(default_factory=dict)
    operations: List[str] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)
    unspecified: bool = False


_SPECIAL_REG_VALUE = re.compile(r"^[RWXU01]$")


def expand_alternation(key: str) -> List[str]:
    """Expand "APSR.N|Z|C|V" into ["APSR.N", "APSR.Z", "APSR.C", "APSR.V"].

    The dotted base in front of the first '|' is shared by every alternative.
    """
    if "|" not in key:
        return [key]

    dot = key.rfind(".", 0, key.index("|"))
    base = key[:dot + 1]
    return [base + alt for alt in key[dot + 1:].split("|")]


class MetadataResolver:
    """Resolves metadata strings against one IsaConfig.

    Holds no per-record state, a single resolver can be shared by any number
    of concurrent parses.
    """

    def __init__(self, config: IsaConfig):
        self.config = config

    def resolve(self, s: str, report: Report) -> ResolvedMetadata:
        meta = ResolvedMetadata()

        for token in s.split():
            if token == "?":
                meta.unspecified = True
                meta.assignments.append(Assignment("?", True, Source.EXPLICIT, AssignmentKind.UNSPECIFIED))
                continue

            key, eq, raw = token.partition("=")
            value = raw if eq else True

            key, source = self.expand_shortcut(key)
            for k in expand_alternation(key):
                self.assign(meta, k, value, source, report)

        return meta

    def expand_shortcut(self, key: str) -> Tuple[str, Source]:
        """Substitute a shortcut for the whole key or for its last dotted part"""
        shortcut = self.config.shortcuts.get(key)
        if shortcut:
            return shortcut.expand, Source.SHORTCUT

        base, dot, last = key.rpartition(".")
        if dot:
            shortcut = self.config.shortcuts.get(last)
            if shortcut:
                return f"{base}.{shortcut.expand}", Source.SHORTCUT

        return key, Source.EXPLICIT

    def assign(self, meta: ResolvedMetadata, key: str, value: Value, source: Source, report: Report):
        kind = self.classify(meta, key, value, report)
        if kind is AssignmentKind.UNKNOWN:
            report(f"Unhandled flag {key}={value}")
        meta.assignments.append(Assignment(key, value, source, kind))

    def classify(self, meta: ResolvedMetadata, key: str, value: Value, report: Report) -> AssignmentKind:
        config = self.config

        if key == "Op":
            if not isinstance(value, str):
                report(f"Unhandled operation {key}={value}")
                return AssignmentKind.OPERATION
            meta.operations.extend(op.strip() for op in value.split("|") if op.strip())
            return AssignmentKind.OPERATION

        if config.is_architecture(key):
            meta.arch = key
            return AssignmentKind.ARCHITECTURE

        attribute = config.attributes.get(key)
        if attribute:
            meta.attributes[key] = self.coerce(attribute.kind, value)
            return AssignmentKind.ATTRIBUTE

        # A key can name both a special register and an extension
        kind = AssignmentKind.UNKNOWN
        if config.is_extension(key):
            meta.extensions[key] = True
            kind = AssignmentKind.EXTENSION

        special_reg = config.special_regs.get(key)
        if special_reg:
            if not isinstance(value, str) or not _SPECIAL_REG_VALUE.match(value):
                report(f"Special register must specify 'R|W|X|U|0|1', not {value}")
            meta.special_regs[special_reg.name] = value
            kind = AssignmentKind.SPECIAL_REG

        if kind is not AssignmentKind.UNKNOWN:
            return kind

        if self.assign_specific(meta, key, value, report):
            return AssignmentKind.SPECIFIC

        return AssignmentKind.UNKNOWN

    @staticmethod
    def coerce(kind: AttributeKind, value: Value) -> Value:
        if kind == AttributeKind.FLAG:
            return value is True or str(value).upper() == "TRUE"
        text = "TRUE" if value is True else str(value)
        if kind == AttributeKind.STRING_LIST:
            return tuple(text.split("|"))
        return text

    def assign_specific(self, meta: ResolvedMetadata, key: str, value: Value, report: Report) -> bool:
        """Hook for dialect specific keys, returns True if `key` was consumed"""
        return False


_AVX512_VL = re.compile(r"^(AVX512\w+)-VL$")
_PRIVILEGE = re.compile(r"^L[0123]$")


class X86MetadataResolver(MetadataResolver):

    def resolve(self, s, report):
        meta = super().resolve(s, report)
        # Instructions are executable at every privilege level unless stated
        meta.attributes.setdefault("PRIVILEGE", "L3")
        return meta

    def assign_specific(self, meta, key, value, report):
        attributes = meta.attributes

        # AVX-512 extension with "-VL" suffix is a combination of two extensions
        m = _AVX512_VL.match(key)
        if m and self.config.is_extension(m.group(1)):
            meta.extensions[m.group(1)] = True
            meta.extensions["AVX512VL"] = True
            return True

        if key == "FPU":
            attributes["FPU"] = True
            return True

        if key in ("kz", "k"):
            if key == "kz":
                attributes["kz"] = True
            attributes["k"] = True
            return True

        if key in ("er", "sae"):
            if key == "er":
                attributes["er"] = True
            attributes["sae"] = True
            return True

        if key == "PRIVILEGE":
            if not isinstance(value, str) or not _PRIVILEGE.match(value):
                report(f"Invalid privilege level '{value}'")
            attributes["PRIVILEGE"] = value
            return True

        if key == "broadcast":
            attributes["broadcast"] = value
            return True

        if key == "FPU_PUSH":
            attributes["FPU"] = True
            attributes["FPU_TOP"] = -1
            return True

        if key == "FPU_POP":
            attributes["FPU"] = True
            try:
                attributes["FPU_TOP"] = 1 if value is True else int(value)
            except ValueError:
                report(f"Invalid FPU_POP count '{value}'")
            return True

        if key == "FPU_TOP" and value in ("-1", "+1"):
            attributes["FPU"] = True
            attributes["FPU_TOP"] = int(value)
            return True

        return False
