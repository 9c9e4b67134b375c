#!/usr/bin/env python3
"""
Operand grammar.

An operand token such as "X:r32/m32", "<ds:zsi>", "zmm/m512/b64" or
"[Rn!=PC, #ImmZ]{!}" is turned into an `Operand`: the decorations shared by
every dialect (access prefix, broadcast suffix, implicit and optional
wrappers) are peeled off here, and each "/"-separated alternative is handed
to a dialect grammar that classifies it as one of the four operand forms.

Forms:
    RegisterForm   - register (or register field), optionally restricted
    MemoryForm     - memory reference, optionally segment/VSIB/write-back
    ImmediateForm  - immediate, optionally a fixed literal value
    RelativeForm   - relative displacement (branch target)
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

from .config import IsaConfig
from .encodings import FIELD_INFO, immediate_size, relative_size
from .tokenizer import split_top_level

# ============================================================================
# Operand forms
# ============================================================================

class Access(Enum):
    READ = "R"
    WRITE = "W"
    READ_WRITE = "X"


@dataclass(frozen=True)
class RegisterForm:
    name: str
    kind: str                   # Register type (r32, xmm, ...) or field letter (r, d, s, v)
    index: Optional[int] = None # Specific register, None if any register of the kind
    restrict: str = ""          # Identity constraint, e.g. "!=PC"
    segment: str = ""           # Segment used when the register addresses memory
    is_list: bool = False
    sign: bool = False          # Separate "+/-" sign (ARM index register)


@dataclass(frozen=True)
class MemoryForm:
    name: str
    size: int = 0               # Access size in bits, 0 if unspecified
    offset: bool = False        # Absolute offset (moffNN)
    segment: str = ""
    vsib_reg: str = ""          # Vector index register type (xmm/ymm/zmm)
    vsib_size: int = 0          # Vector index element size
    writeback: bool = False     # Base register write-back ("!" or "{!}")
    components: Tuple[str, ...] = ()
    sign: bool = False          # Offset component carries a "+/-" sign


@dataclass(frozen=True)
class ImmediateForm:
    name: str
    width: int = 0
    value: Optional[int] = None # Fixed literal (only "1" for shifts/rotates)
    restrict: str = ""
    sign: bool = False          # Separate "+/-" sign (ARM offsets)


@dataclass(frozen=True)
class RelativeForm:
    name: str
    width: int


OperandForm = Union[RegisterForm, MemoryForm, ImmediateForm, RelativeForm]


@dataclass(frozen=True)
class Operand:
    """One operand of an instruction variant.

    `forms` holds the mutually exclusive alternatives of the operand (for
    example a register or a memory reference) and is never empty.
    """
    text: str
    forms: Tuple[OperandForm, ...]
    access: Optional[Access] = None
    bit_range: Optional[Tuple[int, int]] = None  # (hi, lo) bits affected by the access
    implicit: bool = False
    optional: bool = False
    broadcast: int = 0
    shift_op: str = ""

    def __post_init__(self):
        if not self.forms:
            raise ValueError(f"Operand '{self.text}' has no register, memory, immediate or relative form")

    def _form(self, cls):
        return next((form for form in self.forms if isinstance(form, cls)), None)

    @property
    def reg(self) -> Optional[RegisterForm]:
        return self._form(RegisterForm)

    @property
    def mem(self) -> Optional[MemoryForm]:
        return self._form(MemoryForm)

    @property
    def imm(self) -> Optional[ImmediateForm]:
        return self._form(ImmediateForm)

    @property
    def rel(self) -> Optional[RelativeForm]:
        return self._form(RelativeForm)

    @property
    def name(self) -> str:
        return self.forms[0].name

    @property
    def read(self) -> bool:
        return self.access in (Access.READ, Access.READ_WRITE)

    @property
    def write(self) -> bool:
        return self.access in (Access.WRITE, Access.READ_WRITE)

    def is_reg(self) -> bool:
        return self.reg is not None

    def is_mem(self) -> bool:
        return self.mem is not None

    def is_imm(self) -> bool:
        return self.imm is not None

    def is_rel(self) -> bool:
        return self.rel is not None

    def is_reg_or_mem(self) -> bool:
        return self.is_reg() or self.is_mem()

    def is_reg_and_mem(self) -> bool:
        return self.is_reg() and self.is_mem()

    def with_immediate_width(self, width: int) -> 'Operand':
        """Copy of this operand with every immediate form set to `width` bits"""
        forms = tuple(replace(form, width=width) if isinstance(form, ImmediateForm) else form
                      for form in self.forms)
        return replace(self, forms=forms)

    def to_reg_mem(self) -> str:
        """Short register/memory signature ("r32/m", "m", "vm32x", ...)"""
        reg, mem = self.reg, self.mem
        if reg and mem:
            return f"{reg.name}/m"
        if mem and (mem.vsib_reg or re.search(r"(fp|int)$", mem.name)):
            return mem.name
        if mem:
            return "m"
        return self.text

    def __str__(self):
        return self.text

# ============================================================================
# Grammars
# ============================================================================

_ACCESS_PREFIX = re.compile(r"^(R|W|X)(?:\[(\d+):(\d+)\])?:")
_BROADCAST_SUFFIX = re.compile(r"/b(\d+)$")
_RESTRICT = re.compile(r"==|!=|>=|<=|\*")


def _access_of(read: bool, write: bool) -> Optional[Access]:
    if read and write:
        return Access.READ_WRITE
    if write:
        return Access.WRITE
    if read:
        return Access.READ
    return None


def decompose_restrict(s: str) -> Tuple[str, str]:
    """Split "Rn!=PC" into ("Rn", "!=PC"); the restriction is "" when absent"""
    m = _RESTRICT.search(s)
    if not m:
        return s, ""
    return s[:m.start()], s[m.start():]


class OperandGrammar:
    """Decoration handling shared by all dialects.

    Subclasses implement `classify()` for a single alternative and may
    override `strip_prefix()`, `split_alternatives()` and `default_access()`.
    """

    def __init__(self, config: IsaConfig):
        self.config = config

    def parse(self, token: str, report: Callable[[str], None],
              default_access: Optional[Access] = None) -> Optional[Operand]:
        """Parse one operand token, returns None if no alternative is recognized."""
        s = token.strip()

        access = None
        bit_range = None
        m = _ACCESS_PREFIX.match(s)
        if m:
            access = Access(m.group(1))
            if m.group(2) is not None:
                bit_range = (int(m.group(2)), int(m.group(3)))
            s = s[m.end():]

        broadcast = 0
        m = _BROADCAST_SUFFIX.search(s)
        if m:
            broadcast = int(m.group(1))
            s = s[:m.start()]

        implicit = False
        if s.startswith("<") and s.endswith(">"):
            implicit = True
            s = s[1:-1]

        optional = False
        if s.startswith("{") and s.endswith("}"):
            optional = True
            s = s[1:-1]

        s, shift_op = self.strip_prefix(s)

        forms: List[OperandForm] = []
        for alt in self.split_alternatives(s):
            form = self.classify(alt, report)
            if form is None:
                report(f"Unhandled operand '{alt}' in '{token}'")
                continue

            # A literal immediate is never encoded, it only selects the variant
            if isinstance(form, ImmediateForm) and form.value is not None:
                implicit = True
            forms.append(form)

        if not forms:
            return None

        if implicit and any(isinstance(form, MemoryForm) or
                            (isinstance(form, ImmediateForm) and form.value is None)
                            for form in forms):
            report(f"Implicit operand '{token}' must not be a memory or immediate operand")

        if access is None and any(isinstance(form, (RegisterForm, MemoryForm)) for form in forms):
            access = self.default_access(forms, default_access)

        return Operand(s, tuple(forms), access, bit_range, implicit, optional, broadcast, shift_op)

    def strip_prefix(self, s: str) -> Tuple[str, str]:
        return s, ""

    def split_alternatives(self, s: str) -> List[str]:
        return split_top_level(s, "/")

    def default_access(self, forms: List[OperandForm], fallback: Optional[Access]) -> Optional[Access]:
        return fallback

    def classify(self, alt: str, report: Callable[[str], None]) -> Optional[OperandForm]:
        raise NotImplementedError


_X86_SEGMENT = re.compile(r"^(ds|es):")
_X86_MEMORY = re.compile(r"^(?:mem|mib|(?:m(?:off)?\d+(?:dec|bcd|fp|int)?)|(?:vm\d+(?:x|y|z)))$")
_X86_MEMORY_SIZE = re.compile(r"^m(?:off)?(\d+)")
_X86_VSIB = re.compile(r"^vm(\d+)(x|y|z)$")
_X86_IMMEDIATES = ("1", "i4", "ib", "iw", "id", "iq")


class X86OperandGrammar(OperandGrammar):
    """Component dialect: registers come from the configured register table."""

    def classify(self, alt, report):
        segment = ""
        m = _X86_SEGMENT.match(alt)
        if m:
            segment = m.group(1)
            alt = alt[m.end():]

        reg = self.config.registers.get(alt)
        if reg:
            return RegisterForm(alt, reg.type, reg.index, segment=segment)

        if _X86_MEMORY.match(alt):
            m = _X86_MEMORY_SIZE.match(alt)
            vsib = _X86_VSIB.match(alt)
            return MemoryForm(
                alt,
                size=int(m.group(1)) if m else 0,
                offset=alt.startswith("moff"),
                segment=segment,
                vsib_reg=vsib.group(2) + "mm" if vsib else "",
                vsib_size=int(vsib.group(1)) if vsib else 0,
            )

        if alt in _X86_IMMEDIATES:
            return ImmediateForm(alt, immediate_size(alt), 1 if alt == "1" else None)

        width = relative_size(alt)
        if width > 0:
            return RelativeForm(alt, width)

        return None


_ARM_SHIFT_OP = re.compile(r"^(SOP|LSL|LSR|ASR|ROR|RRX) ")
_ARM_SIGN = "+/-"


def _strip_sign(name: str) -> Tuple[str, bool]:
    if name.startswith(_ARM_SIGN):
        return name[len(_ARM_SIGN):], True
    return name, False


class ArmOperandGrammar(OperandGrammar):
    """Bit-template dialect: register operands name opcode fields."""

    def strip_prefix(self, s):
        m = _ARM_SHIFT_OP.match(s)
        if m:
            return s[m.end():], m.group(1)
        return s, ""

    def split_alternatives(self, s):
        # "/" only appears in "+/-" signs, an operand is never an alternation
        return [s]

    def default_access(self, forms, fallback):
        for form in forms:
            if isinstance(form, RegisterForm):
                info = FIELD_INFO[form.name]
                return _access_of(info.read, info.write)
        return fallback

    def classify(self, alt, report):
        if alt.startswith("["):
            mem = alt
            writeback = False
            if mem.endswith("{!}"):
                mem = mem[:-3]
                writeback = True
            elif mem.endswith("!"):
                mem = mem[:-1]
                writeback = True

            if not mem.endswith("]"):
                report(f"Unknown memory operand '{alt}'")
                return None

            inner = mem[1:-1].strip()
            components = tuple(split_top_level(inner))
            sign = any(c.lstrip("#").startswith(_ARM_SIGN) for c in components)
            return MemoryForm(inner, writeback=writeback, components=components, sign=sign)

        name, restrict = decompose_restrict(alt)

        if name.startswith("#"):
            name, sign = _strip_sign(name[1:])
            return ImmediateForm(name, restrict=restrict, sign=sign)

        name, sign = _strip_sign(name)

        info = FIELD_INFO.get(name)
        if info is None:
            return None

        return RegisterForm(name, name[0].lower(), restrict=restrict, is_list=info.is_list, sign=sign)
