"""
isadb - An instruction table compiler for x86 and ARM instruction sets.

This package provides tools for:
- Parsing compact instruction descriptions into structured records
- Resolving instruction metadata against extension/attribute dictionaries
- Validating operand, encoding and opcode consistency
- Querying the resulting name-keyed instruction database

Example instruction descriptions:
    # [name, operands, encoding, opcode, metadata]
    ["adc", "X:r32/m32, r32", "MR", "11 /r", "_XLock OF=W SF=W ZF=W AF=W PF=W CF=X"]
    ["adc/adcs", "Rd, Rn, #ImmA", "A32", "Cond|0010101|S|Rn|Rd|ImmA:12", "Op=Adc"]
"""

__version__ = "0.1.0"

from .config import (
    IsaConfig,
    AttributeKind,
    load_config,
    load_fixture,
)

from .tokenizer import (
    match_closing_char,
    split_top_level,
)

from .operands import (
    Access,
    Operand,
    RegisterForm,
    MemoryForm,
    ImmediateForm,
    RelativeForm,
)

from .opcodes import (
    BitField,
    BitTemplate,
    ComponentOpcode,
    PrefixClass,
    parse_bit_template,
    parse_component_opcode,
    classify_component,
)

from .metadata import (
    Assignment,
    AssignmentKind,
    Source,
)

from .parser import (
    Dialect,
    InstructionRecord,
    create_parser,
    parse_instruction,
    parse_fixture,
)

from .database import (
    InstructionDatabase,
    DatabaseStats,
)

__all__ = [
    # Configuration
    "IsaConfig",
    "AttributeKind",
    "load_config",
    "load_fixture",
    # Tokenizer
    "match_closing_char",
    "split_top_level",
    # Operands
    "Access",
    "Operand",
    "RegisterForm",
    "MemoryForm",
    "ImmediateForm",
    "RelativeForm",
    # Opcodes
    "BitField",
    "BitTemplate",
    "ComponentOpcode",
    "PrefixClass",
    "parse_bit_template",
    "parse_component_opcode",
    "classify_component",
    # Metadata
    "Assignment",
    "AssignmentKind",
    "Source",
    # Records and database
    "Dialect",
    "InstructionRecord",
    "create_parser",
    "parse_instruction",
    "parse_fixture",
    "InstructionDatabase",
    "DatabaseStats",
]
