#!/usr/bin/env python3
"""
Dictionary configuration for the instruction table compiler.

This module loads and validates the YAML documents that describe an
instruction set's dictionaries: architectures, CPU extensions, typed
attributes, special/flag registers, metadata shortcuts and (for the x86
dialect) the register table. The same document may also carry the
instruction fixture list itself under the `instructions` key.

The loaded `IsaConfig` is a plain value that every parsing entry point takes
explicitly, so records can be parsed independently of each other.
"""

import yaml
import jsonschema
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field

from .encodings import RegisterInfo, build_register_map


# JSON Schema for validating dictionary/fixture YAML files
ISA_CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Instruction Set Dictionaries",
    "description": "Dictionaries consulted while compiling an instruction table",
    "type": "object",
    "required": ["dialect"],
    "properties": {
        "dialect": {
            "type": "string",
            "enum": ["x86", "arm"],
            "description": "Front end used for the instruction fixtures"
        },
        "architectures": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Metadata keys that select the architecture tag"
        },
        "cpu_levels": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {"name": {"type": "string"}},
                "additionalProperties": False
            }
        },
        "extensions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "from": {"type": "string", "description": "Extension this one builds on"}
                },
                "additionalProperties": False
            }
        },
        "attributes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "type"],
                "properties": {
                    "name": {"type": "string"},
                    "type": {"type": "string", "enum": ["flag", "string", "string[]"]},
                    "doc": {"type": "string"}
                },
                "additionalProperties": False
            }
        },
        "special_regs": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "group": {"type": "string"},
                    "doc": {"type": "string"}
                },
                "additionalProperties": False
            }
        },
        "shortcuts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "expand"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "expand": {"type": "string", "minLength": 1},
                    "doc": {"type": "string"}
                },
                "additionalProperties": False
            }
        },
        "registers": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["names"],
                "properties": {
                    "kind": {"type": "string"},
                    "any": {"type": "string"},
                    "names": {"type": "array", "items": {"type": "string"}}
                },
                "additionalProperties": False
            }
        },
        "instructions": {
            "type": "array",
            "items": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 5,
                "maxItems": 5
            },
            "description": "[name, operands, encoding, opcode, metadata] tuples"
        }
    },
    "additionalProperties": False
}


class AttributeKind(Enum):
    """How the value assigned to a typed attribute is coerced"""
    FLAG = "flag"
    STRING = "string"
    STRING_LIST = "string[]"


@dataclass(frozen=True)
class Extension:
    name: str
    base: str = ""


@dataclass(frozen=True)
class Attribute:
    name: str
    kind: AttributeKind
    doc: str = ""


@dataclass(frozen=True)
class SpecialReg:
    name: str
    group: str
    doc: str = ""


@dataclass(frozen=True)
class Shortcut:
    name: str
    expand: str
    doc: str = ""


@dataclass
class IsaConfig:
    """Complete set of dictionaries for one instruction set."""
    dialect: str = "x86"
    architectures: Tuple[str, ...] = ()
    cpu_levels: Tuple[str, ...] = ()
    extensions: Dict[str, Extension] = field(default_factory=dict)
    attributes: Dict[str, Attribute] = field(default_factory=dict)
    special_regs: Dict[str, SpecialReg] = field(default_factory=dict)
    shortcuts: Dict[str, Shortcut] = field(default_factory=dict)
    registers: Dict[str, RegisterInfo] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> 'IsaConfig':
        """Create IsaConfig from a dictionary (loaded from YAML).

        Raises:
            ValueError: If the dictionary doesn't match the schema
        """
        try:
            jsonschema.validate(instance=data, schema=ISA_CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ValueError(f"Invalid config file {source}: {e.message}") from e

        config = cls(dialect=data['dialect'])

        config.architectures = tuple(data.get('architectures', ()))
        config.cpu_levels = tuple(item['name'] for item in data.get('cpu_levels', ()))

        for item in data.get('extensions', ()):
            config.extensions[item['name']] = Extension(item['name'], item.get('from', ""))

        for item in data.get('attributes', ()):
            config.attributes[item['name']] = Attribute(
                item['name'], AttributeKind(item['type']), item.get('doc', ""))

        for item in data.get('special_regs', ()):
            config.special_regs[item['name']] = SpecialReg(
                item['name'], item.get('group', item['name']), item.get('doc', ""))

        for item in data.get('shortcuts', ()):
            config.shortcuts[item['name']] = Shortcut(
                item['name'], item['expand'], item.get('doc', ""))

        if 'registers' in data:
            config.registers = build_register_map(data['registers'])

        return config

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> 'IsaConfig':
        """Load and validate dictionaries from a YAML file.

        Raises:
            ValueError: If the file doesn't match the schema
            yaml.YAMLError: If YAML is malformed
            FileNotFoundError: If file doesn't exist
        """
        return cls.from_dict(_read_yaml(yaml_path), str(yaml_path))

    def is_extension(self, name: str) -> bool:
        return name in self.extensions

    def is_architecture(self, name: str) -> bool:
        return name in self.architectures


def _read_yaml(yaml_path: Path) -> Dict[str, Any]:
    with open(yaml_path, 'r') as f:
        return yaml.safe_load(f)


def builtin_path(target: str) -> Path:
    """Path of the builtin dictionary/fixture document for a target"""
    return Path(__file__).parent / "data" / f"{target}.yaml"


def load_config(config_path: Optional[Path] = None, target: Optional[str] = None) -> IsaConfig:
    """
    Load dictionaries from file or use a builtin table.

    Args:
        config_path: Path to YAML dictionary file
        target: Shortcut name for builtin tables ('x86', 'arm')

    Returns:
        IsaConfig object

    Priority:
        1. config_path if provided (FileNotFoundError if it doesn't exist)
        2. builtin table matching target name
        3. builtin x86 table
    """
    if config_path:
        return IsaConfig.from_yaml(Path(config_path))

    if target:
        path = builtin_path(target)
        if path.exists():
            return IsaConfig.from_yaml(path)

    return IsaConfig.from_yaml(builtin_path("x86"))


def load_fixture(yaml_path: Path) -> List[Tuple[str, str, str, str, str]]:
    """Load the instruction tuples stored in a dictionary/fixture YAML file."""
    data = _read_yaml(yaml_path)
    try:
        jsonschema.validate(instance=data, schema=ISA_CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ValueError(f"Invalid config file {yaml_path}: {e.message}") from e

    return [tuple(item) for item in data.get('instructions', ())]
