#!/usr/bin/env python3
"""
CLI entry point for isadb package.

Allows running the tools via: python -m isadb <command>
"""

import sys
import argparse
from pathlib import Path


def _add_table_arguments(parser):
    parser.add_argument(
        "-c", "--config",
        help="YAML dictionary/fixture file (default: builtin table)"
    )
    parser.add_argument(
        "-t", "--target",
        default="x86",
        help="Builtin table to use when no file is given (default: x86)"
    )


def _load_database(args):
    from .config import load_config, load_fixture, builtin_path
    from .database import InstructionDatabase

    path = Path(args.config) if args.config else builtin_path(args.target)
    db = InstructionDatabase(load_config(path))
    db.add_instructions(load_fixture(path))
    return db


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="isadb",
        description="isadb - instruction table compiler for x86 and ARM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compile the builtin x86 table and report diagnostics
  python -m isadb parse

  # Compile a YAML table and show every record
  python -m isadb parse my_table.yaml -v

  # Show all variants of an instruction
  python -m isadb query vaddpd

  # List the builtin ARM table
  python -m isadb list --target arm
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Parse command
    parse_parser = subparsers.add_parser(
        "parse",
        help="Compile an instruction table and report diagnostics"
    )
    parse_parser.add_argument("input_file", nargs="?", help="YAML table to compile (default: builtin)")
    parse_parser.add_argument(
        "-t", "--target",
        default="x86",
        help="Builtin table to use when no file is given (default: x86)"
    )
    parse_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show every parsed record"
    )
    parse_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 if any diagnostic was reported"
    )

    # Query command
    query_parser = subparsers.add_parser(
        "query",
        help="Show all variants of one or more instructions"
    )
    query_parser.add_argument("names", nargs="+", help="Instruction name(s)")
    _add_table_arguments(query_parser)

    # List command
    list_parser = subparsers.add_parser(
        "list",
        help="List every record in sorted name order"
    )
    _add_table_arguments(list_parser)

    # VEX/EVEX consistency check
    check_parser = subparsers.add_parser(
        "check",
        help="Report VEX/EVEX variants that differ only in L/W fields"
    )
    _add_table_arguments(check_parser)

    # Test command
    test_parser = subparsers.add_parser(
        "test",
        help="Run built-in tests"
    )

    # Version command
    version_parser = subparsers.add_parser(
        "version",
        help="Show version information"
    )

    args = parser.parse_args()

    # Handle no command
    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to appropriate handler
    if args.command == "parse":
        from .parser import main as parser_main
        sys.argv = ["isadb", "--target", args.target]
        if args.input_file:
            sys.argv.append(args.input_file)
        if args.verbose:
            sys.argv.append("-v")
        if args.strict:
            sys.argv.append("--strict")
        return parser_main()

    elif args.command in ("query", "list", "check"):
        try:
            db = _load_database(args)
        except (SyntaxError, ValueError, FileNotFoundError) as e:
            print(f"✗ Error: {e}")
            return 1

        if args.command == "query":
            records = db.query(args.names)
            if not records:
                print(f"✗ No instruction named {' '.join(args.names)}")
                return 1
            for record in records:
                print("\n".join(record.describe()))
            return 0

        if args.command == "list":
            db.print_table()
            print(f"\n{db.stats.insts} records, {db.stats.groups} groups, {db.stats.invalid} diagnostics")
            return 0

        mismatches = db.check_vex_evex()
        for name, vex, evex in mismatches:
            print(f"Instruction {name} differs:")
            print(f"  {vex.operand_signature()}: {vex.opcode_string}")
            print(f"  {evex.operand_signature()}: {evex.opcode_string}")
        print(f"✓ Checked {db.stats.groups} groups, {len(mismatches)} VEX/EVEX differences")
        return 0

    elif args.command == "test":
        from .config import load_config
        from .database import InstructionDatabase
        from .parser import SMOKE_TEST_FIXTURES
        try:
            db = InstructionDatabase(load_config(target="arm"))
            db.add_instructions(SMOKE_TEST_FIXTURES)
            print(f"✓ Built-in test passed! Found {db.stats.insts} records in {db.stats.groups} groups")
            return 0
        except Exception as e:
            print(f"✗ Test failed: {e}")
            return 1

    elif args.command == "version":
        from . import __version__
        print(f"isadb version {__version__}")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
