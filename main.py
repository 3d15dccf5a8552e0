#!/usr/bin/env python3
"""
dyntrace CLI - Expand logical programs and generate probe source.
"""

import sys
import argparse

import dyntrace
from dyntrace import logger
from dyntrace.config import DynTraceConfig
from dyntrace.serialization import program_to_json


def print_program(program: dyntrace.Program, verbose: bool = False):
    """Pretty-print a logical program"""
    print(f"Found {len(program.probes)} probe(s)\n")

    for i, probe in enumerate(program.probes, 1):
        print(f"Probe #{i}: {probe}")

        if probe.args:
            print(f"  Args: {', '.join(arg.id for arg in probe.args)}")
        if probe.ret_vals:
            print(f"  Return values: {', '.join(ret.id for ret in probe.ret_vals)}")
        if probe.function_latency:
            print(f"  Latency: {probe.function_latency.id}")

        if verbose:
            for map_val in probe.map_vals:
                verb = "consume" if map_val.consume else "read"
                print(f"    - {verb} {map_val.map_name}[{map_val.key.value}] -> {map_val.value_ids}")
            for action in probe.map_stash_actions:
                print(f"    - stash {action.map_name}[{action.key.value}] <- {action.value_variable_names}")
            for action in probe.output_actions:
                print(f"    - output {action}")

        print()


def _config(args) -> DynTraceConfig:
    return DynTraceConfig(indent_size=getattr(args, "indent", 2), log_transform=args.verbose)


def cmd_transform(args):
    """Expand a logical program and print it as JSON"""
    try:
        program = dyntrace.load_program_file(args.file)
        expanded = dyntrace.transform_logical_program(program, _config(args))
        print(program_to_json(expanded))
        return 0
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except dyntrace.DynTraceError as e:
        print(f"Transform error: {e}", file=sys.stderr)
        return 1


def cmd_codegen(args):
    """Generate source for a physical program"""
    try:
        program = dyntrace.load_physical_program_file(args.file)
        sys.stdout.write(dyntrace.generate_source(program, _config(args)))
        return 0
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except dyntrace.DynTraceError as e:
        print(f"Codegen error: {e}", file=sys.stderr)
        return 1


def cmd_validate(args):
    """Check that a logical program can be expanded"""
    try:
        program = dyntrace.load_program_file(args.file)
        expanded = dyntrace.transform_logical_program(program, _config(args))
        print(f"✓ Valid program ({len(program)} probes, {len(expanded)} after expansion)")
        if args.verbose:
            print()
            print_program(expanded, verbose=True)
        return 0
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except dyntrace.DynTraceError as e:
        print(f"✗ Invalid program:\n{e}", file=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="dyntrace - dynamic tracing compiler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dyntrace transform probes.json        Expand logical probes, print JSON
  dyntrace codegen physical.json        Print BCC source for a physical program
  dyntrace validate probes.json         Check a logical program
        """
    )
    parser.add_argument('--log-level', type=str, default=None,
                        help='Log level (DEBUG, INFO, WARNING, ERROR)')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Transform command
    transform_parser = subparsers.add_parser('transform', help='Expand a logical program')
    transform_parser.add_argument('file', type=str, help='Logical program JSON file')
    transform_parser.add_argument('-v', '--verbose', action='store_true',
                                  help='Log each emitted probe')
    transform_parser.set_defaults(func=cmd_transform)

    # Codegen command
    codegen_parser = subparsers.add_parser('codegen', help='Generate probe source')
    codegen_parser.add_argument('file', type=str, help='Physical program JSON file')
    codegen_parser.add_argument('--indent', type=int, default=2,
                                help='Struct field indentation (default: 2)')
    codegen_parser.add_argument('-v', '--verbose', action='store_true',
                                help='Show detailed output')
    codegen_parser.set_defaults(func=cmd_codegen)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a logical program')
    validate_parser.add_argument('file', type=str, help='Logical program JSON file')
    validate_parser.add_argument('-v', '--verbose', action='store_true',
                                 help='Show the expanded probes')
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logger.set_log_level(args.log_level)

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
