"""
dyntrace - dynamic tracing compiler and symbol cache.

Usage:
    import dyntrace
    from dyntrace.logical import Program, Probe, Tracepoint, Argument, ReturnValue

    # Expand logical probes into entry/return probes
    program = Program(probes=[
        Probe("connect", Tracepoint("net.Dial"),
              args=[Argument("addr", "arg0")],
              ret_vals=[ReturnValue("err", "$0")]),
    ])
    expanded = dyntrace.transform_logical_program(program)

    # Render physical probes as BCC source
    lines = dyntrace.gen_physical_probe(physical_probe)
    source = dyntrace.generate_source(physical_program)

    # Symbolize stack addresses
    symbolizer = dyntrace.Symbolizer(resolver)
    symbolize = symbolizer.get_symbolizer_fn(dyntrace.KERNEL_UPID)
    print(symbolize(addr))
"""

import json
from pathlib import Path
from typing import Union

from dyntrace.transformer import transform_logical_program, ProbeTransformer
from dyntrace.code_gen import (
    gen_struct,
    gen_scalar_variable,
    gen_struct_variable,
    gen_map_stash_action,
    gen_output_action,
    gen_physical_probe,
    gen_program,
    generate_source,
)
from dyntrace.symbolizer import (
    Symbolizer,
    SymbolCache,
    LookupResult,
    UPID,
    KERNEL_UPID,
    UNRESOLVED_SYMBOL,
)
from dyntrace.config import DynTraceConfig, DEFAULT_CONFIG, NO_CACHE_CONFIG, VERBOSE_CONFIG
from dyntrace.errors import (
    DynTraceError,
    InvalidSpecError,
    InvalidVariableError,
    ProgramFormatError,
)
from dyntrace.logical import Program
from dyntrace.physical import PhysicalProgram
from dyntrace.serialization import deserialize_program, deserialize_physical_program

__version__ = "0.1.0"

__all__ = [
    # Transformer
    "transform_logical_program",
    "ProbeTransformer",
    # Code generation
    "gen_struct",
    "gen_scalar_variable",
    "gen_struct_variable",
    "gen_map_stash_action",
    "gen_output_action",
    "gen_physical_probe",
    "gen_program",
    "generate_source",
    # Symbol cache
    "Symbolizer",
    "SymbolCache",
    "LookupResult",
    "UPID",
    "KERNEL_UPID",
    "UNRESOLVED_SYMBOL",
    # Configuration
    "DynTraceConfig",
    "DEFAULT_CONFIG",
    "NO_CACHE_CONFIG",
    "VERBOSE_CONFIG",
    # Loading
    "load_program_file",
    "load_physical_program_file",
    # Errors
    "DynTraceError",
    "InvalidSpecError",
    "InvalidVariableError",
    "ProgramFormatError",
]


def _read_json(file_path: Union[str, Path]) -> dict:
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    with open(path, "r") as f:
        try:
            return json.load(f)
        except ValueError as e:
            raise ProgramFormatError(f"{file_path}: invalid JSON: {e}") from e


def load_program_file(file_path: Union[str, Path]) -> Program:
    """
    Load a logical program from a JSON file.

    Args:
        file_path: Path to a file written with serialization.program_to_json

    Returns:
        Logical Program

    Raises:
        ProgramFormatError: If the file is not a valid logical program
        FileNotFoundError: If the file doesn't exist

    Example:
        >>> program = dyntrace.load_program_file("probes.json")
        >>> expanded = dyntrace.transform_logical_program(program)
    """
    data = _read_json(file_path)
    try:
        return deserialize_program(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ProgramFormatError(f"{file_path}: not a logical program: {e}") from e


def load_physical_program_file(file_path: Union[str, Path]) -> PhysicalProgram:
    """
    Load a physical program from a JSON file.

    Raises:
        ProgramFormatError: If the file is not a valid physical program
        FileNotFoundError: If the file doesn't exist
    """
    data = _read_json(file_path)
    try:
        return deserialize_physical_program(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ProgramFormatError(f"{file_path}: not a physical program: {e}") from e
