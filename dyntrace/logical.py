"""
Logical probe IR.

These classes describe what the user wants traced: tracepoints, the values to
capture there, and where to send them. The transformer expands them into
entry/return probes with explicit maps and outputs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dyntrace.physical import BPFHelper


class TracepointType(Enum):
    """Where a probe attaches"""
    LOGICAL = "logical"  # entry and/or return, decided by the transformer
    ENTRY = "entry"
    RETURN = "return"


@dataclass
class Tracepoint:
    """Probe target (function symbol plus attach point)"""
    symbol: str
    type: TracepointType = TracepointType.LOGICAL

    def __str__(self):
        return f"{self.symbol}:{self.type.value}"


# ===== Captured Values =====

@dataclass
class Argument:
    """Function argument captured at entry (arg0, arg1.field, ...)"""
    id: str
    expr: str


@dataclass
class ReturnValue:
    """Value captured at return ($0, $1, ...)"""
    id: str
    expr: str


@dataclass
class FunctionLatency:
    """Elapsed time between entry and return"""
    id: str


@dataclass
class BuiltinVariable:
    """Runtime built-in bound to a name"""
    id: str
    builtin: BPFHelper


@dataclass
class MapValue:
    """
    Values read back from a map.

    When `consume` is set the entry is removed as part of the same read, so
    a duplicate return event cannot read it twice.
    """
    map_name: str
    key: BPFHelper
    value_ids: list[str] = field(default_factory=list)
    consume: bool = False


# ===== Actions =====

@dataclass
class MapStashAction:
    """Store values into a map under a built-in key"""
    map_name: str
    key: BPFHelper
    value_variable_names: list[str] = field(default_factory=list)


@dataclass
class OutputAction:
    """
    Emit variables into an output channel.

    An empty `output_name` means the transformer picks an implicit channel.
    """
    variable_names: list[str] = field(default_factory=list)
    output_name: str = ""

    def __str__(self):
        return f"{self.output_name or '<implicit>'}({', '.join(self.variable_names)})"


# ===== Declarations =====

@dataclass
class Map:
    """A key-value map shared between probes"""
    name: str


@dataclass
class Output:
    """A named output channel and its columns"""
    name: str
    fields: list[str] = field(default_factory=list)


# ===== Probe =====

@dataclass
class Probe:
    """A single logical probe definition"""
    name: str
    tracepoint: Tracepoint
    args: list[Argument] = field(default_factory=list)
    ret_vals: list[ReturnValue] = field(default_factory=list)
    function_latency: Optional[FunctionLatency] = None
    builtins: list[BuiltinVariable] = field(default_factory=list)
    map_vals: list[MapValue] = field(default_factory=list)
    map_stash_actions: list[MapStashAction] = field(default_factory=list)
    output_actions: list[OutputAction] = field(default_factory=list)

    def needs_entry(self) -> bool:
        """True if any value must be captured when the function is entered"""
        return bool(self.args) or self.function_latency is not None

    def needs_return(self) -> bool:
        """True if any value must be captured when the function returns"""
        return bool(self.ret_vals) or self.function_latency is not None

    def defined_ids(self) -> list[str]:
        """Names of every value this probe makes available, in order"""
        ids = [arg.id for arg in self.args]
        ids.extend(ret_val.id for ret_val in self.ret_vals)
        ids.extend(var.id for var in self.builtins)
        for map_val in self.map_vals:
            ids.extend(map_val.value_ids)
        if self.function_latency is not None:
            ids.append(self.function_latency.id)
        return ids

    def __str__(self):
        return f"{self.name} @ {self.tracepoint}"


# ===== Program =====

@dataclass
class Program:
    """A complete logical program (maps, outputs and probes)"""
    maps: list[Map] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    probes: list[Probe] = field(default_factory=list)

    def find_output(self, name: str) -> Optional[Output]:
        for output in self.outputs:
            if output.name == name:
                return output
        return None

    def __len__(self):
        return len(self.probes)

    def __iter__(self):
        return iter(self.probes)

    def __getitem__(self, index):
        return self.probes[index]
