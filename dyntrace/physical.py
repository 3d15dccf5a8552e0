"""
Physical probe IR.

A physical probe is one concrete attach point whose variables and actions are
fully resolved. These structures are consumed by the code generator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class ScalarType(Enum):
    """Value types a variable or struct field may hold"""
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    DOUBLE = "double"
    VOID_POINTER = "void_pointer"
    STRING = "string"


@dataclass(frozen=True)
class StructRef:
    """Reference to a named struct type"""
    name: str

    def __str__(self):
        return f"struct {self.name}"


# A field or variable type is either a scalar or a named struct.
ValueType = Union[ScalarType, StructRef]


class Register(Enum):
    """CPU registers readable from the trap frame"""
    SP = "sp"
    IP = "ip"
    RC = "rc"
    PARM1 = "parm1"
    PARM2 = "parm2"
    PARM3 = "parm3"
    PARM4 = "parm4"
    PARM5 = "parm5"
    PARM6 = "parm6"


class BPFHelper(Enum):
    """Built-in runtime values"""
    TID = "tid"            # lower 32 bits of pid_tgid
    TGID = "tgid"          # upper 32 bits of pid_tgid
    TGID_PID = "tgid_pid"  # full combined id
    GOID = "goid"
    KTIME = "ktime"


# ===== Variable Sources =====

@dataclass(frozen=True)
class RegisterSource:
    """Value read from a CPU register"""
    register: Register


@dataclass(frozen=True)
class MemorySource:
    """Value read from `base + offset`"""
    base: str
    offset: int = 0


@dataclass(frozen=True)
class BuiltinSource:
    """Value produced by a runtime helper"""
    builtin: BPFHelper


VariableSource = Union[RegisterSource, MemorySource, BuiltinSource]


# ===== Variables =====

@dataclass
class ScalarVariable:
    """A named value with exactly one source"""
    name: str
    val_type: ValueType
    source: Optional[VariableSource] = None


@dataclass
class Field:
    """A struct member"""
    name: str
    type: ValueType


@dataclass
class Struct:
    """A struct type definition"""
    name: str
    fields: list[Field] = field(default_factory=list)

    def __len__(self):
        return len(self.fields)


@dataclass
class StructVariable:
    """
    An instance of a struct type.

    `variable_names` are assigned positionally into the struct's fields.
    """
    name: str
    struct_name: str
    variable_names: list[str] = field(default_factory=list)


# ===== Actions =====

@dataclass
class MapStashAction:
    """Store `key -> value` into a BPF map"""
    map_name: str
    key_variable_name: str
    value_variable_name: str


@dataclass
class OutputAction:
    """Submit a variable into a perf buffer"""
    perf_buffer_name: str
    variable_name: str


# ===== Probe =====

@dataclass
class PhysicalProbe:
    """
    A single attach-point unit.

    List order is significant: declarations precede uses and actions run in
    declaration order.
    """
    name: str
    structs: list[Struct] = field(default_factory=list)
    vars: list[ScalarVariable] = field(default_factory=list)
    st_vars: list[StructVariable] = field(default_factory=list)
    map_stash_actions: list[MapStashAction] = field(default_factory=list)
    output_actions: list[OutputAction] = field(default_factory=list)

    def variable_names(self) -> set[str]:
        """Names of all scalar and struct variables declared by this probe"""
        names = {var.name for var in self.vars}
        names.update(st_var.name for st_var in self.st_vars)
        return names


# ===== Program =====

@dataclass
class BPFMap:
    """A key-value map shared between probes"""
    name: str
    key_type: ValueType
    value_type: ValueType


@dataclass
class PerfBufferOutput:
    """A streaming output channel"""
    name: str


@dataclass
class PhysicalProgram:
    """A compilable unit: maps, outputs and probes"""
    maps: list[BPFMap] = field(default_factory=list)
    outputs: list[PerfBufferOutput] = field(default_factory=list)
    probes: list[PhysicalProbe] = field(default_factory=list)

    def __len__(self):
        return len(self.probes)

    def __iter__(self):
        return iter(self.probes)

    def __getitem__(self, index):
        return self.probes[index]
