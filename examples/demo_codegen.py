"""
Demo of generating BCC source from a physical program.
"""

import dyntrace
from dyntrace.physical import (
    ScalarType, Register, BPFHelper,
    RegisterSource, MemorySource, BuiltinSource,
    ScalarVariable, Field, Struct, StructVariable,
    MapStashAction, OutputAction, PhysicalProbe,
    PhysicalProgram, BPFMap, PerfBufferOutput
)

event = Struct("connect_event_t", [
    Field("fd", ScalarType.INT32),
    Field("addr", ScalarType.VOID_POINTER),
    Field("ret", ScalarType.INT64),
])

entry = PhysicalProbe(
    name="probe_entry_connect",
    vars=[
        ScalarVariable("key", ScalarType.UINT64, BuiltinSource(BPFHelper.TGID_PID)),
        ScalarVariable("fd", ScalarType.INT32, RegisterSource(Register.PARM1)),
    ],
    map_stash_actions=[MapStashAction("connect_argstash", "key", "fd")],
)

ret = PhysicalProbe(
    name="probe_ret_connect",
    structs=[event],
    vars=[
        ScalarVariable("fd", ScalarType.INT32, MemorySource("sp", 8)),
        ScalarVariable("addr", ScalarType.VOID_POINTER, MemorySource("sp", 16)),
        ScalarVariable("ret", ScalarType.INT64, RegisterSource(Register.RC)),
    ],
    st_vars=[StructVariable("ev", "connect_event_t", ["fd", "addr", "ret"])],
    output_actions=[OutputAction("connect_events", "ev")],
)

program = PhysicalProgram(
    maps=[BPFMap("connect_argstash", ScalarType.UINT64, ScalarType.INT32)],
    outputs=[PerfBufferOutput("connect_events")],
    probes=[entry, ret],
)

print("=" * 70)
print("dyntrace Code Generation Demo")
print("=" * 70)
print()

try:
    print(dyntrace.generate_source(program, dyntrace.VERBOSE_CONFIG))
except dyntrace.InvalidVariableError as e:
    print(f"✗ Codegen error: {e}")
    exit(1)

# A variable without a source is rejected rather than guessed.
broken = PhysicalProbe("broken", vars=[ScalarVariable("x", ScalarType.INT32)])
try:
    dyntrace.gen_physical_probe(broken)
except dyntrace.InvalidVariableError as e:
    print(f"✗ Expected error: {e}")
