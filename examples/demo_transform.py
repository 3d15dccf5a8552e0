"""
Demo of expanding a logical program into entry/return probes.

This demonstrates the typical planner workflow: the user describes what to
capture, the transformer works out where to attach and how to carry state
from entry to return.
"""

import dyntrace
from dyntrace.logical import (
    Program, Probe, Tracepoint, Argument, ReturnValue, FunctionLatency
)
from dyntrace.serialization import program_to_json

print("=" * 70)
print("dyntrace Transformer Demo")
print("=" * 70)
print()

# Step 1: User describes what to trace
print("1. User asks for dial arguments, error and latency:")
print("-" * 70)

program = Program(probes=[
    Probe(
        "dial",
        Tracepoint("net.(*Dialer).DialContext"),
        args=[Argument("network", "arg1"), Argument("address", "arg2")],
        ret_vals=[ReturnValue("err", "$1")],
        function_latency=FunctionLatency("latency"),
    ),
    Probe(
        "open",
        Tracepoint("os.OpenFile"),
        args=[Argument("path", "arg0")],
    ),
])

for probe in program:
    print(f"  - {probe}")
print()

# Step 2: Transform
print("2. Expanded program:")
print("-" * 70)

try:
    expanded = dyntrace.transform_logical_program(program)
except dyntrace.InvalidSpecError as e:
    print(f"✗ Invalid program: {e}")
    exit(1)

for probe in expanded:
    print(f"  - {probe}")
    for stash in probe.map_stash_actions:
        print(f"      stash {stash.map_name}[{stash.key.value}] <- {stash.value_variable_names}")
    for map_val in probe.map_vals:
        print(f"      consume {map_val.map_name}[{map_val.key.value}] -> {map_val.value_ids}")
    for action in probe.output_actions:
        print(f"      output {action}")
print()

print(f"Implicit maps:    {[m.name for m in expanded.maps]}")
print(f"Implicit outputs: {[o.name for o in expanded.outputs]}")
print()

# Step 3: Ship it
print("3. JSON for the agent:")
print("-" * 70)
print(program_to_json(expanded)[:500] + "...")
