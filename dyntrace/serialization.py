"""
JSON serialization/deserialization for dyntrace IR.

This module converts logical and physical programs to/from JSON for storage
and transmission between the planner and the tracing agent.
"""

import json
from typing import Any, Dict, Optional

from dyntrace import logical, physical
from dyntrace.physical import ScalarType, StructRef, ValueType

FORMAT_VERSION = "0.1.0"


def _check_version(data: Dict[str, Any], kind: str) -> None:
    version = data.get("version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported {kind} version: {version}")

    found = data.get("kind", kind)
    if found != kind:
        raise ValueError(f"Expected a {kind} program, got {found}")


# ===== Types =====

def serialize_type(value_type: ValueType) -> Dict[str, Any]:
    """
    Convert a value type to a JSON-serializable dict.

    Scalars become {"scalar": "int32"}, struct references {"struct": "name"}.
    """
    if isinstance(value_type, StructRef):
        return {"struct": value_type.name}
    if isinstance(value_type, ScalarType):
        return {"scalar": value_type.value}
    raise ValueError(f"Unknown value type: {value_type!r}")


def deserialize_type(data: Dict[str, Any]) -> ValueType:
    if "struct" in data:
        return StructRef(data["struct"])
    if "scalar" in data:
        return ScalarType(data["scalar"])
    raise ValueError(f"Unknown value type: {data}")


# ===== Physical IR =====

def serialize_source(source: Optional[physical.VariableSource]) -> Optional[Dict[str, Any]]:
    """
    Convert a variable source to a dict tagged by its kind.

    Args:
        source: RegisterSource, MemorySource, BuiltinSource or None

    Returns:
        Dict representation, or None for an unset source
    """
    if source is None:
        return None

    elif isinstance(source, physical.RegisterSource):
        return {"type": "register", "register": source.register.value}

    elif isinstance(source, physical.MemorySource):
        return {"type": "memory", "base": source.base, "offset": source.offset}

    elif isinstance(source, physical.BuiltinSource):
        return {"type": "builtin", "builtin": source.builtin.value}

    else:
        raise ValueError(f"Unknown variable source: {type(source)}")


def deserialize_source(data: Optional[Dict[str, Any]]) -> Optional[physical.VariableSource]:
    if data is None:
        return None

    source_type = data["type"]

    if source_type == "register":
        return physical.RegisterSource(physical.Register(data["register"]))

    elif source_type == "memory":
        return physical.MemorySource(data["base"], data.get("offset", 0))

    elif source_type == "builtin":
        return physical.BuiltinSource(physical.BPFHelper(data["builtin"]))

    else:
        raise ValueError(f"Unknown variable source type: {source_type}")


def serialize_struct(struct: physical.Struct) -> Dict[str, Any]:
    return {
        "name": struct.name,
        "fields": [
            {"name": f.name, "type": serialize_type(f.type)}
            for f in struct.fields
        ]
    }


def deserialize_struct(data: Dict[str, Any]) -> physical.Struct:
    return physical.Struct(
        data["name"],
        [physical.Field(f["name"], deserialize_type(f["type"])) for f in data["fields"]]
    )


def serialize_physical_probe(probe: physical.PhysicalProbe) -> Dict[str, Any]:
    """
    Convert a PhysicalProbe to a JSON-serializable dict.

    Args:
        probe: Physical probe

    Returns:
        Dict representation of the probe
    """
    return {
        "name": probe.name,
        "structs": [serialize_struct(st) for st in probe.structs],
        "vars": [
            {
                "name": var.name,
                "type": serialize_type(var.val_type),
                "source": serialize_source(var.source)
            }
            for var in probe.vars
        ],
        "st_vars": [
            {
                "name": st_var.name,
                "struct_name": st_var.struct_name,
                "variable_names": list(st_var.variable_names)
            }
            for st_var in probe.st_vars
        ],
        "map_stash_actions": [
            {
                "map_name": action.map_name,
                "key_variable_name": action.key_variable_name,
                "value_variable_name": action.value_variable_name
            }
            for action in probe.map_stash_actions
        ],
        "output_actions": [
            {
                "perf_buffer_name": action.perf_buffer_name,
                "variable_name": action.variable_name
            }
            for action in probe.output_actions
        ]
    }


def deserialize_physical_probe(data: Dict[str, Any]) -> physical.PhysicalProbe:
    """
    Convert a dict back to a PhysicalProbe.

    Args:
        data: Dict representation from serialize_physical_probe

    Returns:
        PhysicalProbe
    """
    return physical.PhysicalProbe(
        name=data["name"],
        structs=[deserialize_struct(st) for st in data.get("structs", [])],
        vars=[
            physical.ScalarVariable(
                var["name"],
                deserialize_type(var["type"]),
                deserialize_source(var.get("source"))
            )
            for var in data.get("vars", [])
        ],
        st_vars=[
            physical.StructVariable(
                st_var["name"], st_var["struct_name"], list(st_var.get("variable_names", []))
            )
            for st_var in data.get("st_vars", [])
        ],
        map_stash_actions=[
            physical.MapStashAction(
                action["map_name"], action["key_variable_name"], action["value_variable_name"]
            )
            for action in data.get("map_stash_actions", [])
        ],
        output_actions=[
            physical.OutputAction(action["perf_buffer_name"], action["variable_name"])
            for action in data.get("output_actions", [])
        ]
    )


def serialize_physical_program(program: physical.PhysicalProgram) -> Dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "kind": "physical",
        "maps": [
            {
                "name": m.name,
                "key_type": serialize_type(m.key_type),
                "value_type": serialize_type(m.value_type)
            }
            for m in program.maps
        ],
        "outputs": [{"name": output.name} for output in program.outputs],
        "probes": [serialize_physical_probe(probe) for probe in program.probes]
    }


def deserialize_physical_program(data: Dict[str, Any]) -> physical.PhysicalProgram:
    _check_version(data, "physical")
    return physical.PhysicalProgram(
        maps=[
            physical.BPFMap(
                m["name"], deserialize_type(m["key_type"]), deserialize_type(m["value_type"])
            )
            for m in data.get("maps", [])
        ],
        outputs=[physical.PerfBufferOutput(output["name"]) for output in data.get("outputs", [])],
        probes=[deserialize_physical_probe(probe) for probe in data.get("probes", [])]
    )


# ===== Logical IR =====

def serialize_probe(probe: logical.Probe) -> Dict[str, Any]:
    """
    Convert a logical Probe to a JSON-serializable dict.

    Args:
        probe: Logical probe

    Returns:
        Dict representation of the probe
    """
    latency = probe.function_latency
    return {
        "name": probe.name,
        "tracepoint": {
            "symbol": probe.tracepoint.symbol,
            "type": probe.tracepoint.type.value
        },
        "args": [{"id": arg.id, "expr": arg.expr} for arg in probe.args],
        "ret_vals": [{"id": ret.id, "expr": ret.expr} for ret in probe.ret_vals],
        "function_latency": {"id": latency.id} if latency is not None else None,
        "builtins": [
            {"id": var.id, "builtin": var.builtin.value} for var in probe.builtins
        ],
        "map_vals": [
            {
                "map_name": val.map_name,
                "key": val.key.value,
                "value_ids": list(val.value_ids),
                "consume": val.consume
            }
            for val in probe.map_vals
        ],
        "map_stash_actions": [
            {
                "map_name": action.map_name,
                "key": action.key.value,
                "value_variable_names": list(action.value_variable_names)
            }
            for action in probe.map_stash_actions
        ],
        "output_actions": [
            {
                "output_name": action.output_name,
                "variable_names": list(action.variable_names)
            }
            for action in probe.output_actions
        ]
    }


def deserialize_probe(data: Dict[str, Any]) -> logical.Probe:
    """
    Convert a dict back to a logical Probe.

    Args:
        data: Dict representation from serialize_probe

    Returns:
        Logical probe
    """
    tracepoint = data["tracepoint"]
    latency = data.get("function_latency")
    return logical.Probe(
        name=data["name"],
        tracepoint=logical.Tracepoint(
            tracepoint["symbol"],
            logical.TracepointType(tracepoint.get("type", "logical"))
        ),
        args=[logical.Argument(a["id"], a["expr"]) for a in data.get("args", [])],
        ret_vals=[logical.ReturnValue(r["id"], r["expr"]) for r in data.get("ret_vals", [])],
        function_latency=logical.FunctionLatency(latency["id"]) if latency else None,
        builtins=[
            logical.BuiltinVariable(b["id"], physical.BPFHelper(b["builtin"]))
            for b in data.get("builtins", [])
        ],
        map_vals=[
            logical.MapValue(
                v["map_name"],
                physical.BPFHelper(v["key"]),
                list(v.get("value_ids", [])),
                v.get("consume", False)
            )
            for v in data.get("map_vals", [])
        ],
        map_stash_actions=[
            logical.MapStashAction(
                a["map_name"],
                physical.BPFHelper(a["key"]),
                list(a.get("value_variable_names", []))
            )
            for a in data.get("map_stash_actions", [])
        ],
        output_actions=[
            logical.OutputAction(list(a.get("variable_names", [])), a.get("output_name", ""))
            for a in data.get("output_actions", [])
        ]
    )


def serialize_program(program: logical.Program) -> Dict[str, Any]:
    """
    Convert a logical Program to a JSON-serializable dict.

    Args:
        program: Logical program

    Returns:
        Dict representation of the program

    Example:
        >>> data = serialize_program(program)
        >>> json_str = json.dumps(data)
    """
    return {
        "version": FORMAT_VERSION,
        "kind": "logical",
        "maps": [{"name": m.name} for m in program.maps],
        "outputs": [
            {"name": output.name, "fields": list(output.fields)}
            for output in program.outputs
        ],
        "probes": [serialize_probe(probe) for probe in program.probes]
    }


def deserialize_program(data: Dict[str, Any]) -> logical.Program:
    """
    Convert a dict back to a logical Program.

    Args:
        data: Dict representation from serialize_program

    Returns:
        Logical program

    Example:
        >>> data = json.loads(json_str)
        >>> program = deserialize_program(data)
        >>> expanded = transform_logical_program(program)
    """
    _check_version(data, "logical")
    return logical.Program(
        maps=[logical.Map(m["name"]) for m in data.get("maps", [])],
        outputs=[
            logical.Output(output["name"], list(output.get("fields", [])))
            for output in data.get("outputs", [])
        ],
        probes=[deserialize_probe(probe) for probe in data.get("probes", [])]
    )


# ===== Convenience Functions =====

def program_to_json(program: logical.Program, indent: Optional[int] = 2) -> str:
    """
    Convert a logical Program to a JSON string.

    Args:
        program: Logical program
        indent: JSON indentation (None for compact, 2 for pretty)

    Returns:
        JSON string representation
    """
    return json.dumps(serialize_program(program), indent=indent)


def program_from_json(json_str: str) -> logical.Program:
    """
    Convert a JSON string back to a logical Program.

    Args:
        json_str: JSON string from program_to_json

    Returns:
        Logical program
    """
    data = json.loads(json_str)
    return deserialize_program(data)


def physical_program_to_json(program: physical.PhysicalProgram, indent: Optional[int] = 2) -> str:
    """Convert a PhysicalProgram to a JSON string."""
    return json.dumps(serialize_physical_program(program), indent=indent)


def physical_program_from_json(json_str: str) -> physical.PhysicalProgram:
    """Convert a JSON string back to a PhysicalProgram."""
    data = json.loads(json_str)
    return deserialize_physical_program(data)
