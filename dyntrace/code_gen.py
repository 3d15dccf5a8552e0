"""
BCC source generation from physical probe IR.

Every gen_* function is pure: it returns the lines of source text for one IR
fragment, or raises without emitting anything. Join the lines with newlines
to obtain a compilable unit.

Usage:
    from dyntrace.code_gen import gen_physical_probe

    for line in gen_physical_probe(probe):
        print(line)
"""

from typing import Optional

from dyntrace.config import DynTraceConfig, DEFAULT_CONFIG
from dyntrace.errors import DynTraceError, InvalidVariableError
from dyntrace.physical import (
    ScalarType, StructRef, ValueType, Register, BPFHelper,
    RegisterSource, MemorySource, BuiltinSource,
    ScalarVariable, Struct, StructVariable,
    MapStashAction, OutputAction, PhysicalProbe, PhysicalProgram
)
from dyntrace import logger


SCALAR_TYPE_NAMES = {
    ScalarType.INT32: "int32_t",
    ScalarType.INT64: "int64_t",
    ScalarType.UINT32: "uint32_t",
    ScalarType.UINT64: "uint64_t",
    ScalarType.DOUBLE: "double",
    ScalarType.VOID_POINTER: "void*",
    ScalarType.STRING: "char*",
}

REGISTER_ACCESSORS = {
    Register.SP: "PT_REGS_SP(ctx)",
    Register.IP: "PT_REGS_IP(ctx)",
    Register.RC: "PT_REGS_RC(ctx)",
    Register.PARM1: "PT_REGS_PARM1(ctx)",
    Register.PARM2: "PT_REGS_PARM2(ctx)",
    Register.PARM3: "PT_REGS_PARM3(ctx)",
    Register.PARM4: "PT_REGS_PARM4(ctx)",
    Register.PARM5: "PT_REGS_PARM5(ctx)",
    Register.PARM6: "PT_REGS_PARM6(ctx)",
}

BUILTIN_EXPRESSIONS = {
    BPFHelper.TID: "bpf_get_current_pid_tgid() & 0xffffffff",
    BPFHelper.TGID: "bpf_get_current_pid_tgid() >> 32",
    BPFHelper.TGID_PID: "bpf_get_current_pid_tgid()",
    BPFHelper.GOID: "goid()",
    BPFHelper.KTIME: "bpf_ktime_get_ns()",
}

PROBE_SIGNATURE = "int {name}(struct pt_regs* ctx) {{"
RETURN_LINE = "return 0;"
CLOSE_LINE = "}"


def gen_type(value_type: ValueType) -> str:
    """
    Spell a value type in the target language.

    Raises:
        InvalidVariableError: If the type is not a ScalarType or StructRef
    """
    if isinstance(value_type, StructRef):
        return f"struct {value_type.name}"
    if isinstance(value_type, ScalarType):
        return SCALAR_TYPE_NAMES[value_type]
    raise InvalidVariableError(f"Unknown value type: {value_type!r}")


def gen_struct(struct: Struct, indent_size: int = DEFAULT_CONFIG.indent_size) -> list[str]:
    """
    Generate a struct definition.

    Args:
        struct: Struct type
        indent_size: Spaces before each field line

    Returns:
        `len(struct.fields) + 2` lines, fields in declaration order

    Example:
        >>> gen_struct(Struct("S", [Field("i32", ScalarType.INT32)]), 2)
        ['struct S {', '  int32_t i32;', '};']
    """
    indent = " " * indent_size
    lines = [f"struct {struct.name} {{"]
    for field in struct.fields:
        lines.append(f"{indent}{gen_type(field.type)} {field.name};")
    lines.append("};")
    return lines


def _gen_memory_read(var: ScalarVariable, source: MemorySource) -> list[str]:
    type_name = gen_type(var.val_type)
    if source.offset < 0:
        address = f"{source.base} - {-source.offset}"
    else:
        address = f"{source.base} + {source.offset}"
    # Arbitrary pointer dereference is rejected by the verifier.
    return [
        f"{type_name} {var.name};",
        f"bpf_probe_read(&{var.name}, sizeof({type_name}), {address});",
    ]


def gen_scalar_variable(var: ScalarVariable) -> list[str]:
    """
    Generate the declaration of a scalar variable.

    Register and builtin sources produce one initialized declaration. Memory
    sources produce a declaration followed by a bpf_probe_read() call.

    Raises:
        InvalidVariableError: If the variable has no recognized source
    """
    source = var.source

    if isinstance(source, RegisterSource):
        accessor = REGISTER_ACCESSORS.get(source.register)
        if accessor is None:
            raise InvalidVariableError(
                f"Variable {var.name} reads unknown register {source.register!r}"
            )
        return [f"{gen_type(var.val_type)} {var.name} = {accessor};"]

    if isinstance(source, MemorySource):
        return _gen_memory_read(var, source)

    if isinstance(source, BuiltinSource):
        expr = BUILTIN_EXPRESSIONS.get(source.builtin)
        if expr is None:
            raise InvalidVariableError(
                f"Variable {var.name} uses unknown builtin {source.builtin!r}"
            )
        return [f"{gen_type(var.val_type)} {var.name} = {expr};"]

    raise InvalidVariableError(
        f"Variable {var.name} has no source",
        suggestion="set a RegisterSource, MemorySource or BuiltinSource"
    )


def gen_struct_variable(struct: Struct, struct_var: StructVariable) -> list[str]:
    """
    Generate a zero-initialized struct instance and its field assignments.

    Field i is assigned from variable_names[i]. Fields without a name keep
    their zero value and surplus names are ignored.

    Raises:
        InvalidVariableError: If struct_var is not an instance of struct
    """
    if struct_var.struct_name != struct.name:
        raise InvalidVariableError(
            f"Struct variable {struct_var.name} has type {struct_var.struct_name}, "
            f"not {struct.name}"
        )

    num_names = len(struct_var.variable_names)
    if num_names != len(struct.fields):
        logger.log_arity_mismatch(struct_var.name, num_names, len(struct.fields))

    lines = [f"struct {struct.name} {struct_var.name} = {{}};"]
    for field, var_name in zip(struct.fields, struct_var.variable_names):
        lines.append(f"{struct_var.name}.{field.name} = {var_name};")
    return lines


def gen_map_stash_action(action: MapStashAction) -> list[str]:
    """Generate a map update."""
    return [f"{action.map_name}.update(&{action.key_variable_name}, &{action.value_variable_name});"]


def gen_output_action(action: OutputAction) -> list[str]:
    """Generate a perf buffer submission."""
    return [
        f"{action.perf_buffer_name}.perf_submit(ctx, &{action.variable_name}, "
        f"sizeof({action.variable_name}));"
    ]


def _index_structs(structs: list[Struct]) -> dict[str, Struct]:
    index = {}
    for struct in structs:
        existing = index.get(struct.name)
        if existing is not None and existing != struct:
            raise InvalidVariableError(f"Conflicting definitions of struct {struct.name}")
        index[struct.name] = struct
    return index


def _check_declared(probe: PhysicalProbe, name: str, declared: set[str]) -> None:
    if name not in declared:
        raise InvalidVariableError(f"Probe {probe.name} references undeclared variable {name}")


def _gen_function(probe: PhysicalProbe, structs: dict[str, Struct]) -> list[str]:
    """Generate the probe function body, without struct definitions."""
    lines = [PROBE_SIGNATURE.format(name=probe.name)]

    for var in probe.vars:
        lines.extend(gen_scalar_variable(var))
    scalars = {var.name for var in probe.vars}

    for st_var in probe.st_vars:
        struct = structs.get(st_var.struct_name)
        if struct is None:
            raise InvalidVariableError(
                f"Struct variable {st_var.name} has undefined type {st_var.struct_name}"
            )
        for name in st_var.variable_names[:len(struct.fields)]:
            _check_declared(probe, name, scalars)
        lines.extend(gen_struct_variable(struct, st_var))

    declared = probe.variable_names()
    for action in probe.map_stash_actions:
        _check_declared(probe, action.key_variable_name, declared)
        _check_declared(probe, action.value_variable_name, declared)
        lines.extend(gen_map_stash_action(action))

    for action in probe.output_actions:
        _check_declared(probe, action.variable_name, declared)
        lines.extend(gen_output_action(action))

    lines.append(RETURN_LINE)
    lines.append(CLOSE_LINE)
    return lines


def gen_physical_probe(
    probe: PhysicalProbe,
    config: Optional[DynTraceConfig] = None
) -> list[str]:
    """
    Generate the source of a physical probe.

    Output order is fixed: struct definitions, function signature, scalar
    variables, struct variables, map stash actions, output actions, return,
    closing brace. Every action only references variables declared above it.

    Args:
        probe: Physical probe
        config: Settings (uses DEFAULT_CONFIG if not provided)

    Returns:
        List of source lines

    Raises:
        InvalidVariableError: If a variable has no source, a struct variable's
            type is not defined in the probe, or a struct field or action
            references an undeclared variable
    """
    config = config or DEFAULT_CONFIG
    try:
        structs = _index_structs(probe.structs)
        lines = []
        for struct in probe.structs:
            lines.extend(gen_struct(struct, config.indent_size))
        lines.extend(_gen_function(probe, structs))
        return lines
    except DynTraceError as e:
        logger.log_codegen_failed(probe.name, e)
        raise


def gen_program(
    program: PhysicalProgram,
    config: Optional[DynTraceConfig] = None
) -> list[str]:
    """
    Generate a complete compilable unit.

    Emits each struct once (probes may share struct types), then map and perf
    buffer declarations, then one function per probe.

    Raises:
        InvalidVariableError: If two probes define the same struct differently,
            or any probe fails to generate
    """
    config = config or DEFAULT_CONFIG
    all_structs = [struct for probe in program.probes for struct in probe.structs]
    structs = _index_structs(all_structs)

    lines = []
    emitted = set()
    for struct in all_structs:
        if struct.name not in emitted:
            lines.extend(gen_struct(struct, config.indent_size))
            emitted.add(struct.name)

    for bpf_map in program.maps:
        lines.append(
            f"BPF_HASH({bpf_map.name}, {gen_type(bpf_map.key_type)}, "
            f"{gen_type(bpf_map.value_type)});"
        )

    for output in program.outputs:
        lines.append(f"BPF_PERF_OUTPUT({output.name});")

    for probe in program.probes:
        try:
            lines.extend(_gen_function(probe, structs))
        except DynTraceError as e:
            logger.log_codegen_failed(probe.name, e)
            raise

    return lines


def generate_source(
    program: PhysicalProgram,
    config: Optional[DynTraceConfig] = None
) -> str:
    """Generate a complete program as a single newline-joined string."""
    return "\n".join(gen_program(program, config)) + "\n"
