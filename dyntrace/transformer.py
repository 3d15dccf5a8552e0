"""
Logical program transformer.

Expands logical probes into the entry and return probes the backend can attach,
adding the stash maps and output channels they imply.

Usage:
    from dyntrace.transformer import transform_logical_program

    expanded = transform_logical_program(program)
    for probe in expanded.probes:
        print(probe.name, probe.tracepoint.type)
"""

import copy
from typing import Optional

from dyntrace.config import DynTraceConfig, DEFAULT_CONFIG
from dyntrace.errors import InvalidSpecError
from dyntrace.logical import (
    Program, Probe, Tracepoint, TracepointType, Map, Output,
    OutputAction, MapStashAction, MapValue, BuiltinVariable
)
from dyntrace.physical import BPFHelper
from dyntrace import logger

# Entry timestamp stashed for latency computation on return.
START_KTIME_VAR = "start_ktime_ns"

ENTRY_SUFFIX = "_entry"
RETURN_SUFFIX = "_return"


class ProbeTransformer:
    """
    Expands the probes of one logical program.

    A transformer instance accumulates the maps and outputs it creates, so use
    a new instance (or transform_logical_program) per program.

    Example:
        transformer = ProbeTransformer(program)
        expanded = transformer.transform()
    """

    def __init__(self, program: Program, config: Optional[DynTraceConfig] = None):
        self.program = program
        self.config = config or DEFAULT_CONFIG
        self.result = Program(
            maps=copy.deepcopy(program.maps),
            outputs=copy.deepcopy(program.outputs),
        )
        # Declared maps plus the stash maps that splitting will create.
        self._known_maps = {m.name for m in program.maps}
        self._known_maps.update(
            p.name + self.config.stash_map_suffix
            for p in program.probes if self._needs_split(p)
        )

    def transform(self) -> Program:
        """
        Transform every probe.

        Returns:
            A new expanded Program. The input program is not modified.

        Raises:
            InvalidSpecError: If any probe cannot be expanded
        """
        self._check_probe_names()

        for probe in self.program.probes:
            try:
                self._validate_probe(probe)
                if self._needs_split(probe):
                    self._split_probe(probe)
                else:
                    self._pass_through(probe)
            except InvalidSpecError as e:
                logger.log_transform_failed(probe.name, e)
                raise

        return self.result

    # ===== Validation =====

    def _check_probe_names(self) -> None:
        seen = set()
        for probe in self.program.probes:
            if not probe.name:
                raise InvalidSpecError("Probe name must not be empty")
            if probe.name in seen:
                raise InvalidSpecError(f"Duplicate probe name: {probe.name}")
            seen.add(probe.name)

    def _validate_probe(self, probe: Probe) -> None:
        tracepoint = probe.tracepoint

        if not tracepoint.symbol:
            raise InvalidSpecError(f"Probe {probe.name} has no tracepoint symbol")

        if tracepoint.type == TracepointType.ENTRY and probe.ret_vals:
            raise InvalidSpecError(
                f"Probe {probe.name} captures return values at an entry tracepoint",
                suggestion="use a LOGICAL tracepoint to capture both entry and return values"
            )

        if tracepoint.type == TracepointType.RETURN and probe.args:
            raise InvalidSpecError(
                f"Probe {probe.name} captures arguments at a return tracepoint",
                suggestion="use a LOGICAL tracepoint to capture both entry and return values"
            )

        if probe.function_latency is not None and tracepoint.type != TracepointType.LOGICAL:
            raise InvalidSpecError(
                f"Probe {probe.name} measures latency at a single {tracepoint.type.value} tracepoint",
                suggestion="latency requires a LOGICAL tracepoint"
            )

        ids = probe.defined_ids()
        duplicates = sorted({name for name in ids if ids.count(name) > 1})
        if duplicates:
            raise InvalidSpecError(
                f"Probe {probe.name} defines {', '.join(duplicates)} more than once"
            )

        if self._needs_split(probe) and START_KTIME_VAR in ids:
            raise InvalidSpecError(
                f"Probe {probe.name} uses reserved variable name {START_KTIME_VAR}"
            )

        defined = set(ids)
        for action in probe.map_stash_actions:
            self._check_defined(probe, action.value_variable_names, defined, action.map_name)
        for action in probe.output_actions:
            self._check_defined(probe, action.variable_names, defined, str(action))

        map_names = [action.map_name for action in probe.map_stash_actions]
        map_names += [map_val.map_name for map_val in probe.map_vals]
        for name in map_names:
            if name not in self._known_maps:
                raise InvalidSpecError(
                    f"Probe {probe.name} refers to undeclared map {name}",
                    suggestion=f"declare Map(\"{name}\") in the program"
                )

    @staticmethod
    def _check_defined(probe: Probe, names: list[str], defined: set[str], where: str) -> None:
        for name in names:
            if name not in defined:
                raise InvalidSpecError(
                    f"Probe {probe.name} references undefined variable {name} in {where}"
                )

    @staticmethod
    def _needs_split(probe: Probe) -> bool:
        return (
            probe.tracepoint.type == TracepointType.LOGICAL
            and probe.needs_entry()
            and probe.needs_return()
        )

    # ===== Single-point Probes =====

    def _pass_through(self, probe: Probe) -> None:
        """Copy a probe that attaches at a single point."""
        out = copy.deepcopy(probe)

        # Pin a logical tracepoint to the only point it actually needs.
        if out.tracepoint.type == TracepointType.LOGICAL:
            point = TracepointType.RETURN if out.needs_return() else TracepointType.ENTRY
            out.tracepoint = Tracepoint(out.tracepoint.symbol, point)

        if not out.output_actions and not out.map_stash_actions and out.defined_ids():
            out.output_actions.append(OutputAction(variable_names=out.defined_ids()))

        self._resolve_outputs(out, probe.name)
        self._add_probe(out)
        if self.config.log_transform:
            logger.log_probe_transformed(out.name, out.tracepoint.type.value)

    # ===== Entry/Return Split =====

    def _split_probe(self, probe: Probe) -> None:
        """Replace a logical probe with an entry probe and a return probe."""
        symbol = probe.tracepoint.symbol
        stash_map = probe.name + self.config.stash_map_suffix
        key = self.config.stash_key

        stash_ids = [arg.id for arg in probe.args]
        entry_builtins = []
        if probe.function_latency is not None:
            entry_builtins.append(BuiltinVariable(START_KTIME_VAR, BPFHelper.KTIME))
            stash_ids.append(START_KTIME_VAR)

        entry = Probe(
            name=probe.name + ENTRY_SUFFIX,
            tracepoint=Tracepoint(symbol, TracepointType.ENTRY),
            args=copy.deepcopy(probe.args),
            builtins=entry_builtins,
            map_stash_actions=[MapStashAction(stash_map, key, list(stash_ids))],
        )

        ret = Probe(
            name=probe.name + RETURN_SUFFIX,
            tracepoint=Tracepoint(symbol, TracepointType.RETURN),
            ret_vals=copy.deepcopy(probe.ret_vals),
            function_latency=copy.deepcopy(probe.function_latency),
            builtins=copy.deepcopy(probe.builtins),
            map_vals=[MapValue(stash_map, key, list(stash_ids), consume=True)],
            map_stash_actions=copy.deepcopy(probe.map_stash_actions),
            output_actions=copy.deepcopy(probe.output_actions),
        )
        ret.map_vals.extend(copy.deepcopy(probe.map_vals))

        if not ret.output_actions and not ret.map_stash_actions:
            ret.output_actions.append(OutputAction(variable_names=probe.defined_ids()))

        self._add_map(stash_map)
        self._resolve_outputs(ret, probe.name)
        self._add_probe(entry)
        self._add_probe(ret)
        if self.config.log_transform:
            logger.log_probe_split(probe.name, entry.name, ret.name)

    # ===== Maps & Outputs =====

    def _resolve_outputs(self, probe: Probe, base_name: str) -> None:
        """
        Give every output action a channel and make sure the channel exists.

        Implicit channels are named after the logical probe, so both halves
        of a split probe (and re-runs) pick the same name.
        """
        for action in probe.output_actions:
            if not action.output_name:
                action.output_name = base_name + self.config.output_suffix

            output = self.result.find_output(action.output_name)
            if output is None:
                self.result.outputs.append(
                    Output(action.output_name, list(action.variable_names))
                )
                logger.log_implicit_output(probe.name, action.output_name)
            elif len(output.fields) != len(action.variable_names):
                raise InvalidSpecError(
                    f"Probe {probe.name} writes {len(action.variable_names)} values "
                    f"to output {output.name}, which has {len(output.fields)} fields"
                )

    def _add_map(self, name: str) -> None:
        if not any(m.name == name for m in self.result.maps):
            self.result.maps.append(Map(name))

    def _add_probe(self, probe: Probe) -> None:
        if any(p.name == probe.name for p in self.result.probes):
            raise InvalidSpecError(f"Expanded probe name collides: {probe.name}")
        self.result.probes.append(probe)


def transform_logical_program(
    program: Program,
    config: Optional[DynTraceConfig] = None
) -> Program:
    """
    Expand a logical program.

    Probes that need both entry and return data are split in two, with the
    entry state stashed in an implicit map keyed by the calling thread. Outputs
    without a channel get one named after their probe.

    Args:
        program: Logical program to expand
        config: Settings (uses DEFAULT_CONFIG if not provided)

    Returns:
        Expanded Program

    Raises:
        InvalidSpecError: If a probe's capture requirements conflict.
            Nothing is returned in that case.

    Example:
        >>> program = Program(probes=[Probe(
        ...     "connect", Tracepoint("net.Dial"),
        ...     args=[Argument("addr", "arg0")],
        ...     ret_vals=[ReturnValue("err", "$0")])])
        >>> [p.name for p in transform_logical_program(program).probes]
        ['connect_entry', 'connect_return']
    """
    return ProbeTransformer(program, config).transform()
