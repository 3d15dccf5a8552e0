"""
Tests for the logical program transformer.
"""

import copy

import pytest

from dyntrace.config import DynTraceConfig
from dyntrace.errors import InvalidSpecError
from dyntrace.logical import (
    Program, Probe, Tracepoint, TracepointType, Argument, ReturnValue,
    FunctionLatency, BuiltinVariable, MapValue, MapStashAction,
    OutputAction, Output, Map
)
from dyntrace.physical import BPFHelper
from dyntrace.transformer import (
    transform_logical_program, ProbeTransformer, START_KTIME_VAR
)


def make_connect_probe(**kwargs) -> Probe:
    fields = dict(
        name="connect",
        tracepoint=Tracepoint("net.(*Dialer).DialContext"),
        args=[Argument("addr", "arg1"), Argument("port", "arg2")],
        ret_vals=[ReturnValue("err", "$0")],
    )
    fields.update(kwargs)
    return Probe(**fields)


# ===== Entry/Return Split =====

def test_split_probe_names_and_tracepoints():
    """Test a probe needing entry and return data becomes two probes."""
    expanded = transform_logical_program(Program(probes=[make_connect_probe()]))

    assert [p.name for p in expanded.probes] == ["connect_entry", "connect_return"]
    entry, ret = expanded.probes
    assert entry.tracepoint == Tracepoint("net.(*Dialer).DialContext", TracepointType.ENTRY)
    assert ret.tracepoint == Tracepoint("net.(*Dialer).DialContext", TracepointType.RETURN)


def test_split_probe_entry_stashes_args():
    """Test the entry probe captures args and stashes them keyed by thread."""
    entry, _ = transform_logical_program(Program(probes=[make_connect_probe()])).probes

    assert [arg.id for arg in entry.args] == ["addr", "port"]
    assert entry.ret_vals == []
    assert entry.output_actions == []
    assert entry.map_stash_actions == [
        MapStashAction("connect_argstash", BPFHelper.TGID_PID, ["addr", "port"])
    ]


def test_split_probe_return_consumes_stash():
    """Test the return probe reads the stash back with one consuming read."""
    _, ret = transform_logical_program(Program(probes=[make_connect_probe()])).probes

    assert ret.args == []
    assert [r.id for r in ret.ret_vals] == ["err"]
    assert ret.map_vals == [
        MapValue("connect_argstash", BPFHelper.TGID_PID, ["addr", "port"], consume=True)
    ]


def test_split_probe_entry_and_return_share_key():
    """Test both halves use the same map and key."""
    entry, ret = transform_logical_program(Program(probes=[make_connect_probe()])).probes

    stash = entry.map_stash_actions[0]
    read = ret.map_vals[0]
    assert (stash.map_name, stash.key) == (read.map_name, read.key)
    assert stash.value_variable_names == read.value_ids


def test_split_probe_adds_implicit_map_and_output():
    """Test the stash map and default output channel are declared."""
    expanded = transform_logical_program(Program(probes=[make_connect_probe()]))

    assert expanded.maps == [Map("connect_argstash")]
    assert expanded.outputs == [Output("connect_table", ["addr", "port", "err"])]

    _, ret = expanded.probes
    assert ret.output_actions == [OutputAction(["addr", "port", "err"], "connect_table")]


def test_split_probe_with_latency():
    """Test latency stashes the entry timestamp and measures on return."""
    probe = make_connect_probe(function_latency=FunctionLatency("latency"))
    entry, ret = transform_logical_program(Program(probes=[probe])).probes

    assert entry.builtins == [BuiltinVariable(START_KTIME_VAR, BPFHelper.KTIME)]
    assert entry.map_stash_actions[0].value_variable_names == ["addr", "port", START_KTIME_VAR]
    assert entry.function_latency is None

    assert ret.function_latency == FunctionLatency("latency")
    assert ret.map_vals[0].value_ids == ["addr", "port", START_KTIME_VAR]
    assert ret.output_actions[0].variable_names == ["addr", "port", "err", "latency"]


def test_latency_only_probe_is_split():
    """Test latency alone requires both attach points."""
    probe = Probe("sleep", Tracepoint("time.Sleep"), function_latency=FunctionLatency("lat"))
    expanded = transform_logical_program(Program(probes=[probe]))

    assert [p.tracepoint.type for p in expanded.probes] == [
        TracepointType.ENTRY, TracepointType.RETURN
    ]
    assert expanded.probes[0].map_stash_actions[0].value_variable_names == [START_KTIME_VAR]
    assert expanded.outputs == [Output("sleep_table", ["lat"])]


def test_split_keeps_user_output_actions():
    """Test explicit outputs move to the return probe with their channel."""
    probe = make_connect_probe(output_actions=[OutputAction(["err", "addr"], "dial_events")])
    program = Program(outputs=[Output("dial_events", ["error", "address"])], probes=[probe])

    expanded = transform_logical_program(program)
    _, ret = expanded.probes

    assert ret.output_actions == [OutputAction(["err", "addr"], "dial_events")]
    assert expanded.outputs == [Output("dial_events", ["error", "address"])]


def test_stash_key_from_config():
    """Test the stash key follows the config."""
    config = DynTraceConfig(stash_key=BPFHelper.GOID)
    entry, ret = transform_logical_program(Program(probes=[make_connect_probe()]), config).probes

    assert entry.map_stash_actions[0].key == BPFHelper.GOID
    assert ret.map_vals[0].key == BPFHelper.GOID


# ===== Single-point Probes =====

def test_entry_only_logical_probe():
    """Test a logical probe with only args attaches at entry."""
    probe = Probe("open", Tracepoint("os.Open"), args=[Argument("path", "arg0")])
    expanded = transform_logical_program(Program(probes=[probe]))

    assert len(expanded.probes) == 1
    out = expanded.probes[0]
    assert out.name == "open"
    assert out.tracepoint.type == TracepointType.ENTRY
    assert out.output_actions == [OutputAction(["path"], "open_table")]
    assert expanded.maps == []


def test_return_only_logical_probe():
    """Test a logical probe with only return values attaches at return."""
    probe = Probe("read", Tracepoint("os.(*File).Read"), ret_vals=[ReturnValue("n", "$0")])
    out = transform_logical_program(Program(probes=[probe])).probes[0]

    assert out.tracepoint.type == TracepointType.RETURN
    assert out.output_actions[0].output_name == "read_table"


def test_explicit_entry_probe_passes_through():
    """Test an explicit entry probe is kept as-is."""
    probe = Probe(
        "write",
        Tracepoint("os.(*File).Write", TracepointType.ENTRY),
        args=[Argument("buf", "arg1")],
        output_actions=[OutputAction(["buf"], "writes")],
    )
    program = Program(outputs=[Output("writes", ["buf"])], probes=[probe])
    expanded = transform_logical_program(program)

    assert expanded.probes == [probe]
    assert expanded.outputs == [Output("writes", ["buf"])]


def test_stash_only_probe_gets_no_default_output():
    """Test a probe that only stashes state does not emit anything."""
    probe = Probe(
        "remember",
        Tracepoint("f", TracepointType.ENTRY),
        args=[Argument("a", "arg0")],
        map_stash_actions=[MapStashAction("saved", BPFHelper.TGID_PID, ["a"])],
    )
    out = transform_logical_program(Program(maps=[Map("saved")], probes=[probe])).probes[0]
    assert out.output_actions == []


def test_unnamed_output_gets_implicit_channel():
    """Test an output without a channel is named after its probe."""
    probe = Probe(
        "pid_probe",
        Tracepoint("f", TracepointType.ENTRY),
        builtins=[BuiltinVariable("pid", BPFHelper.TGID)],
        output_actions=[OutputAction(["pid"])],
    )
    expanded = transform_logical_program(Program(probes=[probe]))

    assert expanded.probes[0].output_actions[0].output_name == "pid_probe_table"
    assert expanded.outputs == [Output("pid_probe_table", ["pid"])]


def test_output_suffix_from_config():
    """Test the implicit output name follows the config."""
    probe = Probe("p", Tracepoint("f"), args=[Argument("a", "arg0")])
    config = DynTraceConfig(output_suffix="_events")
    expanded = transform_logical_program(Program(probes=[probe]), config)
    assert expanded.outputs[0].name == "p_events"


def test_probe_with_nothing_to_capture():
    """Test an empty probe still yields one probe."""
    probe = Probe("empty", Tracepoint("f"))
    expanded = transform_logical_program(Program(probes=[probe]))

    assert len(expanded.probes) == 1
    assert expanded.probes[0].output_actions == []
    assert expanded.outputs == []


# ===== Program-level Properties =====

def test_every_probe_yields_one_or_two():
    """Test no probe is dropped and none yields more than two probes."""
    probes = [
        make_connect_probe(),
        Probe("open", Tracepoint("os.Open"), args=[Argument("path", "arg0")]),
        Probe("empty", Tracepoint("f", TracepointType.RETURN)),
    ]
    expanded = transform_logical_program(Program(probes=probes))

    assert [p.name for p in expanded.probes] == [
        "connect_entry", "connect_return", "open", "empty"
    ]


def test_input_program_not_modified():
    """Test the transformer works on a copy."""
    program = Program(probes=[make_connect_probe(), Probe("open", Tracepoint("f"), args=[Argument("a", "b")])])
    before = copy.deepcopy(program)

    transform_logical_program(program)

    assert program == before


def test_transform_is_deterministic():
    """Test the same input always produces the same output."""
    program = Program(probes=[make_connect_probe(function_latency=FunctionLatency("lat"))])
    assert transform_logical_program(program) == transform_logical_program(program)


def test_transformer_class():
    """Test ProbeTransformer can be used directly."""
    transformer = ProbeTransformer(Program(probes=[make_connect_probe()]))
    expanded = transformer.transform()
    assert expanded is transformer.result
    assert len(expanded) == 2


# ===== Invalid Specs =====

def test_return_values_on_entry_tracepoint():
    """Test return values cannot be captured at entry."""
    probe = make_connect_probe(tracepoint=Tracepoint("f", TracepointType.ENTRY))
    with pytest.raises(InvalidSpecError, match="return values at an entry"):
        transform_logical_program(Program(probes=[probe]))


def test_args_on_return_tracepoint():
    """Test arguments cannot be captured at return."""
    probe = make_connect_probe(tracepoint=Tracepoint("f", TracepointType.RETURN))
    with pytest.raises(InvalidSpecError, match="arguments at a return"):
        transform_logical_program(Program(probes=[probe]))


def test_latency_on_single_tracepoint():
    """Test latency needs a logical tracepoint."""
    probe = Probe(
        "p", Tracepoint("f", TracepointType.RETURN),
        function_latency=FunctionLatency("lat"),
    )
    with pytest.raises(InvalidSpecError) as exc_info:
        transform_logical_program(Program(probes=[probe]))
    assert exc_info.value.suggestion is not None


def test_empty_symbol():
    """Test a tracepoint needs a symbol."""
    with pytest.raises(InvalidSpecError, match="no tracepoint symbol"):
        transform_logical_program(Program(probes=[Probe("p", Tracepoint(""))]))


def test_duplicate_probe_names():
    """Test probe names must be unique."""
    probes = [Probe("p", Tracepoint("f")), Probe("p", Tracepoint("g"))]
    with pytest.raises(InvalidSpecError, match="Duplicate"):
        transform_logical_program(Program(probes=probes))


def test_expanded_name_collision():
    """Test a split name colliding with a user probe is rejected."""
    probes = [
        Probe("connect_entry", Tracepoint("g", TracepointType.ENTRY)),
        make_connect_probe(),
    ]
    with pytest.raises(InvalidSpecError, match="collides"):
        transform_logical_program(Program(probes=probes))


def test_duplicate_variable_ids():
    """Test a value name may only be defined once per probe."""
    probe = make_connect_probe(ret_vals=[ReturnValue("addr", "$0")])
    with pytest.raises(InvalidSpecError, match="addr"):
        transform_logical_program(Program(probes=[probe]))


def test_reserved_variable_name():
    """Test the entry timestamp name is reserved in split probes."""
    probe = make_connect_probe(args=[Argument(START_KTIME_VAR, "arg0")])
    with pytest.raises(InvalidSpecError, match="reserved"):
        transform_logical_program(Program(probes=[probe]))


def test_output_references_undefined_variable():
    """Test outputs may only use values the probe defines."""
    probe = make_connect_probe(output_actions=[OutputAction(["missing"])])
    with pytest.raises(InvalidSpecError, match="missing"):
        transform_logical_program(Program(probes=[probe]))


def test_stash_references_undefined_variable():
    """Test stashes may only use values the probe defines."""
    probe = Probe(
        "p", Tracepoint("f", TracepointType.ENTRY),
        map_stash_actions=[MapStashAction("m", BPFHelper.TGID_PID, ["nope"])],
    )
    with pytest.raises(InvalidSpecError, match="nope"):
        transform_logical_program(Program(probes=[probe]))


def test_stash_to_undeclared_map():
    """Test stashes must target a declared map."""
    probe = Probe(
        "p", Tracepoint("f"),
        args=[Argument("a", "arg0")],
        map_stash_actions=[MapStashAction("nosuchmap", BPFHelper.TGID_PID, ["a"])],
    )
    with pytest.raises(InvalidSpecError, match="undeclared map nosuchmap"):
        transform_logical_program(Program(probes=[probe]))


def test_read_from_undeclared_map():
    """Test map reads must target a declared map."""
    probe = Probe(
        "p", Tracepoint("f", TracepointType.ENTRY),
        map_vals=[MapValue("ghost", BPFHelper.TGID_PID, ["v"])],
    )
    with pytest.raises(InvalidSpecError, match="undeclared map ghost"):
        transform_logical_program(Program(probes=[probe]))


def test_read_from_another_probes_stash():
    """Test a probe may read the stash map another probe's split creates."""
    reader = Probe(
        "reader", Tracepoint("g", TracepointType.ENTRY),
        map_vals=[MapValue("connect_argstash", BPFHelper.TGID_PID, ["addr"])],
    )
    expanded = transform_logical_program(Program(probes=[reader, make_connect_probe()]))

    assert expanded.probes[0].map_vals[0].map_name == "connect_argstash"
    assert expanded.maps == [Map("connect_argstash")]


def test_declared_map_is_accepted():
    """Test stashes and reads of a declared map pass through."""
    probe = Probe(
        "p", Tracepoint("f", TracepointType.ENTRY),
        args=[Argument("a", "arg0")],
        map_vals=[MapValue("counts", BPFHelper.TGID_PID, ["n"])],
        map_stash_actions=[MapStashAction("counts", BPFHelper.TGID_PID, ["a"])],
    )
    expanded = transform_logical_program(Program(maps=[Map("counts")], probes=[probe]))
    assert expanded.maps == [Map("counts")]


def test_output_field_count_mismatch():
    """Test outputs must match the declared channel's width."""
    probe = make_connect_probe(output_actions=[OutputAction(["err"], "events")])
    program = Program(outputs=[Output("events", ["a", "b"])], probes=[probe])
    with pytest.raises(InvalidSpecError, match="2 fields"):
        transform_logical_program(program)


def test_failure_returns_nothing_partial():
    """Test a late failure aborts the whole program."""
    good = make_connect_probe()
    bad = Probe("bad", Tracepoint(""))
    transformer = ProbeTransformer(Program(probes=[good, bad]))

    with pytest.raises(InvalidSpecError):
        transformer.transform()
