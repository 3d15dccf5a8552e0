"""
Demo of the generational symbol cache.

Simulates a profiler that symbolizes a few stack addresses per sampling
interval and ages the cache between intervals.
"""

import dyntrace
from dyntrace import UPID, KERNEL_UPID, UNRESOLVED_SYMBOL

SYMBOLS = {
    0x401000: "main",
    0x401200: "handle_request",
    0x401800: "parse_headers",
    0xffffffff81000100: "__x64_sys_read",
}


def resolver(upid, addr):
    return SYMBOLS.get(addr, UNRESOLVED_SYMBOL)


symbolizer = dyntrace.Symbolizer(resolver)
app = UPID(pid=1234, start_time_ticks=987654)

intervals = [
    [(app, 0x401000), (app, 0x401200), (KERNEL_UPID, 0xffffffff81000100)],
    [(app, 0x401000), (app, 0x401200), (app, 0x7f00dead)],
    [(app, 0x401000)],
    [(app, 0x401000), (app, 0x401800)],
]

print("=" * 70)
print("dyntrace Symbolizer Demo")
print("=" * 70)
print()

for i, stack in enumerate(intervals, 1):
    print(f"Interval {i}:")
    for upid, addr in stack:
        symbol = symbolizer.get_symbolizer_fn(upid)(addr)
        print(f"  {str(upid):>16}  {addr:#018x}  {symbol}")

    cache = symbolizer.cache(app)
    print(f"  app cache: total={cache.total_entries()} active={cache.active_entries()}")
    print(f"  stats: {symbolizer.stat_hits}/{symbolizer.stat_accesses} hits")
    print()

    symbolizer.create_new_generation()
