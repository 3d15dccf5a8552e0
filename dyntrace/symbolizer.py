"""
Generational symbol cache for stack-trace profiling.

Turns raw instruction addresses into symbol names, remembering recent results
per process. Entries that go unused for a full generation are evicted, so
memory stays bounded by what the profiler actually keeps sampling.

Usage:
    from dyntrace.symbolizer import Symbolizer, UPID, KERNEL_UPID

    symbolizer = Symbolizer(resolver)
    symbolize = symbolizer.get_symbolizer_fn(UPID(pid=1234, start_time_ticks=5678))
    names = [symbolize(addr) for addr in stack]

    # Once per sampling interval
    symbolizer.create_new_generation()
"""

from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, NamedTuple, Optional

from dyntrace.config import DynTraceConfig, DEFAULT_CONFIG
from dyntrace import logger


# Marker a resolver returns when it cannot symbolize an address.
UNRESOLVED_SYMBOL = "[UNKNOWN]"


@dataclass(frozen=True)
class UPID:
    """Process identity that survives pid reuse"""
    pid: int
    start_time_ticks: int = 0

    def __str__(self):
        if self == KERNEL_UPID:
            return "kernel"
        return f"{self.pid}:{self.start_time_ticks}"


# Sentinel identity for the kernel address space.
KERNEL_UPID = UPID(pid=-1, start_time_ticks=0)

# (upid, addr) -> symbol, None, or UNRESOLVED_SYMBOL
ResolverFn = Callable[[UPID, int], Optional[str]]


class LookupResult(NamedTuple):
    symbol: str
    hit: bool


def format_address(addr: int) -> str:
    """Render an address as `0x` followed by lowercase hex."""
    return f"0x{addr:x}"


def _resolve(resolver: ResolverFn, upid: UPID, addr: int) -> str:
    symbol = resolver(upid, addr)
    if symbol is None or symbol == UNRESOLVED_SYMBOL:
        logger.log_unresolved_symbol(str(upid), addr)
        return format_address(addr)
    return symbol


class _Entry:
    __slots__ = ("symbol", "generation")

    def __init__(self, symbol: str, generation: int):
        self.symbol = symbol
        self.generation = generation


class SymbolCache:
    """
    Address-to-symbol cache for one process identity.

    Each entry remembers the generation in which it was last looked up.
    Closing a generation drops entries that were not touched during the
    previous one, so an entry survives one full generation past its last use.

    Not internally locked: the owning profiling loop serializes access.

    Example:
        cache = SymbolCache(upid, resolver)
        result = cache.lookup(0x401000)
        if not result.hit:
            print(f"resolved {result.symbol}")
    """

    def __init__(
        self,
        upid: UPID,
        resolver: ResolverFn,
        log_generations: bool = False
    ):
        self.upid = upid
        self.resolver = resolver
        self.log_generations = log_generations
        self._entries: dict[int, _Entry] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def lookup(self, addr: int) -> LookupResult:
        """
        Look up the symbol at an address.

        Args:
            addr: Instruction address

        Returns:
            LookupResult(symbol, hit). Unresolved addresses come back as
            their hex rendering, never as an error.
        """
        entry = self._entries.get(addr)
        if entry is not None:
            entry.generation = self._generation
            return LookupResult(entry.symbol, True)

        symbol = _resolve(self.resolver, self.upid, addr)
        self._entries[addr] = _Entry(symbol, self._generation)
        return LookupResult(symbol, False)

    def create_new_generation(self) -> int:
        """
        Close the current generation and start the next one.

        Returns:
            Number of entries evicted
        """
        prev = self._generation
        stale = [addr for addr, entry in self._entries.items() if entry.generation < prev]
        for addr in stale:
            del self._entries[addr]
        self._generation = prev + 1

        if self.log_generations:
            logger.log_new_generation(str(self.upid), self._generation, len(stale), len(self._entries))
        return len(stale)

    def total_entries(self) -> int:
        """Number of entries currently retained"""
        return len(self._entries)

    def active_entries(self) -> int:
        """Number of entries looked up during the current generation"""
        return sum(1 for entry in self._entries.values() if entry.generation == self._generation)

    def flush_cache(self) -> None:
        """Drop every entry."""
        num_entries = len(self._entries)
        self._entries.clear()
        logger.log_cache_flushed(str(self.upid), num_entries)

    def __len__(self):
        return self.total_entries()

    def __contains__(self, addr: int) -> bool:
        return addr in self._entries

    def __repr__(self) -> str:
        return (
            f"SymbolCache(upid={self.upid}, generation={self._generation}, "
            f"entries={len(self._entries)})"
        )


class Symbolizer:
    """
    Dispatches symbol lookups to one SymbolCache per process identity.

    Keeps cumulative access/hit counters across all identities. Flushing a
    cache does not reset them. While caching is disabled, lookups bypass the
    caches entirely and the counters do not move.

    Example:
        symbolizer = Symbolizer(resolver)
        symbolize = symbolizer.get_symbolizer_fn(KERNEL_UPID)
        print(symbolize(kaddr))
        print(symbolizer.stat_hits, "/", symbolizer.stat_accesses)
    """

    def __init__(self, resolver: ResolverFn, config: Optional[DynTraceConfig] = None):
        self.resolver = resolver
        self.config = config or DEFAULT_CONFIG
        self._caches: dict[UPID, SymbolCache] = {}
        self._lock = Lock()
        self._stat_accesses = 0
        self._stat_hits = 0
        self._enabled = self.config.enable_symcache

    @property
    def enabled(self) -> bool:
        """Whether lookups go through the per-process caches"""
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @property
    def stat_accesses(self) -> int:
        return self._stat_accesses

    @property
    def stat_hits(self) -> int:
        return self._stat_hits

    def _get_cache(self, upid: UPID) -> SymbolCache:
        with self._lock:
            cache = self._caches.get(upid)
            if cache is None:
                cache = SymbolCache(upid, self.resolver, self.config.log_cache_generations)
                self._caches[upid] = cache
            return cache

    def _symbolize(self, upid: UPID, addr: int) -> str:
        if not self._enabled:
            return _resolve(self.resolver, upid, addr)

        result = self._get_cache(upid).lookup(addr)
        with self._lock:
            self._stat_accesses += 1
            if result.hit:
                self._stat_hits += 1
        return result.symbol

    def get_symbolizer_fn(self, upid: UPID) -> Callable[[int], str]:
        """
        Get a function that symbolizes addresses in one process.

        The returned function checks the enable flag on every call, so
        toggling caching also affects functions handed out earlier.

        Args:
            upid: Process identity, or KERNEL_UPID

        Returns:
            Callable taking an address and returning its symbol
        """
        return lambda addr: self._symbolize(upid, addr)

    def create_new_generation(self) -> None:
        """Advance the generation of every per-process cache."""
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            cache.create_new_generation()

    def flush_cache(self, upid: UPID) -> None:
        """Drop all cached symbols for one process."""
        with self._lock:
            cache = self._caches.get(upid)
        if cache is not None:
            cache.flush_cache()

    def delete_upids(self, upids: Iterable[UPID]) -> None:
        """Release the caches of processes that have exited."""
        with self._lock:
            for upid in upids:
                self._caches.pop(upid, None)

    def cache(self, upid: UPID) -> Optional[SymbolCache]:
        """The cache for a process, if one has been created"""
        with self._lock:
            return self._caches.get(upid)

    def __len__(self):
        with self._lock:
            return len(self._caches)
