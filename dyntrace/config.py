"""
Configuration for dyntrace.

Settings are passed explicitly into the transformer, code generator and
symbolizer so that independent instances can run with different policies.
"""

from dataclasses import dataclass

from dyntrace.physical import BPFHelper


@dataclass(frozen=True)
class DynTraceConfig:
    """
    Configuration for program generation and symbol caching.

    Frozen so the module-level presets can be shared safely. Use
    dataclasses.replace() to derive a variant.
    """

    # Code generation
    indent_size: int = 2
    """Number of spaces used to indent struct fields (default: 2)"""

    # Transformation
    stash_key: BPFHelper = BPFHelper.TGID_PID
    """
    Built-in used to key entry-time state for the matching return probe.
    Must identify the calling thread (default: TGID_PID).
    """

    stash_map_suffix: str = "_argstash"
    """Suffix appended to a probe name to form its implicit stash map name"""

    output_suffix: str = "_table"
    """Suffix appended to a probe name to form its implicit output name"""

    # Symbol cache
    enable_symcache: bool = True
    """
    Whether resolved symbols are cached per process.
    Initial state only: Symbolizer.enabled can switch caching at runtime.
    When off, every lookup goes straight to the resolver and the
    access/hit counters stop advancing.
    """

    # Logging
    log_transform: bool = False
    """
    Whether to log every probe the transformer emits.
    Default: False to avoid noise, enable for debugging.
    """

    log_cache_generations: bool = False
    """Whether to log evictions each time a cache generation closes"""

    def __post_init__(self):
        """Validate settings make sense."""
        if self.indent_size < 0:
            raise ValueError("indent_size must be at least 0")

        if self.stash_key not in (BPFHelper.TID, BPFHelper.TGID_PID, BPFHelper.GOID):
            raise ValueError("stash_key must identify a thread (TID, TGID_PID or GOID)")

        if not self.stash_map_suffix:
            raise ValueError("stash_map_suffix must not be empty")

        if not self.output_suffix:
            raise ValueError("output_suffix must not be empty")


# Default production settings
DEFAULT_CONFIG = DynTraceConfig()

# Symbol caching disabled, every lookup hits the resolver
NO_CACHE_CONFIG = DynTraceConfig(enable_symcache=False)

# Verbose settings for development/testing
VERBOSE_CONFIG = DynTraceConfig(
    indent_size=4,
    log_transform=True,
    log_cache_generations=True,
)
