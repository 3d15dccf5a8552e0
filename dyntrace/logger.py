"""
Logging for dyntrace.

Everything goes through the "dyntrace" logger, which stays quiet (WARNING)
unless a caller or the CLI's --log-level raises it. Each event the
compiler and symbolizer report has its own helper so messages stay uniform:

    transformer   log_probe_transformed, log_probe_split, log_implicit_output,
                  log_transform_failed
    code_gen      log_codegen_failed, log_arity_mismatch
    symbolizer    log_new_generation, log_cache_flushed, log_unresolved_symbol
"""

import logging
import sys

logger = logging.getLogger("dyntrace")
logger.setLevel(logging.WARNING)

_handler = logging.StreamHandler(sys.stderr)
_handler.setLevel(logging.DEBUG)
_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))

# Importing twice (e.g. under reload) must not duplicate output.
if not logger.handlers:
    logger.addHandler(_handler)


def set_log_level(level: str) -> None:
    """
    Set the log level for dyntrace.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Example:
        >>> from dyntrace import logger
        >>> logger.set_log_level("DEBUG")
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")
    logger.setLevel(numeric_level)


def log_probe_transformed(probe_name: str, tracepoint_type: str) -> None:
    """Log when a single-point probe passes through the transformer."""
    logger.debug(f"Probe transformed: {probe_name}, tracepoint: {tracepoint_type}")


def log_probe_split(probe_name: str, entry_name: str, return_name: str) -> None:
    """Log when a logical probe is split into entry/return probes."""
    logger.info(f"Probe split: {probe_name} -> {entry_name}, {return_name}")


def log_implicit_output(probe_name: str, output_name: str) -> None:
    """Log when an implicit output channel is created."""
    logger.debug(f"Implicit output: {probe_name}, output: {output_name}")


def log_transform_failed(probe_name: str, error: Exception) -> None:
    """Log when a probe cannot be transformed."""
    logger.warning(f"Transform failed: {probe_name}, error: {error}")


def log_codegen_failed(probe_name: str, error: Exception) -> None:
    """Log when code generation fails for a probe."""
    logger.warning(f"Codegen failed: {probe_name}, error: {error}")


def log_arity_mismatch(struct_var: str, num_names: int, num_fields: int) -> None:
    """Log when a struct variable's source names don't match its field count."""
    logger.debug(
        f"Arity mismatch: {struct_var}, "
        f"names: {num_names}, fields: {num_fields}"
    )


def log_new_generation(upid: str, generation: int, evicted: int, remaining: int) -> None:
    """Log when a symbol cache advances its generation."""
    logger.debug(
        f"Symbol cache generation: {upid}, generation: {generation}, "
        f"evicted: {evicted}, remaining: {remaining}"
    )


def log_cache_flushed(upid: str, num_entries: int) -> None:
    """Log when a symbol cache is flushed."""
    logger.info(f"Symbol cache flushed: {upid}, entries: {num_entries}")


def log_unresolved_symbol(upid: str, addr: int) -> None:
    """Log when the resolver could not symbolize an address."""
    logger.debug(f"Unresolved symbol: {upid}, addr: {addr:#x}")
