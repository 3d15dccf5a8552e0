"""
Exceptions for dyntrace.

All exceptions inherit from DynTraceError for easy catching.
"""

from typing import Optional


class DynTraceError(Exception):
    """
    Base exception for dyntrace errors.

    All dyntrace-specific exceptions inherit from this.
    """

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.suggestion = suggestion

    def __str__(self):
        msg = super().__str__()
        if self.suggestion:
            msg += f"\n  Suggestion: {self.suggestion}"
        return msg


class InvalidSpecError(DynTraceError):
    """
    A logical probe cannot be expanded.

    Raised by the transformer when a probe's capture requirements conflict,
    such as:
    - return values declared on an entry tracepoint
    - arguments declared on a return tracepoint
    - outputs that reference undefined variables
    - map reads or stashes that name an undeclared map

    No partial program is returned when this is raised.
    """
    pass


class InvalidVariableError(DynTraceError):
    """
    A physical variable cannot be rendered.

    Raised by the code generator when a scalar variable has no recognized
    source, or when a struct type reference cannot be resolved.
    """
    pass


class ProgramFormatError(DynTraceError):
    """
    Error reading a serialized program.

    Raised when a program file is not valid JSON or does not match the
    expected structure.
    """
    pass
