"""ProtoShell - a command shell for protocol debugging."""

__version__ = "0.1.0"

from .core.types import ExecutionResult, ShellContext  # noqa: E402
from .shell import Shell  # noqa: E402

__all__ = ["ExecutionResult", "Shell", "ShellContext", "__version__"]
