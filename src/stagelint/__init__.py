from stagelint.errors import FailureKind, StagelintError
from stagelint.runner import ChainResult, RunOptions, RunOutcome, run, run_async
from stagelint.scheduler import ConcurrencyPolicy

__version__ = "0.1.0"

__all__ = [
    "ChainResult",
    "ConcurrencyPolicy",
    "FailureKind",
    "RunOptions",
    "RunOutcome",
    "StagelintError",
    "__version__",
    "run",
    "run_async",
]
