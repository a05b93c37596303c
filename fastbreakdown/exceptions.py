"""Error taxonomy for break-down attribution."""

from typing import Optional, Sequence


class BreakDownError(Exception):
    """Base class for all fastbreakdown errors."""


class SchemaMismatch(BreakDownError, ValueError):
    """Feature keys or their order disagree with the fixed schema.

    Parameters
    ----------
    message : str
        Human-readable description.
    missing : sequence of str, optional
        Schema variables absent from the offending input.
    unexpected : sequence of str, optional
        Variables present in the input but not in the schema.
    order_mismatch : bool, default=False
        Whether the input has exactly the schema variables, in another order.
    """

    def __init__(
        self,
        message: str,
        missing: Optional[Sequence[str]] = None,
        unexpected: Optional[Sequence[str]] = None,
        order_mismatch: bool = False,
    ):
        super().__init__(message)
        self.missing = list(missing or [])
        self.unexpected = list(unexpected or [])
        self.order_mismatch = order_mismatch

    @classmethod
    def compare(cls, expected: Sequence[str], got: Sequence[str], what: str = "input"):
        """Build an error describing how ``got`` deviates from ``expected``."""
        missing = [name for name in expected if name not in set(got)]
        unexpected = [name for name in got if name not in set(expected)]
        if missing or unexpected:
            parts = []
            if missing:
                parts.append(f"missing {missing}")
            if unexpected:
                parts.append(f"unexpected {unexpected}")
            message = f"{what} does not match the schema: " + ", ".join(parts)
        else:
            message = (
                f"{what} has the schema variables in a different order. "
                f"Expected {list(expected)}, got {list(got)}"
            )
        return cls(
            message,
            missing=missing,
            unexpected=unexpected,
            order_mismatch=not (missing or unexpected),
        )


class EmptyPopulation(BreakDownError, ValueError):
    """Reference population has no rows."""


class NonFiniteScore(BreakDownError, ArithmeticError):
    """The scoring function produced NaN or infinity."""


class ScoringUnavailable(BreakDownError, RuntimeError):
    """The underlying model raised an unexpected failure while scoring."""


__all__ = [
    "BreakDownError",
    "SchemaMismatch",
    "EmptyPopulation",
    "NonFiniteScore",
    "ScoringUnavailable",
]
