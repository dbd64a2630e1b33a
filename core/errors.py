"""
FILE: core/errors.py
----------------------
Failure taxonomy for the statistics engine.

Every error carries a short machine-readable `kind` so the hosting layer
can map it to a transport-level response without string matching.
None of these are retried; each is local to a single request.
"""


class AnalysisError(Exception):
    """Base class for all engine failures."""

    kind: str = "analysis_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class InvalidVariableError(AnalysisError):
    """A requested column is absent, or unsuitable for its role."""

    kind = "invalid_variable"


class InsufficientDataError(AnalysisError):
    """Too few valid observations remain after missing-value deletion."""

    kind = "insufficient_data"

    def __init__(self, message: str, minimum: int | None = None):
        if minimum is not None and "minimum" not in message:
            message = f"{message} (minimum required: {minimum})"
        super().__init__(message)
        self.minimum = minimum


class InsufficientGroupsError(AnalysisError):
    """Fewer groups than a between-groups test needs."""

    kind = "insufficient_groups"


class ConvergenceError(AnalysisError):
    """
    An iterative fit (logistic Newton-Raphson, factor rotation) hit its iteration bound
    or degenerated. Normally attached to the result as a warning together with
    the best-available estimates; raised only when the caller asks for it.
    """

    kind = "convergence"

    def __init__(self, message: str, iterations: int | None = None):
        super().__init__(message)
        self.iterations = iterations


class UnsupportedTestError(AnalysisError):
    """Unknown test identifier."""

    kind = "unsupported_test"


class SingularMatrixError(AnalysisError):
    """Design or correlation matrix is rank deficient."""

    kind = "singular_matrix"


class RestrictedTestError(AnalysisError):
    """The caller's capability flags do not allow this test."""

    kind = "restricted_test"
