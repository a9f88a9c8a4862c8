"""Runtime failure type shared by the PyPlay interpreter modules."""

from typing import List, Optional


class EvalError(Exception):
    """Raised when a guest program fails at runtime.

    Expression evaluation, built-ins and methods raise this with a short,
    Python-flavoured message. The statement executor fills in `line` the first
    time the error crosses a statement boundary, and the run session attaches
    the output produced before the failure.

    Attributes:
        line: optional 1-based source line of the failing statement
        column: optional 1-based column within that line
        text: optional source text of the failing statement
        output: lines already printed when the failure happened
    """

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        text: Optional[str] = None,
    ):
        super().__init__(message)
        self.line = line
        self.column = column
        self.text = text
        self.output: List[str] = []
