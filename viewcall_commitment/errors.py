"""Typed failures for every stage of the pipeline.

Each error names the stage that failed so a caller can tell a bad block
reference from a reverted call or a tampered input without parsing messages.
"""

from __future__ import annotations

from typing import Any, Optional


class ViewCallError(Exception):
    stage = "pipeline"

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class ResolutionError(ViewCallError):
    stage = "resolve"


class CallError(ViewCallError):
    stage = "preflight"

    def __init__(self, message: str, call: Optional[str] = None, address: Optional[str] = None):
        super().__init__(message)
        self.call = call
        self.address = address


class ZeroDenominatorError(ViewCallError, ArithmeticError):
    stage = "calculate"


class FixedWidthOverflowError(ViewCallError, OverflowError):
    stage = "calculate"


class CommitmentMismatchError(ViewCallError):
    stage = "replay"

    def __init__(self, message: str, expected: Any = None, actual: Any = None):
        if expected is not None or actual is not None:
            message = f"{message} (expected {_show(expected)}, got {_show(actual)})"
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ReplayDivergenceError(ViewCallError):
    stage = "replay"


class ProvingError(ViewCallError):
    stage = "prove"


class JournalDecodeError(ViewCallError):
    stage = "journal"

    def __init__(self, message: str, expected_length: Optional[int] = None, actual_length: Optional[int] = None):
        if expected_length is not None:
            message = f"{message} (expected {expected_length} bytes, got {actual_length})"
        super().__init__(message)
        self.expected_length = expected_length
        self.actual_length = actual_length


class SubmissionError(ViewCallError):
    stage = "submit"


def _show(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)
