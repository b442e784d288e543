"""PostPulse — Aggregation Error Taxonomy.

Malformed or irrelevant events are not errors: the extractor returns None
and callers count them as skipped. Everything below is raised.
"""


class TransientIOError(Exception):
    """Raised when the event/summary store is unavailable. Safe to retry."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class ConsistencyViolation(Exception):
    """Raised when persisted state or a computed window is self-contradictory.

    Fatal: the operation aborts and nothing is corrected silently.
    """


class BackfillError(Exception):
    """Raised when a backfill run fails part-way through its batches."""

    def __init__(self, message: str, committed: int = 0, total: int = 0):
        self.committed = committed
        self.total = total
        super().__init__(message)
