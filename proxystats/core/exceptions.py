"""Error taxonomy shared by the aggregation services and the API layer"""
from typing import Dict, List, Optional


class StatsError(Exception):
    """Base class for aggregation errors"""

    kind = "StatsError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {"error": self.kind, "message": self.message}


class InvalidRange(StatsError):
    """Malformed query window (end before start, or only one bound given)"""

    kind = "InvalidRange"
    status_code = 400


class StorageUnavailable(StatsError):
    """Storage engine unreachable or locked beyond the retry budget"""

    kind = "StorageUnavailable"
    status_code = 503


class PartialBatchFailure(StatsError):
    """A write batch could not be committed; nothing from it was applied"""

    kind = "PartialBatchFailure"
    status_code = 500

    def __init__(self, message: str, events: int = 0):
        super().__init__(message)
        self.events = events

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["events"] = self.events
        return data


class CleanupIncomplete(StatsError):
    """A cleanup run stopped part way; completed families stay deleted"""

    kind = "CleanupIncomplete"
    status_code = 500

    def __init__(
        self,
        message: str,
        completed: List[str],
        pending: List[str],
        deleted: Optional[Dict[str, int]] = None
    ):
        super().__init__(message)
        self.completed = completed
        self.pending = pending
        self.deleted = deleted or {}

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data.update({
            "completed": self.completed,
            "pending": self.pending,
            "deleted": self.deleted,
        })
        return data
