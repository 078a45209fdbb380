"""Variable store capability used by workflow nodes."""
from typing import Any, Optional


class VariableStore:
    """Key-value store for workflow variables."""

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def __contains__(self, key: str) -> bool:
        raise NotImplementedError
