"""In-memory variable storage for node runs."""
import logging
from typing import Dict, Any, Optional

from storage.base import VariableStore

logger = logging.getLogger(__name__)


class MemoryVariableStore(VariableStore):
    """In-memory storage for workflow variables."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        """Initialize in-memory storage.

        Args:
            initial: Optional variables to seed the store with
        """
        self.variables = dict(initial or {})  # name -> value
        logger.info(f"In-memory variable store initialized with {len(self.variables)} variables")

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Retrieve a variable.

        Args:
            key: Variable name
            default: Value returned when the variable is not set

        Returns:
            Stored value, which may itself be None
        """
        return self.variables.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a variable.

        Args:
            key: Variable name
            value: Value to store (None is kept as a value)
        """
        self.variables[key] = value
        logger.debug(f"Set variable {key}")

    def __contains__(self, key: str) -> bool:
        return key in self.variables

    def snapshot(self) -> Dict[str, Any]:
        """Return a copy of all stored variables."""
        return dict(self.variables)

    def close(self):
        """Close storage (no-op for memory storage)."""
        logger.info("Memory variable store closed")
