"""
Formula Resolver for Workflow Nodes

Resolves formula parameters against the run's variable store:
- ${NAME} - replaced by the value of workflow variable NAME
- $${ - literal "${"

Text without references passes through unchanged.
"""

import json
import re
from typing import Any
import logging

from storage.base import VariableStore

logger = logging.getLogger(__name__)

_MISSING = object()


class FormulaError(ValueError):
    """Raised when a formula references an unknown variable."""


class FormulaResolver:
    """Resolves variable references in formula parameters"""

    pattern = re.compile(r'\$?\$\{([^}]*)\}')

    def __init__(self, store: VariableStore):
        self.store = store

    def resolve(self, text: str) -> str:
        """
        Resolve all ${NAME} references in a formula

        Args:
            text: Formula text, may be None or empty

        Returns:
            Text with variable references substituted
        """
        if not text:
            return ""
        if "${" not in text:
            return text

        def replace_match(match):
            if match.group(0).startswith("$$"):
                return match.group(0)[1:]

            name = match.group(1).strip()
            if not name:
                raise FormulaError(f"Empty variable reference in formula: {text}")

            value = self.store.get(name, _MISSING)
            if value is _MISSING:
                raise FormulaError(f"Variable not found: {name}")
            return self._to_text(value)

        resolved = self.pattern.sub(replace_match, text)
        logger.debug(f"Resolved formula {text!r} -> {resolved!r}")
        return resolved

    def _to_text(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)


# Example usage:
"""
store = MemoryVariableStore({"SAMPLE_ID": "S-0042"})
resolver = FormulaResolver(store)

resolver.resolve("id=${SAMPLE_ID}&format=xml")   # "id=S-0042&format=xml"
"""
