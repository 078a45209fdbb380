"""Value types for the XML webservice fetch."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(str, Enum):
    """Classified failures of a single fetch-and-extract call."""

    INVALID_VARIABLE_NAME = "InvalidVariableName"
    INVALID_URL = "InvalidUrl"
    REQUEST_FAILED = "RequestFailed"
    XPATH_EVALUATION_FAILED = "XPathEvaluationFailed"
    UNSUPPORTED_NODE_KIND = "UnsupportedNodeKind"


def _clean(value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        return ""
    return str(value)


@dataclass(frozen=True)
class RequestConfig:
    """Parameters for one fetch-and-extract call."""

    address: str
    xpath: str
    variable_name: str
    query: str = ""
    namespace_prefix: str = ""

    @classmethod
    def create(
        cls,
        address: Optional[str],
        xpath: Optional[str],
        variable_name: Optional[str],
        query: Optional[str] = None,
        namespace_prefix: Optional[str] = None
    ) -> "RequestConfig":
        """Build a config from raw parameter values.

        Whitespace-only values become empty strings and any trailing '?'
        is removed from the address.
        """
        return cls(
            address=_clean(address).rstrip('?'),
            xpath=_clean(xpath),
            variable_name=_clean(variable_name),
            query=_clean(query),
            namespace_prefix=_clean(namespace_prefix).strip()
        )


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a fetch-and-extract call.

    On success `error` is None and `value` holds the extracted string, or None
    when the expression matched nothing. On failure `error` names the kind and
    `message` carries the diagnostic text.
    """

    value: Optional[str] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[str], url: Optional[str] = None) -> "FetchResult":
        return cls(value=value, url=url)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "", url: Optional[str] = None) -> "FetchResult":
        return cls(error=error, message=message, url=url)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Render the result for job payloads."""
        return {
            "status": "success" if self.ok else "failed",
            "value": self.value,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "url": self.url
        }
