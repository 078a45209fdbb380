"""XPath selection over a parsed XML response."""
from typing import Dict, Any, Optional, Tuple
import logging
import re

from lxml import etree

from pipeline.models import ErrorKind

logger = logging.getLogger(__name__)

# String literals in an XPath expression, kept apart from name tests
_LITERAL = re.compile(r'("[^"]*"|\'[^\']*\')')


class XPathSelectError(Exception):
    """Raised when a selection cannot produce a value.

    Carries the ErrorKind the caller should report.
    """

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


def bind_namespaces(root: etree._Element, prefix: str) -> Dict[str, str]:
    """Bind prefix to the root element's namespace URI.

    Args:
        root: Document root element
        prefix: Prefix to bind; blank means no binding

    Returns:
        Namespace mapping for XPath evaluation. Empty when the prefix is
        blank or the root has no namespace, since XPath cannot map a
        prefix to the null namespace.
    """
    if not prefix or not prefix.strip():
        return {}

    namespace = etree.QName(root).namespace
    if not namespace:
        return {}

    logger.info(f"Binding namespace prefix '{prefix.strip()}' to '{namespace}'")
    return {prefix.strip(): namespace}


def unqualify(xpath: str, prefix: str) -> str:
    """Drop prefix from the qualified names of xpath.

    Unprefixed name tests select elements with no namespace, which is what
    a prefix bound to the empty namespace URI selects.
    """
    name_test = re.compile(rf'(?<![\w.\-$]){re.escape(prefix)}:(?=[^\W\d]|\*)')
    parts = _LITERAL.split(xpath)
    # odd indices are the captured literals
    return "".join(
        part if i % 2 else name_test.sub("", part)
        for i, part in enumerate(parts)
    )


def node_kind(node: Any) -> str:
    """Name the kind of an XPath result item."""
    if isinstance(node, etree._ElementUnicodeResult):
        if node.is_attribute:
            return "Attribute"
        return "Text"
    if isinstance(node, tuple):
        # namespace:: axis results come back as (prefix, uri) pairs
        return "Namespace"
    if isinstance(node, etree._Element):
        if node.tag is etree.Comment:
            return "Comment"
        if node.tag is etree.ProcessingInstruction:
            return "ProcessingInstruction"
        if node.tag is etree.Entity:
            return "EntityReference"
        return "Element"
    if isinstance(node, str):
        return "Text"
    return type(node).__name__


def _evaluate(root: etree._Element, xpath: str, namespaces: Dict[str, str]) -> Any:
    try:
        return root.xpath(xpath, namespaces=namespaces)
    except (etree.XPathError, TypeError, ValueError) as e:
        raise XPathSelectError(ErrorKind.XPATH_EVALUATION_FAILED, str(e) or "Invalid expression")


def select_single_node(root: etree._Element, xpath: str, namespaces: Dict[str, str]) -> Optional[Any]:
    """Evaluate xpath against root and return the first node in document order.

    Raises:
        XPathSelectError: expression invalid, evaluation failed, the
            expression does not yield a node-set, or the first node is the
            document node
    """
    result = _evaluate(root, xpath, namespaces)

    if not isinstance(result, list):
        raise XPathSelectError(
            ErrorKind.XPATH_EVALUATION_FAILED,
            f"Expression must evaluate to a node-set: {xpath}"
        )

    # lxml leaves the document node out of node-set results; only the
    # document node has no parent
    if _evaluate(root, f"boolean(({xpath})[1][not(..)])", namespaces):
        raise XPathSelectError(ErrorKind.UNSUPPORTED_NODE_KIND, "Document")

    if not result:
        return None

    return result[0]


def extract_value(node: Any) -> Tuple[str, str]:
    """Extract the string value of a matched node.

    Returns:
        Tuple of (node kind, value)

    Raises:
        XPathSelectError: node is neither an attribute nor an element
    """
    kind = node_kind(node)

    if kind == "Attribute":
        return kind, str(node)

    if kind == "Element":
        # string-value: every descendant text node, comments and PIs excluded
        return kind, str(node.xpath("string()"))

    raise XPathSelectError(ErrorKind.UNSUPPORTED_NODE_KIND, kind)


def select_value(root: etree._Element, xpath: str, prefix: str = "") -> Optional[str]:
    """Bind the namespace prefix, evaluate xpath and extract the first match.

    Returns:
        Extracted string, or None when nothing matched
    """
    namespaces = bind_namespaces(root, prefix)
    if prefix and prefix.strip() and not namespaces:
        xpath = unqualify(xpath, prefix.strip())

    node = select_single_node(root, xpath, namespaces)

    if node is None:
        logger.info(f"XPath '{xpath}' matched no node")
        return None

    kind, value = extract_value(node)
    logger.info(f"XPath '{xpath}' matched {kind} node")
    return value
