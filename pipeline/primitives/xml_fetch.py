"""XML webservice fetch primitive.

Performs a GET against an XML-returning webservice, evaluates an XPath
expression against the response and returns the extracted value. Every
failure is returned as a classified FetchResult; nothing is raised.
"""
from typing import Any, Optional
from urllib.parse import urlsplit
import ipaddress
import logging
import re

import requests
from lxml import etree

from pipeline.models import ErrorKind, FetchResult, RequestConfig
from pipeline.primitives.xpath_select import XPathSelectError, select_value

logger = logging.getLogger(__name__)

NODE_TYPE = "NODE_GETXMLWS"
DEBUG_URL_KEY = f"DEBUG_{NODE_TYPE}_URL"

# DNS-style host label; IPv4 dotted quads match as well
_HOST_LABEL = re.compile(r"^[A-Za-z0-9_](?:[A-Za-z0-9_-]*[A-Za-z0-9_])?$")


class InvalidUrlError(ValueError):
    """Raised when a URL cannot be normalized as an absolute URI."""


def build_url(address: str, query: str = "") -> str:
    """Merge address and query string into the effective request URL."""
    address = (address or "").rstrip('?')
    if not query or not query.strip():
        return address
    return f"{address}?{query.lstrip('?')}"


def normalize_url(url: str) -> str:
    """Normalize url as an absolute URI.

    Raises:
        InvalidUrlError: no scheme, no host, a malformed host, or otherwise
            unparsable
    """
    prepared = requests.models.PreparedRequest()
    try:
        prepared.prepare_url(url, None)
    except (requests.exceptions.MissingSchema, requests.exceptions.InvalidURL) as e:
        raise InvalidUrlError(str(e))

    # non-http schemes are passed through unparsed by requests
    parts = urlsplit(prepared.url)
    if not parts.scheme or not parts.netloc:
        raise InvalidUrlError(f"Invalid URL {url!r}: absolute URI with a host required")

    try:
        parts.port
    except ValueError as e:
        raise InvalidUrlError(f"Invalid URL {url!r}: {e}")

    if not _valid_host(parts):
        raise InvalidUrlError(f"Invalid URL {url!r}: malformed host {parts.hostname!r}")

    return prepared.url


def _valid_host(parts) -> bool:
    host = parts.hostname
    if not host:
        return False

    if '[' in parts.netloc:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return False
        return True

    labels = host[:-1].split('.') if host.endswith('.') else host.split('.')
    return all(_HOST_LABEL.match(label) for label in labels)


def parse_document(content: bytes) -> etree._Element:
    """Parse a response body as a generic XML document."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    return etree.fromstring(content, parser=parser)


class XmlFetchExtractor:
    """Fetch an XML document over HTTP and extract one value with XPath."""

    def __init__(self, transport: Any = None, diagnostics: Any = None, timeout: Optional[float] = None):
        """Initialize extractor.

        Args:
            transport: Object exposing get(url, **kwargs); defaults to requests
            diagnostics: Optional variable store receiving the debug URL
            timeout: Transport timeout in seconds; None keeps the transport default
        """
        self.transport = transport if transport is not None else requests
        self.diagnostics = diagnostics
        self.timeout = timeout

    def execute(self, config: RequestConfig) -> FetchResult:
        """Run the fetch-and-extract pipeline for one config.

        Args:
            config: Request configuration

        Returns:
            FetchResult with the extracted value or a classified failure
        """
        if not config.variable_name or not config.variable_name.strip():
            logger.warning("Invalid destination variable name")
            return FetchResult.failure(ErrorKind.INVALID_VARIABLE_NAME, config.variable_name or "")

        url = build_url(config.address, config.query)
        try:
            url = normalize_url(url)
        except InvalidUrlError as e:
            logger.warning(f"Invalid URL {url}: {e}")
            return FetchResult.failure(ErrorKind.INVALID_URL, url)

        self._record_url(url)

        logger.info(f"HTTP GET {url}")
        try:
            response = self._get(url)
            response.raise_for_status()
            root = parse_document(response.content)
        except (requests.exceptions.RequestException, etree.XMLSyntaxError, ValueError) as e:
            logger.warning(f"Request failed for {url}: {e}")
            return FetchResult.failure(ErrorKind.REQUEST_FAILED, str(e), url=url)

        try:
            value = select_value(root, config.xpath, config.namespace_prefix)
        except XPathSelectError as e:
            logger.warning(f"XPath '{config.xpath}' failed: {e.kind.value}: {e}")
            return FetchResult.failure(e.kind, str(e), url=url)

        logger.info(f"Extracted value for variable {config.variable_name}")
        return FetchResult.success(value, url=url)

    def _get(self, url: str):
        if self.timeout is None:
            return self.transport.get(url)
        return self.transport.get(url, timeout=self.timeout)

    def _record_url(self, url: str):
        """Write the normalized URL to the diagnostics store, best effort."""
        if self.diagnostics is None:
            return
        try:
            self.diagnostics.set(DEBUG_URL_KEY, url)
        except Exception as e:
            logger.error(f"Failed to record {DEBUG_URL_KEY}: {e}")


def execute(config: RequestConfig, diagnostics: Any = None, timeout: Optional[float] = None) -> FetchResult:
    """Execute one fetch-and-extract call with the default transport.

    Args:
        config: Request configuration
        diagnostics: Optional variable store receiving the debug URL
        timeout: Optional transport timeout in seconds

    Returns:
        FetchResult
    """
    return XmlFetchExtractor(diagnostics=diagnostics, timeout=timeout).execute(config)
