"""Tests for the XML webservice fetch primitive."""
import pytest
import requests
from unittest.mock import Mock, patch
from lxml import etree

from pipeline.models import ErrorKind, FetchResult, RequestConfig
from pipeline.primitives import xml_fetch
from pipeline.primitives.xml_fetch import DEBUG_URL_KEY, XmlFetchExtractor, build_url, normalize_url
from pipeline.primitives.xpath_select import (
    XPathSelectError, bind_namespaces, extract_value, node_kind, select_value, unqualify
)
from storage.memory import MemoryVariableStore

NAMESPACED_DOC = b'<root xmlns="urn:ns"><v>42</v></root>'


def make_response(content: bytes):
    """Mock requests response carrying an XML body."""
    mock_response = Mock()
    mock_response.content = content
    mock_response.raise_for_status.return_value = None
    return mock_response


class TestUrlBuilding:
    """Test suite for URL merging and normalisation."""

    def test_address_only(self):
        """Test blank query leaves the address untouched."""
        assert build_url("http://x/a", "") == "http://x/a"
        assert build_url("http://x/a", "   ") == "http://x/a"

    def test_query_is_appended(self):
        """Test query string is joined with a single '?'."""
        assert build_url("http://x/a", "b=1") == "http://x/a?b=1"

    def test_question_marks_are_stripped(self):
        """Test trailing '?' on address and leading '?' on query."""
        assert build_url("http://x/a?", "?b=1") == build_url("http://x/a", "b=1")
        assert build_url("http://x/a?", "?b=1") == "http://x/a?b=1"

    def test_normalize_adds_root_path(self):
        """Test normalisation of an address without a path."""
        assert normalize_url("http://example.com") == "http://example.com/"

    def test_normalize_keeps_query(self):
        """Test normalisation preserves path and query."""
        assert normalize_url("https://example.com/api/v1?id=5&fmt=xml") == \
            "https://example.com/api/v1?id=5&fmt=xml"

    @pytest.mark.parametrize("url", [
        "http://127.0.0.1:8080/svc",
        "http://[::1]/svc",
        "http://my_host.local/svc",
        "http://example.com./svc",
    ])
    def test_normalize_accepts_hosts(self, url):
        """Test IP literals and DNS-style hosts pass normalisation."""
        assert normalize_url(url) == url

    @pytest.mark.parametrize("url", [
        "",
        "example.com/path",
        "/relative/path",
        "http://",
        "localhost:8080/service",
        "http://a..b/x",
        "http://-bad-/x",
        "http://[::zz]/x",
    ])
    def test_normalize_rejects_non_absolute(self, url):
        """Test URLs without scheme or host are rejected."""
        with pytest.raises(xml_fetch.InvalidUrlError):
            normalize_url(url)


class TestRequestConfig:
    """Test suite for RequestConfig construction."""

    def test_create_normalizes_values(self):
        """Test whitespace-only values become empty and '?' is stripped."""
        config = RequestConfig.create(
            address="http://x/a??",
            query="   ",
            namespace_prefix=" n ",
            xpath="n:v",
            variable_name="\t"
        )

        assert config.address == "http://x/a"
        assert config.query == ""
        assert config.namespace_prefix == "n"
        assert config.xpath == "n:v"
        assert config.variable_name == ""

    def test_config_is_immutable(self):
        """Test RequestConfig cannot be modified."""
        config = RequestConfig.create("http://x/a", "v", "OUT")

        with pytest.raises(AttributeError):
            config.address = "http://y/"


class TestXmlFetchExtractor:
    """Test suite for XmlFetchExtractor.execute."""

    @pytest.fixture
    def store(self):
        """Diagnostics store."""
        return MemoryVariableStore()

    @pytest.fixture
    def extractor(self, store):
        """Extractor writing diagnostics into the store."""
        return XmlFetchExtractor(diagnostics=store)

    @pytest.mark.parametrize("variable_name", ["", "   ", "\t\n"])
    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_blank_variable_name(self, mock_get, variable_name, extractor, store):
        """Test blank variable names fail before any network call."""
        config = RequestConfig(address="http://x/a", xpath="v", variable_name=variable_name)

        result = extractor.execute(config)

        assert result.error == ErrorKind.INVALID_VARIABLE_NAME
        mock_get.assert_not_called()
        assert DEBUG_URL_KEY not in store

    @pytest.mark.parametrize("address,query", [
        ("not a url", ""),
        ("example.com/service", "id=1"),
        ("", "id=1"),
        ("http://", ""),
        ("http://exa<mple.com/x", ""),
        ("http://a..b/x", ""),
        ("http://-bad-/x", ""),
    ])
    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_invalid_url(self, mock_get, address, query, extractor, store):
        """Test address and query that do not form an absolute URI."""
        config = RequestConfig.create(address=address, query=query, xpath="v", variable_name="OUT")

        result = extractor.execute(config)

        assert result.error == ErrorKind.INVALID_URL
        assert result.message == build_url(config.address, config.query)
        mock_get.assert_not_called()
        assert DEBUG_URL_KEY not in store

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_stripped_question_marks_fetch_same_url(self, mock_get, extractor, store):
        """Test '?' handling produces one effective URL."""
        mock_get.return_value = make_response(b"<root><v>1</v></root>")

        config = RequestConfig.create(address="http://x/a?", query="?b=1", xpath="v", variable_name="OUT")
        result = extractor.execute(config)

        assert result.ok
        mock_get.assert_called_once_with("http://x/a?b=1")
        assert store.get(DEBUG_URL_KEY) == "http://x/a?b=1"
        assert result.url == "http://x/a?b=1"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_namespace_prefix_element_text(self, mock_get, extractor):
        """Test element text extraction through the bound default namespace."""
        mock_get.return_value = make_response(NAMESPACED_DOC)

        config = RequestConfig.create(
            address="http://x/svc", namespace_prefix="n", xpath="n:v", variable_name="OUT"
        )
        result = extractor.execute(config)

        assert result == FetchResult.success("42", url="http://x/svc")

    @pytest.mark.parametrize("xpath,expected", [
        ("v", "1"),
        ("n:v", "1"),
        ("n:w/@n:id", "7"),
        ("n:v[. = 'n:v']", None),
        ("n:missing", None),
    ])
    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_namespace_prefix_without_root_namespace(self, mock_get, xpath, expected, extractor):
        """Test a prefix on a document with no namespace selects unqualified nodes."""
        mock_get.return_value = make_response(b'<r><v>1</v><w id="7"/></r>')

        config = RequestConfig.create(
            address="http://x/", namespace_prefix="n", xpath=xpath, variable_name="OUT"
        )
        result = extractor.execute(config)

        assert result == FetchResult.success(expected, url="http://x/")

    @pytest.mark.parametrize("xpath", ["/", "/ | //v", ".."])
    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_document_node_is_unsupported(self, mock_get, xpath, extractor, store):
        """Test selecting the document node fails with its kind."""
        mock_get.return_value = make_response(b"<r><v>1</v></r>")

        config = RequestConfig.create(address="http://x/", xpath=xpath, variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.UNSUPPORTED_NODE_KIND
        assert result.message == "Document"
        assert "OUT" not in store

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_missing_attribute_is_success(self, mock_get, extractor):
        """Test an expression matching nothing yields None, not a failure."""
        mock_get.return_value = make_response(NAMESPACED_DOC)

        config = RequestConfig.create(
            address="http://x/svc", namespace_prefix="n", xpath="n:v/@attr", variable_name="OUT"
        )
        result = extractor.execute(config)

        assert result.ok
        assert result.value is None

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_attribute_value(self, mock_get, extractor):
        """Test attribute extraction."""
        mock_get.return_value = make_response(b'<root><v id="7">x</v></root>')

        config = RequestConfig.create(address="http://x/svc", xpath="v/@id", variable_name="OUT")
        result = extractor.execute(config)

        assert result.ok
        assert result.value == "7"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_comment_is_unsupported(self, mock_get, extractor):
        """Test a comment match fails with the node kind."""
        mock_get.return_value = make_response(b"<root><!-- note --><v>1</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath="comment()", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.UNSUPPORTED_NODE_KIND
        assert result.message == "Comment"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_text_node_is_unsupported(self, mock_get, extractor):
        """Test a directly selected text node is rejected."""
        mock_get.return_value = make_response(b"<root><v>1</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath="v/text()", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.UNSUPPORTED_NODE_KIND
        assert result.message == "Text"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_unreachable_host(self, mock_get, extractor, store):
        """Test transport failure carries the transport's message."""
        mock_get.side_effect = requests.exceptions.ConnectionError("Failed to establish a new connection")

        config = RequestConfig.create(address="http://unreachable.invalid/svc", xpath="v", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.REQUEST_FAILED
        assert "Failed to establish a new connection" in result.message
        assert "OUT" not in store
        # URL was valid, so the debug write still happened
        assert store.get(DEBUG_URL_KEY) == "http://unreachable.invalid/svc"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_http_error_status(self, mock_get, extractor):
        """Test non-2xx status is reported as a request failure."""
        mock_response = make_response(b"")
        mock_response.raise_for_status.side_effect = requests.exceptions.HTTPError("500 Server Error")
        mock_get.return_value = mock_response

        config = RequestConfig.create(address="http://x/svc", xpath="v", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.REQUEST_FAILED
        assert "500 Server Error" in result.message

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_malformed_xml(self, mock_get, extractor):
        """Test malformed XML is folded into the request failure kind."""
        mock_get.return_value = make_response(b"<root><v>1</root>")

        config = RequestConfig.create(address="http://x/svc", xpath="v", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.REQUEST_FAILED
        assert result.message

    @pytest.mark.parametrize("xpath", ["v[", "n:v", ""])
    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_invalid_xpath(self, mock_get, xpath, extractor):
        """Test invalid expressions and undefined prefixes."""
        mock_get.return_value = make_response(b"<root><v>1</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath=xpath, variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.XPATH_EVALUATION_FAILED
        assert result.message

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_non_node_set_expression(self, mock_get, extractor):
        """Test scalar expressions are rejected."""
        mock_get.return_value = make_response(b"<root><v>1</v><v>2</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath="count(v)", variable_name="OUT")
        result = extractor.execute(config)

        assert result.error == ErrorKind.XPATH_EVALUATION_FAILED
        assert "node-set" in result.message

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_diagnostics_failure_is_ignored(self, mock_get):
        """Test a failing debug write does not affect the result."""
        mock_get.return_value = make_response(b"<root><v>1</v></root>")
        diagnostics = Mock()
        diagnostics.set.side_effect = RuntimeError("store unavailable")

        config = RequestConfig.create(address="http://x/svc", xpath="v", variable_name="OUT")
        result = XmlFetchExtractor(diagnostics=diagnostics).execute(config)

        assert result.ok
        assert result.value == "1"

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_timeout_passed_when_configured(self, mock_get):
        """Test a configured timeout reaches the transport."""
        mock_get.return_value = make_response(b"<root><v>1</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath="v", variable_name="OUT")
        XmlFetchExtractor(timeout=5).execute(config)

        mock_get.assert_called_once_with("http://x/svc", timeout=5)

    def test_custom_transport(self):
        """Test a session-like transport is used instead of requests."""
        session = Mock()
        session.get.return_value = make_response(b"<root><v>hello</v></root>")

        config = RequestConfig.create(address="http://x/svc", xpath="v", variable_name="OUT")
        result = XmlFetchExtractor(transport=session).execute(config)

        assert result.value == "hello"
        session.get.assert_called_once_with("http://x/svc")

    @patch('pipeline.primitives.xml_fetch.requests.get')
    def test_module_execute(self, mock_get):
        """Test module-level execute wrapper."""
        mock_get.return_value = make_response(NAMESPACED_DOC)
        store = MemoryVariableStore()

        config = RequestConfig.create(
            address="http://x/svc", namespace_prefix="n", xpath="n:v", variable_name="OUT"
        )
        result = xml_fetch.execute(config, diagnostics=store)

        assert result.to_dict() == {
            "status": "success",
            "value": "42",
            "error": None,
            "message": None,
            "url": "http://x/svc"
        }
        assert store.get(DEBUG_URL_KEY) == "http://x/svc"


class TestXPathSelect:
    """Test suite for XPath selection helpers."""

    def test_bind_namespaces_blank_prefix(self):
        """Test blank prefix registers no binding."""
        root = etree.fromstring(NAMESPACED_DOC)

        assert bind_namespaces(root, "") == {}
        assert bind_namespaces(root, "   ") == {}

    def test_bind_namespaces_default_namespace(self):
        """Test prefix is bound to the root namespace."""
        root = etree.fromstring(NAMESPACED_DOC)

        assert bind_namespaces(root, "n") == {"n": "urn:ns"}

    def test_bind_namespaces_without_namespace(self):
        """Test root without namespace registers no binding."""
        root = etree.fromstring(b"<root><v>1</v></root>")

        assert bind_namespaces(root, "n") == {}

    def test_unqualify_keeps_literals_and_axes(self):
        """Test only prefixed name tests lose their prefix."""
        assert unqualify("n:a/child::n:b/@n:c", "n") == "a/child::b/@c"
        assert unqualify("n:a[. = 'n:x']", "n") == "a[. = 'n:x']"
        assert unqualify("nn:a/n:*", "n") == "nn:a/*"

    def test_element_inner_text(self):
        """Test element value concatenates descendant text only."""
        root = etree.fromstring(b"<root><v>a<b>b</b>c<!--x-->d</v></root>")

        assert select_value(root, "v") == "abcd"

    def test_element_whitespace_preserved(self):
        """Test no whitespace normalisation is applied."""
        root = etree.fromstring(b"<root><v>  spaced  </v></root>")

        assert select_value(root, "v") == "  spaced  "

    def test_first_match_in_document_order(self):
        """Test node-set expressions take the first node."""
        root = etree.fromstring(b"<root><v>1</v><w><v>2</v></w><v>3</v></root>")

        assert select_value(root, "//v") == "1"

    def test_evaluated_against_root_element(self):
        """Test relative expressions start at the root element."""
        root = etree.fromstring(b"<root><v>1</v></root>")

        assert select_value(root, "v") == "1"
        assert select_value(root, "root") is None
        assert select_value(root, ".") == "1"

    def test_processing_instruction_is_unsupported(self):
        """Test processing instruction kind is reported."""
        root = etree.fromstring(b"<root><?app data?><v>1</v></root>")

        with pytest.raises(XPathSelectError) as exc_info:
            select_value(root, "processing-instruction()")

        assert exc_info.value.kind == ErrorKind.UNSUPPORTED_NODE_KIND
        assert str(exc_info.value) == "ProcessingInstruction"

    def test_node_kinds(self):
        """Test node kind names for XPath result items."""
        root = etree.fromstring(b'<root a="1"><!--c--><v>t</v></root>')

        assert node_kind(root.xpath("v")[0]) == "Element"
        assert node_kind(root.xpath("@a")[0]) == "Attribute"
        assert node_kind(root.xpath("comment()")[0]) == "Comment"
        assert node_kind(root.xpath("v/text()")[0]) == "Text"

    def test_extract_value_attribute(self):
        """Test extract_value returns kind and value."""
        root = etree.fromstring(b'<root a="1"/>')

        assert extract_value(root.xpath("@a")[0]) == ("Attribute", "1")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
