"""Get XML Webservice workflow node.

Host-side wrapper around the XML fetch primitive: holds the node parameters,
resolves formula parameters, runs the fetch and writes the selected value to
the destination workflow variable.
"""
from typing import Dict, Any, List, Optional
from urllib.parse import urlsplit
import logging

from pipeline.models import RequestConfig, FetchResult
from pipeline.primitives.xml_fetch import NODE_TYPE, XmlFetchExtractor, InvalidUrlError, normalize_url
from resolver import FormulaResolver, FormulaError
from storage.base import VariableStore
from workflow.messages import MESSAGE_GROUP, get_message, format_failure

logger = logging.getLogger(__name__)

PARAMETER_URL = "ADDRESS"
PARAMETER_QUERY = "QUERY"
PARAMETER_NAMESPACE_PREFIX = "NSPREFIX"
PARAMETER_XPATH = "XPATH"
PARAMETER_VARIABLE_NAME = "VARIABLENAME"

NODE_METADATA: Dict[str, Any] = {
    "node_type": NODE_TYPE,
    "name": "NodeGetXmlWebserviceName",
    "category": "NodeCategoryWebservices",
    "icon": "GEAR",
    "description": "NodeGetXmlWebserviceDescription",
    "message_group": MESSAGE_GROUP,
    "tags": ["output"],
    "follows_tags": ["data"],
    "parameters": [
        {
            "name": PARAMETER_URL,
            "label": "NodeGetXmlWebserviceAddrName",
            "description": "NodeGetXmlWebserviceAddrDesc",
            "mandatory": True,
            "formula": False
        },
        {
            "name": PARAMETER_QUERY,
            "label": "NodeGetXmlWebserviceQueryStringName",
            "description": "NodeGetXmlWebserviceQueryStringDesc",
            "mandatory": False,
            "formula": True
        },
        {
            "name": PARAMETER_NAMESPACE_PREFIX,
            "label": "NodeGetXmlWebserviceNsPrefixName",
            "description": "NodeGetXmlWebserviceNsPrefixDesc",
            "mandatory": False,
            "formula": False
        },
        {
            "name": PARAMETER_XPATH,
            "label": "NodeGetXmlWebserviceResponseQueryName",
            "description": "NodeGetXmlWebserviceResponseQueryDesc",
            "mandatory": True,
            "formula": False
        },
        {
            "name": PARAMETER_VARIABLE_NAME,
            "label": "NodeGetXmlWebserviceDestVariableName",
            "description": "NodeGetXmlWebserviceDestVariableDesc",
            "mandatory": True,
            "formula": True
        }
    ]
}


def _blank_to_empty(value: Optional[str]) -> str:
    return "" if value is None or not str(value).strip() else str(value)


class GetXmlWebserviceNode:
    """Workflow node that GETs an XML webservice and stores an XPath result."""

    node_type = NODE_TYPE
    metadata = NODE_METADATA

    def __init__(
        self,
        store: VariableStore,
        parameters: Optional[Dict[str, Any]] = None,
        extractor: Optional[XmlFetchExtractor] = None,
        timeout: Optional[float] = None
    ):
        """Initialize node.

        Args:
            store: Variable store for formula resolution, results and diagnostics
            parameters: Initial parameter values keyed by parameter name
            extractor: Optional extractor; built against store when omitted
            timeout: Transport timeout passed to the default extractor
        """
        self.store = store
        self.parameters: Dict[str, str] = {}
        self.extractor = extractor or XmlFetchExtractor(diagnostics=store, timeout=timeout)
        self.resolver = FormulaResolver(store)
        self.errors: List[str] = []
        self.result: Optional[FetchResult] = None
        self.target_variable: Optional[str] = None

        for name, value in (parameters or {}).items():
            self.set_parameter(name, value)

    def set_parameter(self, name: str, value: Any):
        """Set a parameter through its property so normalisation applies."""
        setters = {
            PARAMETER_URL: "request_address",
            PARAMETER_QUERY: "query_string",
            PARAMETER_NAMESPACE_PREFIX: "namespace_prefix",
            PARAMETER_XPATH: "xpath_query",
            PARAMETER_VARIABLE_NAME: "variable_name",
        }
        if name not in setters:
            raise ValueError(f"Unknown parameter for {NODE_TYPE}: {name}")
        setattr(self, setters[name], None if value is None else str(value))

    @property
    def request_address(self) -> str:
        return self.parameters.get(PARAMETER_URL, "")

    @request_address.setter
    def request_address(self, value: Optional[str]):
        self.parameters[PARAMETER_URL] = _blank_to_empty(value).rstrip('?')

    @property
    def query_string(self) -> str:
        return self.parameters.get(PARAMETER_QUERY, "")

    @query_string.setter
    def query_string(self, value: Optional[str]):
        self.parameters[PARAMETER_QUERY] = _blank_to_empty(value)

    @property
    def namespace_prefix(self) -> str:
        return self.parameters.get(PARAMETER_NAMESPACE_PREFIX, "")

    @namespace_prefix.setter
    def namespace_prefix(self, value: Optional[str]):
        self.parameters[PARAMETER_NAMESPACE_PREFIX] = _blank_to_empty(value)

    @property
    def xpath_query(self) -> str:
        return self.parameters.get(PARAMETER_XPATH, "")

    @xpath_query.setter
    def xpath_query(self, value: Optional[str]):
        self.parameters[PARAMETER_XPATH] = _blank_to_empty(value)

    @property
    def variable_name(self) -> str:
        return self.parameters.get(PARAMETER_VARIABLE_NAME, "")

    @variable_name.setter
    def variable_name(self, value: Optional[str]):
        self.parameters[PARAMETER_VARIABLE_NAME] = _blank_to_empty(value)

    def get_message(self, message_id: str, *params) -> str:
        return get_message(MESSAGE_GROUP, message_id, *params)

    def auto_name(self) -> str:
        """Default display name, including the webservice host when known."""
        name = self.get_message("NodeGetXmlWebserviceNameBare")

        if self.request_address:
            try:
                host = urlsplit(normalize_url(self.request_address)).hostname
            except InvalidUrlError:
                host = None
            if host:
                name = self.get_message("NodeGetXmlWebserviceNameFormat", host)

        return name

    def perform(self) -> bool:
        """Run the node.

        Returns:
            True when the variable was written, False on failure (see errors)
        """
        logger.info(f"Performing {NODE_TYPE} node")
        self.errors = []
        self.result = None
        self.target_variable = None

        try:
            variable_name = self.resolver.resolve(self.variable_name)
            query = self.resolver.resolve(self.query_string)
            self.target_variable = variable_name
        except FormulaError as e:
            logger.warning(f"Formula resolution failed: {e}")
            self.errors.append(self.get_message("ErrorFormulaFormat", str(e)))
            return False

        config = RequestConfig.create(
            address=self.request_address,
            query=query,
            namespace_prefix=self.namespace_prefix,
            xpath=self.xpath_query,
            variable_name=variable_name
        )

        self.result = self.extractor.execute(config)
        if not self.result.ok:
            message = format_failure(self.result)
            logger.warning(f"{NODE_TYPE} failed: {message}")
            self.errors.append(message)
            return False

        self.store.set(config.variable_name, self.result.value)
        logger.info(f"Set variable {config.variable_name}")
        return True
