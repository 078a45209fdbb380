"""Message catalog for workflow node text."""
from typing import Dict
import logging

from pipeline.models import ErrorKind, FetchResult

logger = logging.getLogger(__name__)

MESSAGE_GROUP = "WebserviceWorkflowMessages"

MESSAGES: Dict[str, Dict[str, str]] = {
    MESSAGE_GROUP: {
        "NodeCategoryWebservices": "Webservices",
        "NodeGetXmlWebserviceName": "Get XML Webservice",
        "NodeGetXmlWebserviceNameBare": "Get XML",
        "NodeGetXmlWebserviceNameFormat": "Get XML from {0}",
        "NodeGetXmlWebserviceDescription": (
            "Performs a GET request on a webservice that returns XML and stores "
            "the value selected by an XPath query in a workflow variable."
        ),
        "NodeGetXmlWebserviceAddrName": "Address",
        "NodeGetXmlWebserviceAddrDesc": "Base URL of the webservice, without a query string.",
        "NodeGetXmlWebserviceQueryStringName": "Query String",
        "NodeGetXmlWebserviceQueryStringDesc": "Query string appended to the address. May reference variables.",
        "NodeGetXmlWebserviceNsPrefixName": "Namespace Prefix",
        "NodeGetXmlWebserviceNsPrefixDesc": "Prefix bound to the response's default namespace for use in the XPath query.",
        "NodeGetXmlWebserviceResponseQueryName": "Response Query",
        "NodeGetXmlWebserviceResponseQueryDesc": "XPath query selecting an element or attribute in the response.",
        "NodeGetXmlWebserviceDestVariableName": "Destination Variable",
        "NodeGetXmlWebserviceDestVariableDesc": "Name of the workflow variable that receives the selected value.",
        "ErrorInvalidVariableNameFormat": "The destination variable name is invalid.",
        "ErrorUriFormatExceptionFormat": "The address '{0}' is not a valid URL.",
        "ErrorRequestExceptionFormat": "The webservice request failed: {0}",
        "ErrorXPathExceptionFormat": "The response query could not be evaluated: {0}",
        "ErrorUnknownNodeTypeFormat": "The response query selected an unsupported {0} node.",
        "ErrorFormulaFormat": "A parameter formula could not be evaluated: {0}",
    }
}

ERROR_MESSAGE_IDS: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_VARIABLE_NAME: "ErrorInvalidVariableNameFormat",
    ErrorKind.INVALID_URL: "ErrorUriFormatExceptionFormat",
    ErrorKind.REQUEST_FAILED: "ErrorRequestExceptionFormat",
    ErrorKind.XPATH_EVALUATION_FAILED: "ErrorXPathExceptionFormat",
    ErrorKind.UNSUPPORTED_NODE_KIND: "ErrorUnknownNodeTypeFormat",
}


def get_message(group: str, message_id: str, *params) -> str:
    """Look up and format a message.

    Unknown ids resolve to the id itself so missing catalog entries stay visible.
    """
    template = MESSAGES.get(group, {}).get(message_id)
    if template is None:
        logger.warning(f"Message {group}/{message_id} not found")
        return message_id
    return template.format(*params) if params else template


def format_failure(result: FetchResult, group: str = MESSAGE_GROUP) -> str:
    """Render a failed FetchResult as a user-facing message."""
    if result.ok:
        raise ValueError("format_failure requires a failed result")
    return get_message(group, ERROR_MESSAGE_IDS[result.error], result.message or "")
