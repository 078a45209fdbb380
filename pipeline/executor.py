"""Node execution engine."""
from typing import Dict, Any, Optional
import logging

from storage.base import VariableStore
from workflow.node import GetXmlWebserviceNode

logger = logging.getLogger(__name__)


class NodeExecutor:
    """Execute single workflow nodes by node type."""

    def __init__(self, timeout: Optional[float] = None):
        """Initialize executor.

        Args:
            timeout: Transport timeout handed to nodes that fetch over HTTP
        """
        self.timeout = timeout
        self.nodes = {
            GetXmlWebserviceNode.node_type: GetXmlWebserviceNode
        }

    def execute(self, node_type: str, parameters: Dict[str, Any], store: VariableStore) -> Dict[str, Any]:
        """Execute one node against a variable store.

        Args:
            node_type: Registered node type, e.g. NODE_GETXMLWS
            parameters: Node parameter values keyed by parameter name
            store: Variable store for the workflow run

        Returns:
            Result dictionary with status, variable, value and errors
        """
        if node_type not in self.nodes:
            raise ValueError(f"Unknown node type: {node_type}")

        logger.info(f"Executing node {node_type}")

        node = self.nodes[node_type](store, parameters=parameters or {}, timeout=self.timeout)
        succeeded = node.perform()
        result = node.result

        if succeeded:
            logger.info(f"Node {node_type} completed successfully")
        else:
            logger.warning(f"Node {node_type} failed: {'; '.join(node.errors)}")

        return {
            "status": "success" if succeeded else "failed",
            "node_type": node_type,
            "node_name": node.auto_name(),
            "variable": node.target_variable or node.variable_name,
            "value": result.value if succeeded else None,
            "error": result.error.value if result is not None and result.error else None,
            "url": result.url if result is not None else None,
            "errors": list(node.errors)
        }
