"""Node Runner Service - Main entry point.

This service executes XML webservice nodes during workflow execution.
It is a Redis worker that picks single-node jobs from a Redis stream, runs
the node against the run's variables, and signals the outcome back to the
workflow coordinator.
"""
import os
import sys
import signal
import logging
import time
import yaml
from threading import Thread
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any, Optional
from dotenv import load_dotenv

# FastAPI for HTTP server
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import uvicorn

from pipeline.executor import NodeExecutor
from storage.memory import MemoryVariableStore
from storage.redis_client import RedisClient

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ExecuteRequest(BaseModel):
    """Body of the /test/execute endpoint."""

    node_type: str = "NODE_GETXMLWS"
    parameters: Dict[str, Optional[str]] = {}
    variables: Dict[str, Any] = {}


class NodeRunnerService:
    """Node runner service that processes jobs from a Redis stream."""

    def __init__(self, config: Dict[str, Any], redis_client: Optional[RedisClient] = None):
        """Initialize node runner service.

        Args:
            config: Service configuration dictionary
            redis_client: Optional pre-built Redis client
        """
        self.config = config
        self.running = False

        logger.info("Initializing node runner service...")

        self.redis = redis_client or RedisClient(config['redis'])
        fetch_timeout = (config.get('fetch') or {}).get('timeout_sec')
        self.executor = NodeExecutor(timeout=float(fetch_timeout) if fetch_timeout else None)

        # Worker pool
        self.num_workers = config['service'].get('workers', 4)
        self.worker_pool = ThreadPoolExecutor(max_workers=self.num_workers)

        logger.info(f"Node runner service initialized with {self.num_workers} workers")

    def start(self):
        """Start the node runner service (HTTP server + worker pool)."""
        logger.info("Starting node runner service...")
        self.running = True

        # Start HTTP server in background thread
        http_thread = Thread(target=self._run_http_server, daemon=True)
        http_thread.start()
        logger.info("HTTP server started in background")

        logger.info(f"Starting {self.num_workers} workers...")
        futures = []
        for i in range(self.num_workers):
            future = self.worker_pool.submit(self._worker_loop, worker_id=i)
            futures.append(future)

        # Wait for all workers (blocks until shutdown)
        try:
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
            self.shutdown()

    def _worker_loop(self, worker_id: int):
        """Worker loop that processes jobs from Redis.

        Args:
            worker_id: Worker identifier for logging
        """
        logger.info(f"Worker {worker_id} started")

        while self.running:
            try:
                job = self.redis.pop_job()

                if job:
                    logger.info(f"Worker {worker_id} processing job {job.get('job_id')}")
                    self._process_job(job)

            except Exception as e:
                logger.error(f"Worker {worker_id} error: {e}", exc_info=True)
                time.sleep(1)  # Back off on error

        logger.info(f"Worker {worker_id} stopped")

    def _process_job(self, job: Dict[str, Any]):
        """Process a single job.

        Args:
            job: Job dictionary from the Redis stream
        """
        start_time = time.time()

        job_id = job.get('job_id')
        run_id = job.get('run_id')
        node_id = job.get('node_id')
        node_type = job.get('node_type')

        missing_fields = []
        if not job_id:
            missing_fields.append('job_id')
        if not run_id:
            missing_fields.append('run_id')
        if not node_id:
            missing_fields.append('node_id')
        if not node_type:
            missing_fields.append('node_type')

        if missing_fields:
            logger.error(f"Invalid job: missing required fields: {', '.join(missing_fields)}")
            if job.get('message_id'):
                self.redis.ack_message(job['message_id'])
            return

        try:
            store = self.redis.variable_store(run_id)
            result_data = self.executor.execute(node_type, job.get('parameters') or {}, store)
            result_data["execution_time_ms"] = int((time.time() - start_time) * 1000)

            self.redis.signal_completion({
                "version": "1.0",
                "job_id": job_id,
                "run_id": run_id,
                "node_id": node_id,
                "status": "completed" if result_data["status"] == "success" else "failed",
                "result_data": result_data
            })
            self.redis.publish_result(job_id, {
                "version": "1.0",
                "job_id": job_id,
                "status": result_data["status"],
                "result": result_data
            })

            logger.info(f"Job {job_id} finished with status {result_data['status']} "
                        f"in {result_data['execution_time_ms']}ms")

        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)

            self.redis.signal_completion({
                "version": "1.0",
                "job_id": job_id,
                "run_id": run_id,
                "node_id": node_id,
                "status": "failed",
                "metadata": {
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "retryable": self._is_retryable(e),
                    "execution_time_ms": int((time.time() - start_time) * 1000)
                }
            })
            self.redis.publish_result(job_id, {
                "version": "1.0",
                "job_id": job_id,
                "status": "failed",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                    "retryable": self._is_retryable(e)
                }
            })

        finally:
            # ACK even on failure to remove from pending
            if job.get('message_id'):
                self.redis.ack_message(job['message_id'])

    def _is_retryable(self, error: Exception) -> bool:
        """Determine if an error is retryable.

        Args:
            error: Exception that occurred

        Returns:
            True if retryable, False otherwise
        """
        # Connection problems with the store are retryable; bad jobs are not
        retryable_types = [
            'ConnectionError',
            'Timeout',
            'TimeoutError',
            'BusyLoadingError'
        ]

        return type(error).__name__ in retryable_types

    def create_app(self) -> FastAPI:
        """Build the HTTP app for health checks and testing."""
        app = FastAPI(title="XML Webservice Node Runner")

        @app.get("/health")
        def health():
            """Health check endpoint."""
            return {
                "status": "ok",
                "service": "xmlws-node-runner",
                "workers": self.num_workers,
                "running": self.running
            }

        @app.get("/metrics")
        def metrics():
            """Worker count, registered node types and run state."""
            return {
                "workers": self.num_workers,
                "node_types": sorted(self.executor.nodes),
                "status": "running" if self.running else "stopped"
            }

        @app.post("/test/execute")
        def test_execute(request: ExecuteRequest):
            """Run a node once against an in-memory variable store.

            Args:
                request: Node type, parameters and seed variables

            Returns:
                Node result and the resulting variables
            """
            store = MemoryVariableStore(request.variables)
            try:
                result = self.executor.execute(request.node_type, request.parameters, store)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

            return {
                "result": result,
                "variables": store.snapshot()
            }

        return app

    def _run_http_server(self):
        """Run HTTP server for health checks and testing."""
        port = self.config['service'].get('port', 8083)
        uvicorn.run(self.create_app(), host="0.0.0.0", port=int(port), log_level="info")

    def shutdown(self):
        """Gracefully shutdown the service."""
        logger.info("Shutting down node runner service...")
        self.running = False

        logger.info("Waiting for workers to finish...")
        self.worker_pool.shutdown(wait=True)

        logger.info("Closing connections...")
        self.redis.close()

        logger.info("Shutdown complete")


def load_config(config_path: str = 'config.yaml') -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    # Replace environment variables
    def replace_env_vars(obj):
        if isinstance(obj, dict):
            return {k: replace_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [replace_env_vars(item) for item in obj]
        elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
            env_var = obj[2:-1]
            return os.getenv(env_var, obj)
        return obj

    return replace_env_vars(config)


def main():
    """Main entry point."""
    logger.info("=" * 60)
    logger.info("XML Webservice Node Runner")
    logger.info("=" * 60)

    config_path = os.getenv('CONFIG_PATH', 'config.yaml')
    logger.info(f"Loading config from {config_path}")

    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    service = NodeRunnerService(config)

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        service.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        service.shutdown()
        sys.exit(1)


if __name__ == "__main__":
    main()
