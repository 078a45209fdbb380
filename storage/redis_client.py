"""Redis client for the node runner service."""
import redis
import json
from typing import Optional, Dict, Any
import logging
import uuid

from storage.base import VariableStore

logger = logging.getLogger(__name__)


class RedisVariableStore(VariableStore):
    """Workflow variables for one run, kept in a Redis hash.

    Strings, lists, dicts and None are JSON-encoded so they round-trip;
    other scalars are stored as plain text and read back as strings.
    """

    def __init__(self, client: redis.Redis, run_id: str, prefix: str = 'vars'):
        self.client = client
        self.run_id = run_id
        self.key = f"{prefix}:{run_id}"

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        raw = self.client.hget(self.key, key)
        if raw is None:
            return default

        raw = raw.decode('utf-8') if isinstance(raw, bytes) else raw
        # Only decode what set() can have written; other producers store
        # plain strings such as "true" or "42" that must stay strings
        if raw != 'null' and not raw.startswith(('"', '{', '[')):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def set(self, key: str, value: Any) -> None:
        if value is None or isinstance(value, (str, dict, list)):
            encoded = json.dumps(value)
        else:
            encoded = str(value)
        self.client.hset(self.key, key, encoded)
        logger.debug(f"Set variable {key} in {self.key}")

    def __contains__(self, key: str) -> bool:
        return bool(self.client.hexists(self.key, key))


class RedisClient:
    """Redis client for node job stream, result publishing and variables."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize Redis connection."""
        self.config = config
        self.client = redis.Redis(
            host=config['host'],
            port=config['port'],
            db=config['db'],
            decode_responses=True
        )
        self.stream = config.get('stream', 'wf.tasks.xmlws')
        self.consumer_group = config.get('consumer_group', 'xmlws_workers')
        self.consumer_name = f"xmlws_worker_{uuid.uuid4().hex[:8]}"
        self.timeout = config.get('timeout', 5) * 1000  # Convert to milliseconds

        self.result_queue_prefix = config.get('result_queue_prefix', 'xmlws:results')
        self.variables_prefix = config.get('variables_prefix', 'vars')

        # Test connection
        try:
            self.client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

        # Create consumer group if it doesn't exist
        try:
            self.client.xgroup_create(self.stream, self.consumer_group, id='0', mkstream=True)
            logger.info(f"Created consumer group {self.consumer_group} for stream {self.stream}")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                logger.error(f"Failed to create consumer group: {e}")
                raise
            logger.info(f"Consumer group {self.consumer_group} already exists")

    def variable_store(self, run_id: str) -> RedisVariableStore:
        """Variable store scoped to one workflow run."""
        return RedisVariableStore(self.client, run_id, prefix=self.variables_prefix)

    def pop_job(self) -> Optional[Dict[str, Any]]:
        """Pop a job from the stream (blocking with XREADGROUP).

        Returns:
            Job dictionary or None if timeout
        """
        try:
            messages = self.client.xreadgroup(
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={self.stream: '>'},
                count=1,
                block=self.timeout
            )

            if not messages:
                return None

            stream_name, message_list = messages[0]
            if not message_list:
                return None

            message_id, message_data = message_list[0]

            token_json = message_data.get('token')
            if not token_json:
                logger.error(f"Message {message_id} missing token field")
                # ACK the message to remove it from pending
                self.client.xack(self.stream, self.consumer_group, message_id)
                return None

            token = json.loads(token_json)
            metadata = token.get('metadata', {})

            job = {
                'job_id': token.get('id'),
                'run_id': token.get('run_id'),
                'node_id': token.get('to_node'),
                'node_type': metadata.get('node_type', ''),
                'parameters': metadata.get('parameters', {}),
                'sent_at': token.get('sent_at'),
                'message_id': message_id  # Store for ACK
            }

            logger.info(f"Received job from stream: job_id={job.get('job_id')}, "
                        f"run_id={job.get('run_id')}, node_type={job.get('node_type')}")
            return job

        except Exception as e:
            logger.error(f"Failed to read from stream: {e}")
            raise

    def publish_result(self, job_id: str, result: Dict[str, Any]):
        """Publish result to job-specific result queue.

        Args:
            job_id: Job identifier
            result: Result dictionary
        """
        try:
            queue = f"{self.result_queue_prefix}:{job_id}"
            self.client.rpush(queue, json.dumps(result))
            logger.info(f"Published result for job {job_id} to {queue}")
        except Exception as e:
            logger.error(f"Failed to publish result: {e}")
            raise

    def signal_completion(self, completion_signal: Dict[str, Any]):
        """Signal completion to the workflow coordinator.

        Args:
            completion_signal: Completion payload for the coordinator
        """
        try:
            self.client.rpush("completion_signals", json.dumps(completion_signal))
            logger.info(f"Signaled completion to coordinator: run={completion_signal.get('run_id')}, "
                        f"node={completion_signal.get('node_id')}, "
                        f"status={completion_signal.get('status')}")
        except Exception as e:
            logger.error(f"Failed to signal completion: {e}")
            raise

    def ack_message(self, message_id: str):
        """Acknowledge a message from the stream.

        Args:
            message_id: Message ID to acknowledge
        """
        try:
            self.client.xack(self.stream, self.consumer_group, message_id)
            logger.info(f"ACKed message: {message_id}")
        except Exception as e:
            logger.error(f"Failed to ACK message {message_id}: {e}")
            raise

    def close(self):
        """Close Redis connection."""
        if self.client:
            self.client.close()
            logger.info("Redis connection closed")
