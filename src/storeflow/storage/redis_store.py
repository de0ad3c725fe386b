"""Redis-backed workflow store."""
from __future__ import annotations

import json
from typing import Any

import redis

from storeflow.config import get_settings
from storeflow.observability import get_logger
from storeflow.storage.base import MAX_EXECUTION_HISTORY, WorkflowStore
from storeflow.workflows.models import TriggerType, WorkflowDefinition

logger = get_logger(__name__)


class RedisWorkflowStore(WorkflowStore):
    """
    Workflows as JSON documents in Redis.

    Keys:
        workflow:{id}                   workflow JSON
        workflow-slug:{slug}            workflow id
        workflows                       set of all workflow ids
        executions:{id}                 list of execution summaries, newest first
        outputs:{id}:{execution_id}     stored output values
        primitives                      hash of custom primitive name -> definition JSON
    """

    def __init__(self, redis_client: redis.Redis | None = None):
        """
        Initialize workflow store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
        """
        if redis_client is None:
            settings = get_settings()
            self.redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        else:
            self.redis_client = redis_client

        self._workflow_prefix = "workflow:"
        self._slug_prefix = "workflow-slug:"
        self._index_key = "workflows"
        self._executions_prefix = "executions:"
        self._outputs_prefix = "outputs:"
        self._primitives_key = "primitives"

    def _workflow_key(self, workflow_id: str) -> str:
        return f"{self._workflow_prefix}{workflow_id}"

    def _slug_key(self, slug: str) -> str:
        return f"{self._slug_prefix}{slug}"

    def _executions_key(self, workflow_id: str) -> str:
        return f"{self._executions_prefix}{workflow_id}"

    def _outputs_key(self, workflow_id: str, execution_id: str) -> str:
        return f"{self._outputs_prefix}{workflow_id}:{execution_id}"

    def get(self, workflow_id: str, include_deleted: bool = False) -> WorkflowDefinition | None:
        data = self.redis_client.get(self._workflow_key(workflow_id))
        if data is None:
            return None
        workflow = WorkflowDefinition.model_validate_json(data)
        if workflow.deleted_at is not None and not include_deleted:
            return None
        return workflow

    def get_by_slug(self, slug: str) -> WorkflowDefinition | None:
        workflow_id = self.redis_client.get(self._slug_key(slug))
        return self.get(workflow_id) if workflow_id else None

    def _write(self, workflow: WorkflowDefinition, previous: WorkflowDefinition | None) -> None:
        pipe = self.redis_client.pipeline()
        if previous is not None and previous.slug and previous.slug != workflow.slug:
            pipe.delete(self._slug_key(previous.slug))
        pipe.set(self._workflow_key(workflow.id), workflow.model_dump_json(by_alias=True))
        if workflow.slug:
            pipe.set(self._slug_key(workflow.slug), workflow.id)
        pipe.sadd(self._index_key, workflow.id)
        pipe.execute()

        logger.debug(
            "Workflow saved",
            extra={"workflow_id": workflow.id, "version": workflow.version},
        )

    def _remove(self, workflow: WorkflowDefinition) -> None:
        keys = [self._workflow_key(workflow.id), self._executions_key(workflow.id)]
        if workflow.slug:
            keys.append(self._slug_key(workflow.slug))
        keys.extend(self.redis_client.scan_iter(match=f"{self._outputs_prefix}{workflow.id}:*"))

        pipe = self.redis_client.pipeline()
        pipe.delete(*keys)
        pipe.srem(self._index_key, workflow.id)
        pipe.execute()

        logger.info("Workflow deleted", extra={"workflow_id": workflow.id})

    def list(
        self,
        owner: str | None = None,
        trigger_type: TriggerType | None = None,
        enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        ids = sorted(self.redis_client.smembers(self._index_key))
        if not ids:
            return []
        documents = self.redis_client.mget([self._workflow_key(workflow_id) for workflow_id in ids])
        found = [
            workflow
            for workflow in (WorkflowDefinition.model_validate_json(doc) for doc in documents if doc)
            if self._matches(workflow, owner, trigger_type, enabled, include_deleted)
        ]
        return sorted(found, key=lambda w: w.updated_at, reverse=True)

    def slug_exists(self, slug: str) -> bool:
        return bool(self.redis_client.exists(self._slug_key(slug)))

    def record_execution(self, workflow_id: str, summary: dict[str, Any]) -> None:
        key = self._executions_key(workflow_id)
        pipe = self.redis_client.pipeline()
        pipe.lpush(key, json.dumps(summary, default=str))
        pipe.ltrim(key, 0, MAX_EXECUTION_HISTORY - 1)
        pipe.execute()

    def list_executions(self, workflow_id: str, limit: int = 50) -> list[dict[str, Any]]:
        items = self.redis_client.lrange(self._executions_key(workflow_id), 0, limit - 1)
        return [json.loads(item) for item in items]

    def save_outputs(self, workflow_id: str, execution_id: str, stored: dict[str, Any]) -> None:
        self.redis_client.set(
            self._outputs_key(workflow_id, execution_id),
            json.dumps(stored, default=str),
        )

    def get_outputs(self, workflow_id: str, execution_id: str) -> dict[str, Any] | None:
        data = self.redis_client.get(self._outputs_key(workflow_id, execution_id))
        return json.loads(data) if data is not None else None

    def save_primitive(self, data: dict[str, Any]) -> None:
        self.redis_client.hset(self._primitives_key, data["name"], json.dumps(data, default=str))
        logger.debug("Custom primitive saved", extra={"primitive": data["name"]})

    def delete_primitive(self, name: str) -> bool:
        return bool(self.redis_client.hdel(self._primitives_key, name))

    def list_primitives(self) -> list[dict[str, Any]]:
        stored = self.redis_client.hgetall(self._primitives_key)
        return [json.loads(stored[name]) for name in sorted(stored)]
