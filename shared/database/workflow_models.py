import json
from enum import Enum
from typing import Any, Dict

from tortoise import fields, models


WORKFLOW_ID_PREFIX = "wf_"


class ExecutionTrigger(str, Enum):
    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    API = "api"


class ExecutionLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


def make_workflow_public_id(pk: int) -> str:
    return f"{WORKFLOW_ID_PREFIX}{pk}"


def parse_workflow_public_id(value: str) -> int:
    if not value.startswith(WORKFLOW_ID_PREFIX):
        raise ValueError("Invalid workflow_id format")
    return int(value.removeprefix(WORKFLOW_ID_PREFIX))


class WorkflowRecord(models.Model):
    """Workflow owned by a user; `state` holds the authoring graph."""

    id = fields.IntField(primary_key=True)
    user = fields.ForeignKeyField("models.User", related_name="workflow_records")
    name = fields.CharField(max_length=255)
    description = fields.TextField(null=True)
    # {"blocks": {...}, "edges": [...], "loops": {...}, "parallels": {...}}
    state = fields.JSONField(default=dict)
    variables = fields.JSONField(null=True)
    is_deployed = fields.BooleanField(default=False)
    run_count = fields.IntField(default=0)
    last_run_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "workflow_records"
        ordering = ("-updated_at", "id")

    def __str__(self) -> str:
        return f"WorkflowRecord<{self.name}>"

    @property
    def workflow_id(self) -> str:
        return make_workflow_public_id(self.id)


class WorkflowSubBlockValue(models.Model):
    """Live sub-block value that overrides the stored graph state at run time."""

    id = fields.IntField(primary_key=True)
    workflow = fields.ForeignKeyField("models.WorkflowRecord", related_name="sub_block_values")
    block_id = fields.CharField(max_length=255)
    sub_block_id = fields.CharField(max_length=255)
    # JSON-encoded so bare strings and numbers round-trip
    value_json = fields.TextField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "workflow_sub_block_values"
        unique_together = (("workflow", "block_id", "sub_block_id"),)

    @property
    def value(self) -> Any:
        return json.loads(self.value_json) if self.value_json is not None else None

    @classmethod
    async def set_value(
        cls, workflow: "WorkflowRecord", block_id: str, sub_block_id: str, value: Any
    ) -> "WorkflowSubBlockValue":
        row, _ = await cls.update_or_create(
            defaults={"value_json": json.dumps(value)},
            workflow=workflow,
            block_id=block_id,
            sub_block_id=sub_block_id,
        )
        return row


class Webhook(models.Model):
    """Trigger configuration bound to a workflow entry point."""

    id = fields.IntField(primary_key=True)
    workflow = fields.ForeignKeyField("models.WorkflowRecord", related_name="webhooks")
    block_id = fields.CharField(max_length=255, null=True)
    path = fields.CharField(max_length=255, unique=True)
    provider = fields.CharField(max_length=50, null=True)
    provider_config = fields.JSONField(null=True)
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "webhooks"
        indexes = (("provider", "is_active"),)

    def __str__(self) -> str:
        return f"Webhook<{self.id}:{self.provider}:{self.path}>"

    def config_dict(self) -> Dict[str, Any]:
        return dict(self.provider_config or {})


class ExecutionLog(models.Model):
    """Completed (or failed) execution session."""

    id = fields.IntField(primary_key=True)
    execution_id = fields.CharField(max_length=64, unique=True)
    workflow = fields.ForeignKeyField("models.WorkflowRecord", related_name="execution_logs")
    trigger = fields.CharEnumField(ExecutionTrigger, max_length=20, default=ExecutionTrigger.WEBHOOK)
    level = fields.CharEnumField(ExecutionLevel, max_length=10, default=ExecutionLevel.INFO)
    message = fields.TextField(null=True)
    success = fields.BooleanField(null=True)
    started_at = fields.DatetimeField()
    ended_at = fields.DatetimeField(null=True)
    total_duration_ms = fields.IntField(null=True)
    output = fields.JSONField(null=True)
    error = fields.JSONField(null=True)
    trace_spans = fields.JSONField(null=True)
    metadata = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "execution_logs"
        ordering = ("-started_at", "id")
        indexes = (("workflow_id", "started_at"),)

    def __str__(self) -> str:
        return f"ExecutionLog<{self.execution_id}:{self.level}>"
