from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from tortoise import fields, models


class User(models.Model):
    """Database model for workflow owners."""

    id = fields.IntField(pk=True)
    user_id = fields.CharField(max_length=255, unique=True, index=True)  # external auth user ID
    email = fields.CharField(max_length=320, null=True)
    name = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "users"
        ordering = ("user_id",)

    def __str__(self) -> str:
        return f"User<{self.user_id}>"


class UserStats(models.Model):
    """Per-user usage counters updated after successful executions."""

    id = fields.IntField(pk=True)
    user = fields.OneToOneField("models.User", related_name="stats")
    total_manual_executions = fields.IntField(default=0)
    total_webhook_triggers = fields.IntField(default=0)
    total_scheduled_executions = fields.IntField(default=0)
    last_active = fields.DatetimeField(null=True)

    class Meta:
        table = "user_stats"

    def __str__(self) -> str:
        return f"UserStats<{self.user_id}>"


class EnvironmentVariables(models.Model):
    """Encrypted environment variables of a user, stored as `{name: ciphertext}`."""

    id = fields.IntField(pk=True)
    user = fields.OneToOneField("models.User", related_name="environment")
    variables = fields.JSONField(default=dict)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "environment_variables"


class UserPublic(BaseModel):
    """Pydantic model for User API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
