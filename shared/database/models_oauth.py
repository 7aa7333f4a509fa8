from datetime import datetime, timezone

from tortoise import fields, models


class OAuthConnection(models.Model):
    """
    Database model for storing OAuth connections/tokens.
    """
    id = fields.BigIntField(pk=True)
    user = fields.ForeignKeyField("models.User", related_name="oauth_connections")
    provider = fields.CharField(max_length=50)  # google-email, airtable, etc.
    provider_account_id = fields.CharField(max_length=255)

    # Fernet ciphertext when an encryption key is configured
    access_token_enc = fields.TextField()
    refresh_token_enc = fields.TextField(null=True)

    expires_at = fields.DatetimeField(null=True)
    scopes = fields.TextField(null=True)  # space-separated
    token_type = fields.CharField(max_length=50, default="Bearer")

    status = fields.CharField(max_length=20, default="active")  # active, revoked, error

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "oauth_connections"
        unique_together = (("user", "provider", "provider_account_id"),)

    def __str__(self) -> str:
        return f"{self.provider}:{self.provider_account_id} ({self.user_id})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < datetime.now(timezone.utc)
