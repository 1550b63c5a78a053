"""
AWS Secrets Manager integration for dynamic secret retrieval.

Secrets are organized in AWS Secrets Manager as:
- Base secret: `finishops/{environment}`
  Contains: STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, OPS_ALERT_EMAIL,
            EMAIL_FROM_ADDRESS
- Extension secrets: `finishops/{environment}/{type}`
  - `/postgres`: DATABASE_URL

Only prod/staging read from Secrets Manager. Dev and test environments fall
back to plain environment variables, which also always take precedence.

Secrets are cached per secret id with a TTL, so rotating a key in AWS reaches
running processes within `cache_ttl_seconds`.
"""

import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

# Use standard logging to avoid circular import with finishops.logger
logger = logging.getLogger(__name__)


class SecretsManager:
  """Manages retrieval of secrets from AWS Secrets Manager."""

  def __init__(
    self,
    environment: Optional[str] = None,
    region: Optional[str] = None,
    cache_ttl_seconds: int = 3600,
  ):
    """
    Initialize the secrets manager.

    Args:
        environment: Environment name (prod/staging). Defaults to ENVIRONMENT env var.
        region: AWS region. Defaults to AWS_REGION env var or eu-west-2.
        cache_ttl_seconds: TTL for cached secrets in seconds. Default 1 hour.
    """
    self.environment = environment or os.getenv("ENVIRONMENT", "dev")
    self.region = region or os.getenv("AWS_REGION", "eu-west-2")
    self.cache_ttl_seconds = cache_ttl_seconds

    self.client = boto3.client("secretsmanager", region_name=self.region)

    # Format: {cache_key: (secret_data, timestamp)}
    self._cache: Dict[str, Tuple[Dict[str, Any], float]] = {}

  def get_secret(self, secret_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Retrieve a secret from AWS Secrets Manager with TTL-based caching.

    Args:
        secret_type: Optional type of secret (e.g., "postgres").
                    If None, retrieves the base environment secret.

    Returns:
        Dictionary containing secret values.
    """
    if self.environment not in ["prod", "staging"]:
      return {}

    cache_key = f"{self.environment}/{secret_type}" if secret_type else self.environment

    if cache_key in self._cache:
      secret_data, timestamp = self._cache[cache_key]
      if time.time() - timestamp < self.cache_ttl_seconds:
        return secret_data
      del self._cache[cache_key]
      logger.info(f"Cache expired for secret: {cache_key}")

    if secret_type:
      secret_id = f"finishops/{self.environment}/{secret_type}"
    else:
      secret_id = f"finishops/{self.environment}"

    try:
      response = self.client.get_secret_value(SecretId=secret_id)

      if "SecretString" not in response:
        raise ValueError(f"Binary secret not supported for {secret_id}")
      secret_data = json.loads(response["SecretString"])

      self._cache[cache_key] = (secret_data, time.time())

      logger.info(f"Successfully retrieved secret: {secret_id}")
      return secret_data

    except ClientError as e:
      error_code = e.response.get("Error", {}).get("Code", "Unknown")

      if error_code == "ResourceNotFoundException":
        logger.warning(f"Secret not found: {secret_id}")
        return {}

      logger.error(f"Error retrieving secret {secret_id}: {error_code}")
      raise

  def refresh(self, secret_type: Optional[str] = None):
    """
    Refresh cached secrets.

    Args:
        secret_type: Specific secret to refresh, or None to refresh all.
    """
    if secret_type:
      self._cache.pop(f"{self.environment}/{secret_type}", None)
    else:
      self._cache.clear()


_secrets_manager: Optional[SecretsManager] = None


def get_secrets_manager() -> SecretsManager:
  """Get or create the global secrets manager instance."""
  global _secrets_manager
  if _secrets_manager is None:
    _secrets_manager = SecretsManager()
  return _secrets_manager


# Keys that live in an extension secret rather than the base secret
SECRET_MAPPINGS = {
  "DATABASE_URL": ("postgres", "DATABASE_URL"),
  "STRIPE_SECRET_KEY": (None, "STRIPE_SECRET_KEY"),
  "STRIPE_WEBHOOK_SECRET": (None, "STRIPE_WEBHOOK_SECRET"),
  "OPS_ALERT_EMAIL": (None, "OPS_ALERT_EMAIL"),
  "EMAIL_FROM_ADDRESS": (None, "EMAIL_FROM_ADDRESS"),
}


def get_secret_value(key: str, default: str = "") -> str:
  """
  Get a specific secret value.

  Environment variables win. In prod/staging the value is then looked up in
  Secrets Manager; everywhere else the default is returned.

  Args:
      key: The key name to retrieve (e.g., "STRIPE_SECRET_KEY", "DATABASE_URL")
      default: Default value if not found

  Returns:
      The secret value or default
  """
  env_value = os.getenv(key)
  if env_value:
    return env_value

  environment = os.getenv("ENVIRONMENT", "dev")
  if environment not in ["prod", "staging"]:
    return default

  try:
    manager = get_secrets_manager()

    secret_type, secret_key = SECRET_MAPPINGS.get(key, (None, key))
    secrets = manager.get_secret(secret_type)
    return secrets.get(secret_key, default)

  except (ClientError, ValueError) as e:
    logger.warning(f"Failed to retrieve secret '{key}' from Secrets Manager: {e}")
    return default
