"""Tests for environment helpers and Secrets Manager lookups."""

import json
from decimal import Decimal
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from finishops.config.env import (
  get_bool_env,
  get_decimal_env,
  get_int_env,
  get_list_env,
)
from finishops.config.secrets_manager import SecretsManager, get_secret_value


@pytest.mark.unit
class TestEnvHelpers:
  def test_int_falls_back_on_garbage(self, monkeypatch):
    monkeypatch.setenv("PRICING_CACHE_TTL_SECONDS", "soon")

    assert get_int_env("PRICING_CACHE_TTL_SECONDS", 300) == 300

  def test_decimal_keeps_exact_rate(self, monkeypatch):
    monkeypatch.setenv("COMMISSION_TOOL_RATE", "12.5")

    assert get_decimal_env("COMMISSION_TOOL_RATE", "20") == Decimal("12.5")

  def test_decimal_falls_back_on_garbage(self, monkeypatch):
    monkeypatch.setenv("COMMISSION_TOOL_RATE", "lots")

    assert get_decimal_env("COMMISSION_TOOL_RATE", "20") == Decimal("20")

  @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("off", False)])
  def test_bool(self, monkeypatch, value, expected):
    monkeypatch.setenv("FEATURE_FLAG", value)

    assert get_bool_env("FEATURE_FLAG") is expected

  def test_list(self, monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.example, ,https://b.example")

    assert get_list_env("CORS_ALLOWED_ORIGINS") == ["https://a.example", "https://b.example"]


@pytest.mark.unit
class TestGetSecretValue:
  def test_environment_variable_wins(self, monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_env")

    assert get_secret_value("STRIPE_SECRET_KEY") == "sk_test_env"

  def test_outside_prod_returns_default(self, monkeypatch):
    monkeypatch.delenv("OPS_ALERT_EMAIL", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "test")

    with patch("finishops.config.secrets_manager.get_secrets_manager") as get_manager:
      assert get_secret_value("OPS_ALERT_EMAIL", "fallback") == "fallback"
    get_manager.assert_not_called()

  def test_prod_reads_mapped_secret(self, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "prod")

    with patch("finishops.config.secrets_manager.get_secrets_manager") as get_manager:
      get_manager.return_value.get_secret.return_value = {"DATABASE_URL": "postgresql://prod"}
      assert get_secret_value("DATABASE_URL") == "postgresql://prod"
    get_manager.return_value.get_secret.assert_called_once_with("postgres")


@pytest.mark.unit
class TestSecretsManager:
  @pytest.fixture
  def client(self):
    with patch("finishops.config.secrets_manager.boto3.client") as boto_client:
      yield boto_client.return_value

  def test_caches_secret(self, client):
    client.get_secret_value.return_value = {
      "SecretString": json.dumps({"STRIPE_SECRET_KEY": "sk_live_1"})
    }
    manager = SecretsManager(environment="prod", region="eu-west-2")

    assert manager.get_secret()["STRIPE_SECRET_KEY"] == "sk_live_1"
    manager.get_secret()

    client.get_secret_value.assert_called_once_with(SecretId="finishops/prod")

  def test_refresh_drops_cache(self, client):
    client.get_secret_value.return_value = {"SecretString": "{}"}
    manager = SecretsManager(environment="staging")

    manager.get_secret("postgres")
    manager.refresh("postgres")
    manager.get_secret("postgres")

    assert client.get_secret_value.call_count == 2

  def test_missing_secret_is_empty(self, client):
    client.get_secret_value.side_effect = ClientError(
      {"Error": {"Code": "ResourceNotFoundException", "Message": "missing"}},
      "GetSecretValue",
    )

    assert SecretsManager(environment="prod").get_secret() == {}

  def test_dev_never_calls_aws(self, client):
    assert SecretsManager(environment="dev").get_secret() == {}
    client.get_secret_value.assert_not_called()
