"""Tests for environment-driven settings and cluster construction."""

from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from candlefix.config import Settings
from candlefix.database import create_cluster


def test_defaults_match_reference_deployment(monkeypatch):
    for name in ("SCYLLA_HOST", "SCYLLA_KEYSPACE", "SCYLLA_FUTURES_KEYSPACE", "SCYLLA_DATACENTER"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.contact_points == ["localhost"]
    assert settings.scylla_keyspace == "trading"
    assert settings.scylla_futures_keyspace == "futures"
    assert settings.scylla_datacenter == "datacenter1"
    assert settings.price_tolerance == Decimal("1e-10")
    assert settings.repair_workers == 1
    assert not settings.has_credentials


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SCYLLA_HOST", "scylla-1, scylla-2,")
    monkeypatch.setenv("SCYLLA_KEYSPACE", "eco")
    monkeypatch.setenv("SCYLLA_USERNAME", "repair")
    monkeypatch.setenv("SCYLLA_PASSWORD", "secret")
    monkeypatch.setenv("REPAIR_WORKERS", "4")

    settings = Settings(_env_file=None)

    assert settings.contact_points == ["scylla-1", "scylla-2"]
    assert settings.scylla_keyspace == "eco"
    assert settings.repair_workers == 4
    assert settings.has_credentials


def test_username_without_password_is_not_credentials():
    settings = Settings(_env_file=None, scylla_username="repair", scylla_password="")
    assert not settings.has_credentials


@pytest.mark.parametrize("field", ["repair_workers", "repair_max_attempts"])
def test_pool_and_retry_sizes_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})


def test_cluster_gets_auth_only_with_credentials():
    with patch("candlefix.database.Cluster") as cluster_cls:
        create_cluster(Settings(_env_file=None))
        assert cluster_cls.call_args.kwargs["auth_provider"] is None

        create_cluster(Settings(_env_file=None, scylla_username="u", scylla_password="p"))
        provider = cluster_cls.call_args.kwargs["auth_provider"]
        assert provider.username == "u"
        assert provider.password == "p"


def test_cluster_uses_contact_points_and_port():
    settings = Settings(_env_file=None, scylla_host="a,b", scylla_port=19042)
    with patch("candlefix.database.Cluster") as cluster_cls:
        create_cluster(settings)

    kwargs = cluster_cls.call_args.kwargs
    assert kwargs["contact_points"] == ["a", "b"]
    assert kwargs["port"] == 19042
