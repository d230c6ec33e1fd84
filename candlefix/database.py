"""Scylla/Cassandra cluster and session factory."""

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, Session
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy

from candlefix.config import Settings


def create_cluster(settings: Settings) -> Cluster:
    """Build a Cluster from settings.

    Plain-text authentication is attached only when both username and
    password are configured.
    """
    auth_provider = None
    if settings.has_credentials:
        auth_provider = PlainTextAuthProvider(
            username=settings.scylla_username,
            password=settings.scylla_password,
        )

    return Cluster(
        contact_points=settings.contact_points,
        port=settings.scylla_port,
        auth_provider=auth_provider,
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=settings.scylla_datacenter)
        ),
        protocol_version=4,
    )


def connect(cluster: Cluster) -> Session:
    """Open a session against the cluster (no default keyspace).

    Raises cassandra.cluster.NoHostAvailable when no contact point answers.
    """
    return cluster.connect()
