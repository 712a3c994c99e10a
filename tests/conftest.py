"""
Shared fixtures: a local account, in-memory state and the declared stack.
"""

import pytest
import structlog

from cairn.config import CairnConfig
from cairn.engine.local import LocalCloudProvider
from cairn.engine.reconciler import Reconciler
from cairn.engine.state import MemoryStateBackend
from cairn.packaging import FunctionPackage
from cairn.stacks.notifier import declare_event_notices


def make_packages(subscribers_hash: str = "c3Vic2NyaWJlcnMtdjE=", new_events_hash: str = "bmV3LWV2ZW50cy12MQ==") -> dict:
    return {
        "subscribers": FunctionPackage(
            "build/subscribers.zip", "handler.lambda_handler", hash_override=subscribers_hash
        ),
        "new-events": FunctionPackage(
            "build/new-events.zip", "handler.lambda_handler", hash_override=new_events_hash
        ),
    }


@pytest.fixture
def config():
    return CairnConfig(project="event-notices", region="us-east-1", cloud_path=None)


@pytest.fixture
def packages():
    return make_packages()


@pytest.fixture
def declared(config, packages):
    return declare_event_notices(config, packages)


@pytest.fixture
def provider(config):
    return LocalCloudProvider(region=config.region, account_id=config.account_id)


@pytest.fixture
def backend():
    return MemoryStateBackend()


@pytest.fixture
def reconciler(provider, backend):
    return Reconciler(provider, backend, parallelism=4)


@pytest.fixture
def package_factory():
    """Build a package set with chosen source hashes."""
    return make_packages


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any logging configuration a CLI run installed."""
    yield
    structlog.reset_defaults()
