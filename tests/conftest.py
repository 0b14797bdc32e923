import os
from pathlib import Path

import pytest

from purchasing.config import Settings, reset_settings, set_settings
from purchasing.gateway import reset_gateway, set_gateway
from purchasing.gateway.fake_adapter import FakeGateway
from purchasing.notifier import reset_notifier, set_notifier
from purchasing.notifier.fake_email import FakeNotifier
from purchasing.store import reset_stores, set_stores
from purchasing.store.memory_adapter import MemoryDocumentStore


class RecordingDocumentStore(MemoryDocumentStore):
    """Memory store that remembers the path of every write."""

    def __init__(self, name: str = "default") -> None:
        super().__init__(name)
        self.writes: list[str] = []

    def set(self, path, data, merge=True, expected_version=None):
        doc = super().set(path, data, merge=merge, expected_version=expected_version)
        self.writes.append(doc.path)
        return doc


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    os.environ["ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
        elif "/bdd/" in str(test_path):
            item.add_marker(pytest.mark.bdd)


@pytest.fixture()
def settings():
    return Settings(
        _env_file=None,
        secret_key="",
        continuation_secret="test-continuation-secret",
        webhook_secret="whsec_test",
        webhook_connect_secret="whsec_connect_test",
        databases=["memory://test"],
    )


@pytest.fixture()
def store():
    return RecordingDocumentStore("test")


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture(autouse=True)
def run_around_tests(settings, store, gateway, notifier):
    """Install fresh fakes for every test and restore the factories afterwards."""
    set_settings(settings)
    set_stores([store])
    set_gateway(gateway)
    set_notifier(notifier)

    yield

    reset_notifier()
    reset_gateway()
    reset_stores()
    reset_settings()
