import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


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


@pytest.fixture(scope="session")
def _settlement_domain(request):
    """Initialize the settlement domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from settlement.domain import settlement

    settlement.init()
    return settlement


@pytest.fixture(scope="session", autouse=True)
def setup_db(_settlement_domain):
    from settlement.utils.db import drop_db, setup_db

    setup_db(_settlement_domain)

    yield

    drop_db(_settlement_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_settlement_domain):
    """Push domain context before each test, cleanup after."""
    from settlement.gateway import reset_gateway
    from settlement.notifications import reset_notifier

    ctx = _settlement_domain.domain_context()
    ctx.push()

    yield

    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()

    reset_gateway()
    reset_notifier()


@pytest.fixture()
def settlement_domain(_settlement_domain):
    return _settlement_domain


@pytest.fixture()
def gateway():
    """A fresh FakeGateway installed as the active gateway."""
    from settlement.gateway import set_gateway
    from settlement.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def notifier():
    """A fresh FakeNotifier installed as the active notifier."""
    from settlement.notifications import set_notifier
    from settlement.notifications.fake_adapter import FakeNotifier

    fake = FakeNotifier()
    set_notifier(fake)
    return fake
