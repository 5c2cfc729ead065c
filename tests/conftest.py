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


def pytest_sessionstart(session):
    """Initialise the warehouse domain and push its context before collection.

    Step modules and fixtures resolve repositories through `current_domain`,
    which needs an active context even outside the per-test `_ctx` fixture.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env

    from warehouse.domain import warehouse

    warehouse.init()
    warehouse.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        # Mark tests based on their directory
        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/bdd/" in str(test_path):
            item.add_marker(pytest.mark.bdd)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # HTTP round trips through TestClient
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Reset every store after each test: Protean providers, the ledger, cached services."""
    yield

    from protean import current_domain
    from warehouse.config import reset_settings
    from warehouse.ledger import reset_ledger_store
    from warehouse.services import reset_services

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()

    # The ledger and the services bundle live outside Protean's providers
    reset_services()
    reset_ledger_store()
    reset_settings()
