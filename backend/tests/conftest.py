import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.services.billing import build_billing_components
from backend.tests.billing_fakes import FakePaymentGateway, InMemoryAccountProfileRepository, make_config


@pytest.fixture
def repository() -> InMemoryAccountProfileRepository:
    return InMemoryAccountProfileRepository()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def billing_config():
    return make_config()


@pytest.fixture
def components(repository, gateway, billing_config):
    return build_billing_components(billing_config, repository=repository, gateway=gateway)
