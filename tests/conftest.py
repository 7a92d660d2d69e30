from datetime import datetime, timedelta

import pytest

from config import Settings
from db import init_schema, make_engine, make_session_factory
from elgamal import KeyPairGenerator
from file_crypto import FileCryptoEngine
from grants import AccessGrantProtocol


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def settings():
    return Settings(database_url="sqlite://")


@pytest.fixture(scope="session")
def params(settings):
    return settings.domain_parameters().validate(settings.min_modulus_bits)


@pytest.fixture(scope="session")
def keygen(params):
    return KeyPairGenerator(params, 2048)


@pytest.fixture(scope="session")
def patient_keys(keygen):
    return keygen.generate()


@pytest.fixture(scope="session")
def doctor_keys(keygen):
    return keygen.generate()


@pytest.fixture
def file_engine(params):
    return FileCryptoEngine(params, single_block_threshold=200)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def protocol(session_factory, params, clock):
    return AccessGrantProtocol(session_factory, params, clock=clock)
