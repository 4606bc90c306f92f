import pytest

from nacosbridge import config

from tests.support import FakeConfigClient, FakeNamingClient


@pytest.fixture
def config_options():
    return config.ConfigOptions.build(
        "http://10.0.0.1:8848",
        "ns1",
        config.group("G"),
        config.data_id("app.yaml")
    )


@pytest.fixture
def registry_options():
    return config.RegistryOptions.build(
        "http://10.0.0.1:8848",
        "ns1",
        config.group("G")
    )


@pytest.fixture
def config_client():
    return FakeConfigClient({ ("app.yaml", "G"): "a: 1" })


@pytest.fixture
def naming_client():
    return FakeNamingClient()
