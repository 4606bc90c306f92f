import logging

import pydantic
import pytest

from nacosbridge import config
from nacosbridge.errors import InvalidEndpoint, InvalidOption, UnknownOption


def test_config_options_defaults():
    options = config.ConfigOptions.build("http://10.0.0.1:8848", "ns1", data_id = "app.yaml")
    assert options.group == "DEFAULT_GROUP"
    assert options.timeout_ms == 5000
    assert options.timeout == 5
    assert options.log_level == "warn"
    assert options.log_dir is None
    assert options.cache_dir is None
    assert options.client_type == "http"


def test_registry_options_defaults():
    options = config.RegistryOptions.build("http://10.0.0.1:8848", "ns1")
    assert options.group == "DEFAULT_GROUP"
    assert options.cluster == "DEFAULT"
    assert options.weight == 100
    assert options.healthy is True
    assert options.ephemeral is True
    assert options.queue_size == 100
    assert options.skip_schemes == ()


def test_mutators_apply_in_order():
    options = config.RegistryOptions.build(
        "http://10.0.0.1:8848",
        "ns1",
        config.group("first"),
        config.group("second"),
        config.cluster("c1"),
        config.weight(5),
        config.timeout_ms(1000),
        config.log_level("debug"),
        config.log_dir("/tmp/log"),
        config.cache_dir("/tmp/cache")
    )
    assert options.group == "second"
    assert options.cluster == "c1"
    assert options.weight == 5
    assert options.timeout_ms == 1000
    assert options.log_level == "debug"
    assert options.log_dir == "/tmp/log"
    assert options.cache_dir == "/tmp/cache"


def test_zero_values_take_defaults():
    options = config.RegistryOptions.build(
        "http://10.0.0.1:8848",
        "ns1",
        group = "",
        weight = 0,
        timeout_ms = 0,
        log_level = None
    )
    assert options.group == "DEFAULT_GROUP"
    assert options.weight == 100
    assert options.timeout_ms == 5000
    assert options.log_level == "warn"


def test_explicit_false_is_kept():
    options = config.RegistryOptions.build("http://10.0.0.1:8848", "ns1", healthy = False)
    assert options.healthy is False


def test_public_namespace_is_allowed():
    options = config.ConfigOptions.build("http://10.0.0.1:8848", "", data_id = "app.yaml")
    assert options.namespace_id == ""


def test_unknown_option():
    with pytest.raises(UnknownOption) as excinfo:
        config.ConfigOptions.build("http://10.0.0.1:8848", "ns1", data_id = "a", colour = "red")
    assert excinfo.value.names == ["colour"]


def test_registry_only_option_rejected_for_config():
    with pytest.raises(UnknownOption):
        config.ConfigOptions.build("http://10.0.0.1:8848", "ns1", config.cluster("c1"), data_id = "a")


def test_data_id_required_for_config():
    with pytest.raises(InvalidOption):
        config.ConfigOptions.build("http://10.0.0.1:8848", "ns1")


def test_invalid_log_level():
    with pytest.raises(InvalidOption):
        config.RegistryOptions.build("http://10.0.0.1:8848", "ns1", log_level = "verbose")


def test_invalid_endpoint():
    with pytest.raises(InvalidEndpoint):
        config.RegistryOptions.build("grpc://10.0.0.1", "ns1")


def test_options_are_immutable(registry_options):
    with pytest.raises(pydantic.ValidationError):
        registry_options.group = "other"


def test_options_accept_aliases():
    options = config.ConfigOptions.model_validate({
        "endpoint": "http://10.0.0.1:8848",
        "namespaceId": "ns1",
        "dataId": "app.yaml",
        "timeoutMs": 100,
    })
    assert options.namespace_id == "ns1"
    assert options.data_id == "app.yaml"
    assert options.timeout_ms == 100


def test_apply_log_level(registry_options):
    config.apply_log_level(registry_options)
    assert logging.getLogger("nacosbridge.clients").level == logging.WARNING


def test_bridge_config_from_file(tmp_path, monkeypatch):
    monkeypatch.delenv("NACOSBRIDGE_CONFIG", raising = False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "source:\n"
        "  endpoint: http://10.0.0.1:8848\n"
        "  namespaceId: ns1\n"
        "  group: G\n"
        "  dataId: app.yaml\n"
        "registry:\n"
        "  endpoint: http://10.0.0.1:8848\n"
        "  namespaceId: ns1\n"
        "  weight: 10\n"
    )
    settings = config.BridgeConfig(_path = str(path))
    assert settings.source.data_id == "app.yaml"
    assert settings.source.group == "G"
    assert settings.registry.weight == 10
    assert settings.registry.cluster == "DEFAULT"


def test_bridge_config_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("NACOSBRIDGE__REGISTRY__ENDPOINT", "http://10.0.0.1:8848")
    monkeypatch.setenv("NACOSBRIDGE__REGISTRY__NAMESPACE_ID", "ns1")
    monkeypatch.setenv("NACOSBRIDGE__REGISTRY__CLUSTER", "east")
    settings = config.BridgeConfig(_path = None, _use_file = False)
    assert settings.source is None
    assert settings.registry.cluster == "east"
