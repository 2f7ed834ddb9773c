"""Tests for DiscoveryConfig: defaults, validation, env and file loading."""

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from qopy.config import DiscoveryConfig, load_config, parse_properties
from qopy.errors import InvalidConfigError


class TestDefaults:
    def test_defaults(self):
        config = DiscoveryConfig()
        assert config.service_type == "_qopyapp._tcp.local."
        assert config.service_name == "qopyapp-device"
        assert config.port == 8080
        assert config.properties == {}
        assert config.discovery_timeout == 10.0
        assert config.announce_interval == 30.0
        assert config.event_capacity == 100

    def test_server_hostname(self):
        assert DiscoveryConfig(service_name="alice").server_hostname == "alice.local."
        assert DiscoveryConfig(hostname="box.local.").server_hostname == "box.local."

    def test_is_immutable(self):
        config = DiscoveryConfig()
        with pytest.raises(AttributeError):
            config.port = 9000
        assert replace(config, port=9000).port == 9000

    def test_properties_are_read_only(self):
        source = {"device_type": "desktop"}
        config = DiscoveryConfig(properties=source)

        with pytest.raises(TypeError):
            config.properties["device_type"] = "phone"

        source["device_type"] = "phone"
        assert config.properties == {"device_type": "desktop"}
        assert replace(config, port=9000).properties == {"device_type": "desktop"}
        assert config.to_dict()["properties"] == {"device_type": "desktop"}

    def test_properties_must_be_a_mapping(self):
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig(properties=["device_type"])


class TestValidation:
    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_port_out_of_range(self, port):
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig(port=port)

    @pytest.mark.parametrize("service_type", [
        "qopyapp._tcp.local.",
        "_qopyapp._tcp.local",
        "_qopyapp._sctp.local.",
        "",
    ])
    def test_bad_service_type(self, service_type):
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig(service_type=service_type)

    def test_udp_service_type_accepted(self):
        assert DiscoveryConfig(service_type="_p2pshare._udp.local.").service_type == "_p2pshare._udp.local."

    def test_empty_name(self):
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig(service_name="")

    def test_negative_timeout(self):
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig(discovery_timeout=-1)

    def test_invalid_config_is_value_error(self):
        with pytest.raises(ValueError):
            DiscoveryConfig(event_capacity=0)


class TestLoading:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("QOPY_SERVICE_NAME", "kitchen-tablet")
        monkeypatch.setenv("QOPY_PORT", "9000")
        monkeypatch.setenv("QOPY_PROPERTIES", "device_type=tablet, version=2.0")
        monkeypatch.setenv("QOPY_DISCOVERY_TIMEOUT", "2.5")

        config = DiscoveryConfig.from_env()

        assert config.service_name == "kitchen-tablet"
        assert config.port == 9000
        assert config.properties == {"device_type": "tablet", "version": "2.0"}
        assert config.discovery_timeout == 2.5
        assert config.service_type == "_qopyapp._tcp.local."

    def test_from_env_bad_number(self, monkeypatch):
        monkeypatch.setenv("QOPY_PORT", "eighty")
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig.from_env()

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "service_name": "den-pc",
            "port": 7000,
            "properties": {"device_type": "desktop"},
        }))

        config = DiscoveryConfig.from_file(path)

        assert config.service_name == "den-pc"
        assert config.port == 7000
        assert config.properties == {"device_type": "desktop"}

    def test_from_missing_file(self, tmp_path):
        assert DiscoveryConfig.from_file(tmp_path / "nope.json") == DiscoveryConfig()

    def test_from_file_unknown_key(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"dht_port": 8468}))
        with pytest.raises(InvalidConfigError):
            DiscoveryConfig.from_file(path)

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "config.json"
        config = DiscoveryConfig(service_name="den-pc", properties={"a": "b"})
        config.save(path)
        assert DiscoveryConfig.from_file(path) == config

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"service_name": "from-file", "port": 7000}))
        monkeypatch.setenv("QOPY_PORT", "7100")

        config = load_config(path)

        assert config.service_name == "from-file"
        assert config.port == 7100


class TestParseProperties:
    def test_parse(self):
        assert parse_properties("a=1,b=x=y, ,c=") == {"a": "1", "b": "x=y", "c": ""}

    def test_missing_equals(self):
        with pytest.raises(InvalidConfigError):
            parse_properties("novalue")
