"""Tests for config drift detection."""

from __future__ import annotations

from devfleet.config import GlobalConfig, PortRange
from devfleet.core.drift import (
    create_config_snapshot,
    detect_drift,
    extract_used_config_keys,
    find_servers_using_config_key,
    find_servers_with_drift,
    format_drift,
    has_env_changed,
)
from devfleet.registry.models import ServerEntry


def _entry(command: str, config: GlobalConfig, *, port: int = 5000, env: dict[str, str] | None = None) -> ServerEntry:
    keys = extract_used_config_keys(command, env)
    return ServerEntry(
        id="id-1",
        name="web",
        command=command,
        resolved_command=command,
        cwd="/app",
        port=port,
        hostname=config.hostname,
        env_template=env,
        used_config_keys=keys,
        config_snapshot=create_config_snapshot(config, keys),
    )


class TestExtractUsedConfigKeys:
    """Tests for extract_used_config_keys."""

    def test_hostname_and_port(self) -> None:
        """{{port}} is not a config key; portRange is always tracked."""
        assert extract_used_config_keys("serve --host {{hostname}} --port {{port}}") == ["hostname", "portRange"]

    def test_url_tracks_protocol(self) -> None:
        """{{url}} depends on protocol."""
        assert extract_used_config_keys("open {{url}}") == ["portRange", "protocol"]

    def test_custom_variables(self) -> None:
        """User variables are tracked as variables.<name>."""
        assert extract_used_config_keys("run {{api-key}}") == ["variables.api-key", "portRange"]

    def test_env_values_scanned(self) -> None:
        """Env values contribute keys too."""
        keys = extract_used_config_keys("serve", {"CERT": "{{https-cert}}"})
        assert keys == ["httpsCert", "portRange"]


class TestCreateConfigSnapshot:
    """Tests for create_config_snapshot."""

    def test_captures_only_used_keys(self) -> None:
        config = GlobalConfig(hostname="a", https_cert="/c.pem")
        snapshot = create_config_snapshot(config, ["hostname", "portRange"])
        assert snapshot.hostname == "a"
        assert snapshot.https_cert is None
        assert snapshot.port_range_min == config.port_range.min

    def test_unset_custom_variable_omitted(self) -> None:
        config = GlobalConfig(variables={"a": "1"})
        snapshot = create_config_snapshot(config, ["variables.a", "variables.b"])
        assert snapshot.custom_variables == {"a": "1"}


class TestDetectDrift:
    """Tests for detect_drift."""

    def test_no_drift_when_unchanged(self) -> None:
        config = GlobalConfig(hostname="a")
        entry = _entry("serve --host {{hostname}}", config)
        assert not detect_drift(entry, config).has_drift

    def test_hostname_round_trip(self) -> None:
        """a -> b drifts; back to a does not."""
        config_a = GlobalConfig(hostname="a")
        config_b = config_a.model_copy(update={"hostname": "b"})
        entry = _entry("serve --host {{hostname}}", config_a)

        drift = detect_drift(entry, config_b)
        assert drift.has_drift
        [value] = drift.drifted_values
        assert (value.config_key, value.template_var) == ("hostname", "hostname")
        assert (value.started_with, value.current_value) == ("a", "b")

        assert not detect_drift(entry, config_a).has_drift

    def test_unused_key_does_not_drift(self) -> None:
        """Changing hostname does not affect a server that never used it."""
        config = GlobalConfig(hostname="a")
        entry = _entry("serve --port {{port}}", config)
        assert not detect_drift(entry, config.model_copy(update={"hostname": "b"})).has_drift

    def test_port_out_of_range(self) -> None:
        """portRange drifts only when the port left the range."""
        config = GlobalConfig(port_range=PortRange(min=5000, max=5099))
        entry = _entry("serve", config, port=5050)

        widened = config.model_copy(update={"port_range": PortRange(min=4000, max=6000)})
        assert not detect_drift(entry, widened).has_drift

        moved = config.model_copy(update={"port_range": PortRange(min=6000, max=6099)})
        drift = detect_drift(entry, moved)
        assert drift.port_out_of_range
        [value] = drift.drifted_values
        assert value.started_with == "5000-5099"
        assert value.current_value == "6000-6099"

    def test_protocol_changed_for_url_users(self) -> None:
        config = GlobalConfig(protocol="http")
        entry = _entry("open {{url}}", config)
        drift = detect_drift(entry, config.model_copy(update={"protocol": "https"}))
        assert drift.protocol_changed

    def test_custom_variable_change(self) -> None:
        config = GlobalConfig(variables={"token": "x"})
        entry = _entry("run {{token}}", config)
        drift = detect_drift(entry, config.model_copy(update={"variables": {"token": "y"}}))
        assert [d.config_key for d in drift.drifted_values] == ["variables.token"]

    def test_entry_without_snapshot(self) -> None:
        """Legacy entries with no snapshot never drift."""
        entry = ServerEntry(
            id="1", name="n", command="c", resolved_command="c", cwd="/", port=5000, hostname="a"
        )
        assert not detect_drift(entry, GlobalConfig(hostname="b")).has_drift


class TestDriftQueries:
    """Tests for the fleet-wide drift helpers."""

    def test_find_servers_using_config_key(self) -> None:
        config = GlobalConfig()
        hostname_user = _entry("serve {{hostname}}", config)
        plain = _entry("serve", config).model_copy(update={"id": "id-2"})
        entries = [hostname_user, plain]

        assert find_servers_using_config_key(entries, "hostname") == [hostname_user]
        assert find_servers_using_config_key(entries, "portRange.min") == entries

    def test_find_servers_with_drift(self) -> None:
        config = GlobalConfig(hostname="a")
        entry = _entry("serve {{hostname}}", config)
        [(found, drift)] = find_servers_with_drift([entry], config.model_copy(update={"hostname": "b"}))
        assert found is entry
        assert drift.has_drift

    def test_format_drift(self) -> None:
        config = GlobalConfig(hostname="a")
        entry = _entry("serve {{hostname}}", config)
        text = format_drift(detect_drift(entry, config.model_copy(update={"hostname": "b"})))
        assert text.startswith("Config drift detected:")
        assert 'hostname: "a" → "b"' in text

    def test_has_env_changed(self) -> None:
        """Order-independent; None equals {}."""
        assert not has_env_changed(None, {})
        assert not has_env_changed({"A": "1", "B": "2"}, {"B": "2", "A": "1"})
        assert has_env_changed({"A": "1"}, {"A": "2"})
