"""Configuration management for knock-relay."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


DEFAULT_SIGNALS = ["signal-1", "signal-2"]


@dataclass
class RelayConfig:
    """Relay (server side) configuration."""

    path: str = "/api/ws"
    signals: list[str] = field(default_factory=lambda: DEFAULT_SIGNALS.copy())
    send_timeout: float = 5.0  # seconds, bound on one best-effort send
    room_idle_ttl: float = 600.0  # seconds before an empty room is reaped
    sweep_interval: float = 60.0  # seconds, 0 disables the sweeper


@dataclass
class ClientConfig:
    """Relay client configuration."""

    url: str = "ws://localhost:8765/api/ws"
    ping_interval: float = 0.0  # seconds, 0 disables keepalive


@dataclass
class GestureConfig:
    """Touch/pointer gesture thresholds."""

    swipe_distance: float = 60.0  # px of horizontal travel
    swipe_ratio: float = 2.0  # horizontal dominance over vertical
    tap_window: float = 0.3  # seconds


@dataclass
class KnockConfig:
    """Acoustic knock detection thresholds."""

    threshold: float = 0.2  # RMS of samples normalized to [-1, 1]
    debounce: float = 0.25  # seconds, decay tail suppression
    pair_window: float = 1.0  # seconds, double-knock pairing window
    frame_interval: float = 1 / 60  # seconds between audio frames


@dataclass
class Config:
    """knock-relay configuration."""

    port: int = 8765
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    log_levels: dict[str, str] = field(default_factory=dict)  # per-module overrides
    relay: RelayConfig = field(default_factory=RelayConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    gesture: GestureConfig = field(default_factory=GestureConfig)
    knock: KnockConfig = field(default_factory=KnockConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "knockrelay" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    relay_data = data.get("relay") or {}
    relay_config = RelayConfig(
        path=relay_data.get("path", RelayConfig.path),
        signals=relay_data.get("signals", DEFAULT_SIGNALS.copy()),
        send_timeout=relay_data.get("send_timeout", RelayConfig.send_timeout),
        room_idle_ttl=relay_data.get("room_idle_ttl", RelayConfig.room_idle_ttl),
        sweep_interval=relay_data.get("sweep_interval", RelayConfig.sweep_interval),
    )

    client_data = data.get("client") or {}
    client_config = ClientConfig(
        url=client_data.get("url", ClientConfig.url),
        ping_interval=client_data.get("ping_interval", ClientConfig.ping_interval),
    )

    gesture_data = data.get("gesture") or {}
    gesture_config = GestureConfig(
        swipe_distance=gesture_data.get("swipe_distance", GestureConfig.swipe_distance),
        swipe_ratio=gesture_data.get("swipe_ratio", GestureConfig.swipe_ratio),
        tap_window=gesture_data.get("tap_window", GestureConfig.tap_window),
    )

    knock_data = data.get("knock") or {}
    knock_config = KnockConfig(
        threshold=knock_data.get("threshold", KnockConfig.threshold),
        debounce=knock_data.get("debounce", KnockConfig.debounce),
        pair_window=knock_data.get("pair_window", KnockConfig.pair_window),
        frame_interval=knock_data.get("frame_interval", KnockConfig.frame_interval),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        log_levels=data.get("log_levels") or {},
        relay=relay_config,
        client=client_config,
        gesture=gesture_config,
        knock=knock_config,
    )
