"""
Resolution of the node configuration.

The engine supplies a default configuration with a fresh identity; the
user's overrides from ``NodeConfig`` are laid on top of it.
"""

import copy
import json
import logging
from typing import Any, Dict, Mapping, Optional

from oss_store.core.exceptions import ConfigError
from oss_store.core.models import NodeConfig, RawSpec


logger = logging.getLogger(__name__)

# Address fields the engine accepts as a single multiaddr or a list of them.
ADDRESS_FIELDS = ("Swarm", "Announce", "AppendAnnounce", "NoAnnounce", "API", "Gateway")

# Local API on an ephemeral port, no gateway, so several nodes can share a host.
ISOLATED_ADDRESSES = {
    "API": "/ip4/127.0.0.1/tcp/0",
    "Gateway": [],
}


def parse_override(raw: Optional[RawSpec], section: str) -> Optional[Dict[str, Any]]:
    """
    Parse an opaque override payload.

    Args:
        raw: Mapping, JSON text, JSON bytes, or None
        section: Name of the configuration section, for error messages

    Returns:
        Decoded section as a new dictionary, or None if ``raw`` is None

    Raises:
        ConfigError: If the payload is not a JSON object
    """
    if raw is None:
        return None

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConfigError(f"{section} override is not valid UTF-8: {e}") from e

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{section} override is not valid JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise ConfigError(f"{section} override must be an object, got {type(raw).__name__}")
    return copy.deepcopy(dict(raw))


def validate_addresses(addresses: Mapping[str, Any]) -> None:
    """Check every address field is a string or a list of strings."""
    for key in ADDRESS_FIELDS:
        if key not in addresses:
            continue
        value = addresses[key]
        if isinstance(value, str):
            continue
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            continue
        raise ConfigError(f"Addresses.{key} must be a string or a list of strings")


def validate_datastore(datastore: Mapping[str, Any]) -> None:
    """Check the structural parts of a datastore section the engine relies on."""
    if "Spec" in datastore and not isinstance(datastore["Spec"], Mapping):
        raise ConfigError("Datastore.Spec must be an object")
    if "StorageGCWatermark" in datastore and not isinstance(datastore["StorageGCWatermark"], int):
        raise ConfigError("Datastore.StorageGCWatermark must be an integer")
    for key in ("StorageMax", "GCPeriod"):
        if key in datastore and not isinstance(datastore[key], str):
            raise ConfigError(f"Datastore.{key} must be a string")


def overlay_section(base: Dict[str, Any], section: str, override: Mapping[str, Any]) -> None:
    """Lay ``override`` over ``base[section]``; keys present in the override win."""
    merged = dict(base.get(section) or {})
    merged.update(override)
    base[section] = merged


def resolve_config(config: NodeConfig, engine: Any) -> Dict[str, Any]:
    """
    Build the engine configuration for a node.

    Args:
        config: Node configuration with the user's overrides
        engine: Engine that generates the default configuration

    Returns:
        Complete engine configuration with a fresh identity

    Raises:
        ConfigError: If the address override is structurally invalid
    """
    # Parse before generating a key so bad input fails fast.
    addresses = parse_override(config.addresses, "Addresses")
    if addresses is not None:
        validate_addresses(addresses)

    resolved = engine.default_config(config.key_bits, timeout=config.startup_timeout)
    resolved["Bootstrap"] = list(config.peers)

    overlay_section(resolved, "Addresses", ISOLATED_ADDRESSES)
    if addresses is not None:
        overlay_section(resolved, "Addresses", addresses)

    logger.debug(
        f"Resolved config for {config.root_path}: "
        f"peer {resolved.get('Identity', {}).get('PeerID')}, {len(config.peers)} bootstrap peers"
    )
    return resolved
