# hyperdrive/config.py
import os
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional, Tuple

import yaml

from .models import NetworkProfile, SizeRange

class ConfigError(ValueError):
    """Bad or missing configuration. Only ever raised at startup."""

def load_config(path: str = "config.yaml", env: Optional[Mapping[str, str]] = None) -> dict:
    """
    Reads the YAML config and applies environment overrides:
    PRIVATE_KEY, EXECUTOR_ADDRESS and PORT win over the file.
    """
    env = os.environ if env is None else env
    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}

    creds = config.setdefault('credentials', {})
    if env.get('PRIVATE_KEY'):
        creds['private_key'] = env['PRIVATE_KEY']
    if env.get('EXECUTOR_ADDRESS'):
        creds['executor_address'] = env['EXECUTOR_ADDRESS']

    health = config.setdefault('health', {})
    if env.get('PORT'):
        try:
            health['port'] = int(env['PORT'])
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env['PORT']!r}")
    health.setdefault('port', 8080)
    return config

def get_credentials(config: dict) -> Tuple[str, str]:
    creds = config.get('credentials') or {}
    key = creds.get('private_key')
    executor = creds.get('executor_address')
    if not key:
        raise ConfigError("Missing signing key (credentials.private_key or PRIVATE_KEY)")
    if not executor:
        raise ConfigError("Missing executor address (credentials.executor_address or EXECUTOR_ADDRESS)")
    return key, executor

def positive_or_none(value, label: str, kind=float):
    """None stays None (no cap); anything else must be a positive number."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be a positive number, got {value!r}")
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{label} must be a positive number, got {value!r}")
    if number <= 0 or (kind is int and number != value):
        raise ConfigError(f"{label} must be a positive number, got {value!r}")
    return number

def dispatch_limits(config: dict) -> Tuple[Optional[int], Optional[float]]:
    """Global (max_in_flight, max_rate) from the dispatch section."""
    dispatch = config.get("dispatch") or {}
    return (
        positive_or_none(dispatch.get("max_in_flight"), "dispatch.max_in_flight", int),
        positive_or_none(dispatch.get("max_rate"), "dispatch.max_rate", float),
    )

def parse_network(name: str, raw: dict) -> NetworkProfile:
    rpcs = tuple(raw.get('rpcs') or ())
    if not rpcs:
        raise ConfigError(f"[{name}] needs at least one RPC url")

    try:
        priority = Decimal(str(raw.get('priority', '0')))
    except InvalidOperation:
        raise ConfigError(f"[{name}] priority must be a number, got {raw.get('priority')!r}")

    sizing = raw.get('sizing') or {}
    try:
        size = SizeRange(
            min_units=int(sizing['min']),
            max_units=int(sizing['max']),
            unit_scale=int(sizing['unit_scale']),
        )
    except (KeyError, TypeError, ValueError):
        raise ConfigError(f"[{name}] sizing needs integer min, max and unit_scale")
    if size.min_units > size.max_units:
        raise ConfigError(f"[{name}] sizing min exceeds max")

    return NetworkProfile(
        name=name,
        chain_id=int(raw['chain_id']),
        rpcs=rpcs,
        symbol=raw.get('symbol', 'ETH'),
        priority_fee_gwei=priority,
        size=size,
        max_in_flight=positive_or_none(raw.get('max_in_flight'), f"[{name}] max_in_flight", int),
        max_rate=positive_or_none(raw.get('max_rate'), f"[{name}] max_rate", float),
    )

def parse_networks(config: dict, selected: Optional[List[str]] = None) -> List[NetworkProfile]:
    """Network profiles in config order, optionally filtered to a selection."""
    networks = config.get('networks') or {}
    if not networks:
        raise ConfigError("No networks configured")
    profiles = []
    for name, raw in networks.items():
        if selected is not None and name not in selected:
            continue
        if 'chain_id' not in (raw or {}):
            raise ConfigError(f"[{name}] missing chain_id")
        profiles.append(parse_network(name, raw))
    return profiles
