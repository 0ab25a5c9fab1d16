# orderbook_sim/config.py
import copy
import os
import yaml

DEFAULT_CONFIG = {
    "supported_symbols": ["BTC-USD", "ETH-USD", "BTC-USDT", "ETH-USDT"],
    "venues": ["OKX", "Bybit", "Deribit"],
    "feeds": {
        "offline": False,
        "connect_timeout_s": 15.0,
        "reconnect_delay_s": 5.0,
        "heartbeat_interval_s": 30.0,
        "synthetic_refresh_s": 2.0,
        "max_levels": 25,
    },
    "simulation": {
        "max_delay_ms": 1000,
    },
    "audit": {
        "simulation_log": "logs/simulations.csv",
    },
    "ui": {
        "refresh_per_second": 4,
        "log_level": "ERROR",
        "stale_after_s": 10,
    },
}


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: str = "config.yaml", overrides: dict = None) -> dict:
    """
    Reads config.yaml (if present) on top of the built-in defaults.
    Missing keys fall back to DEFAULT_CONFIG.
    """
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if path and os.path.exists(path):
        with open(path, "r") as f:
            _merge(cfg, yaml.safe_load(f) or {})
    if overrides:
        _merge(cfg, overrides)
    return cfg
