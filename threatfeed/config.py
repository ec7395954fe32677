import copy
import logging
import os
import tomllib
from typing import Dict, List

from pydantic import ValidationError

from .adapters import all_adapters
from .cache import SnapshotCache
from .errors import ConfigurationError
from .orchestrator import FetchOrchestrator
from .scheduler import FeedScheduler
from .schemas import SourceConfig
from .store import IndicatorStore
from .utils.cache import FileCache, MemoryCache
from .utils.http import Http

logger = logging.getLogger(__name__)

DEFAULTS: Dict = {
    "network": {
        "timeout_seconds": 30,
        "base_delay_seconds": 1.0,
        "user_agent": "threatfeed-engine/0.1",
    },
    "scheduler": {
        "interval_seconds": 30,
    },
    "cache": {
        "backend": "memory",
        "path": ".cache",
        "key": "threatfeed:snapshot",
        "ttl_seconds": 60,
    },
    "store": {
        "recent_capacity": 1000,
        "top_k": 20,
    },
    "sources": {},
}


def load_config(path: str = "config.toml") -> Dict:
    """Load a TOML config if present; otherwise return the defaults."""
    cfg = copy.deepcopy(DEFAULTS)
    if os.path.exists(path):
        try:
            with open(path, "rb") as f:
                user = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"{path}: {e}") from e
        # shallow merge
        for k, v in user.items():
            if isinstance(v, dict) and k in cfg:
                cfg[k].update(v)
            else:
                cfg[k] = v
        logger.debug(f"Loaded configuration from {path}")
    else:
        logger.debug(f"No configuration at {path}, using defaults")
    return cfg


def build_sources(cfg: Dict) -> List[SourceConfig]:
    """
    One SourceConfig per registered feed, plus any extra ``[sources.<name>]``
    table. Extra tables may point at a registered feed through ``adapter``;
    ones that don't are kept so the orchestrator can report them.
    """
    tables: Dict[str, Dict] = cfg.get("sources", {})
    names = all_adapters() + [n for n in tables if n not in all_adapters()]
    sources = []
    for name in names:
        table = tables.get(name, {})
        if not isinstance(table, dict):
            raise ConfigurationError(f"[sources.{name}] must be a table")
        try:
            sources.append(
                SourceConfig(
                    name=name,
                    enabled=table.get("enabled", True),
                    timeout=table.get("timeout_seconds", cfg["network"]["timeout_seconds"]),
                    retries=table.get("retries", 2),
                    adapter=table.get("adapter", ""),
                    options=table.get("options", {}),
                )
            )
        except ValidationError as e:
            raise ConfigurationError(f"[sources.{name}]: {e}") from e
    return sources


def build_scheduler(cfg: Dict) -> FeedScheduler:
    """Wire HTTP client, orchestrator, store, cache and scheduler from a loaded config."""
    net, cache_cfg = cfg["network"], cfg["cache"]
    http = Http(timeout=net["timeout_seconds"], user_agent=net["user_agent"])
    if cache_cfg["backend"] == "file":
        backend = FileCache(cache_cfg["path"])
    elif cache_cfg["backend"] == "memory":
        backend = MemoryCache()
    else:
        raise ConfigurationError(f"unknown cache backend {cache_cfg['backend']!r}")

    return FeedScheduler(
        FetchOrchestrator(http, base_delay=net["base_delay_seconds"]),
        build_sources(cfg),
        IndicatorStore(recent_capacity=cfg["store"]["recent_capacity"], top_k=cfg["store"]["top_k"]),
        SnapshotCache(backend),
        interval=cfg["scheduler"]["interval_seconds"],
        cache_key=cache_cfg["key"],
        cache_ttl=cache_cfg["ttl_seconds"],
    )
