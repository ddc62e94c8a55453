from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from ..core.settings import settings as default_settings
from ..errors import PricingConfigurationError, PricingError
from ..storage.catalog import Catalog, load_catalog
from .pricing_engine import PricingEngine

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LoadedCatalog:
    catalog: Catalog
    engine: PricingEngine
    mtime_ns: int


class CatalogLoader:
    """
    Hot reload of the pricing catalog YAML (thread-safe).

    - Keeps the last known-good catalog active
    - On each get(): checks mtime_ns; if changed -> reload + validate
    - If reload fails: logs the error and keeps the previous catalog
    """

    def __init__(self, yaml_path: Optional[str] = None, **engine_kwargs: Any):
        if yaml_path is None:
            yaml_path = (engine_kwargs.get("settings") or default_settings).PRICING_CATALOG_PATH
        if not yaml_path:
            raise PricingConfigurationError("no catalog path given and PRICING_CATALOG_PATH is not set")
        self.yaml_path = str(yaml_path)
        self._engine_kwargs: Dict[str, Any] = engine_kwargs
        self._lock = threading.Lock()
        self._loaded: Optional[LoadedCatalog] = None

        # eager initial load (fail fast on a missing or broken file)
        self._loaded = self._load_from_disk_or_raise()

    @property
    def engine(self) -> PricingEngine:
        return self.get().engine

    def get(self) -> LoadedCatalog:
        try:
            current_mtime = self._stat_mtime_ns()
        except FileNotFoundError:
            if self._loaded is None:
                raise
            log.warning("catalog_file_missing", path=self.yaml_path, keeping_mtime_ns=self._loaded.mtime_ns)
            return self._loaded

        loaded = self._loaded
        if loaded is not None and current_mtime == loaded.mtime_ns:
            return loaded

        with self._lock:
            loaded = self._loaded
            # double-check after acquiring the lock
            try:
                current_mtime = self._stat_mtime_ns()
            except FileNotFoundError:
                if loaded is None:
                    raise
                log.warning("catalog_file_missing", path=self.yaml_path, keeping_mtime_ns=loaded.mtime_ns)
                return loaded

            if loaded is not None and current_mtime == loaded.mtime_ns:
                return loaded

            try:
                new_loaded = self._load_from_disk_or_raise(expected_mtime_ns=current_mtime)
            except (PricingError, OSError) as e:
                if loaded is None:
                    raise
                log.error("catalog_reload_failed", path=self.yaml_path, error=repr(e), keeping_mtime_ns=loaded.mtime_ns)
                return loaded

            self._loaded = new_loaded
            log.info(
                "catalog_reloaded",
                path=self.yaml_path,
                mtime_ns=new_loaded.mtime_ns,
                tables=len(new_loaded.catalog.tables),
            )
            return new_loaded

    # -----------------
    # internals
    # -----------------

    def _stat_mtime_ns(self) -> int:
        return os.stat(self.yaml_path).st_mtime_ns

    def _load_from_disk_or_raise(self, expected_mtime_ns: Optional[int] = None) -> LoadedCatalog:
        if expected_mtime_ns is None:
            expected_mtime_ns = self._stat_mtime_ns()
        catalog = load_catalog(self.yaml_path)
        engine = PricingEngine.from_catalog(catalog, **self._engine_kwargs)
        return LoadedCatalog(catalog=catalog, engine=engine, mtime_ns=expected_mtime_ns)
