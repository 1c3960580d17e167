"""
Caché en memoria de operaciones derivadas, con TTL y reemplazo atómico.

El caché guarda un único ``CacheSnapshot`` inmutable. Recargar construye un
snapshot nuevo por completo y lo intercambia bajo un lock; los lectores
nunca ven un estado a medio actualizar.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .constants import COUNTRY_PROFILES, CountryProfile
from .csv_splitter import RawRow
from .procesador_csv import OperationProcessor, ProcessingResult
from .schemas import OperationDetail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheSnapshot:
    operations: Tuple[OperationDetail, ...] = ()
    rows: Dict[str, Tuple[RawRow, ...]] = field(default_factory=dict)
    fields: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    loaded_at: float = 0.0
    errors: Tuple[str, ...] = ()

    @property
    def has_data(self) -> bool:
        return bool(self.operations)

    def find(self, operation_id: str) -> Optional[OperationDetail]:
        return next((op for op in self.operations if op.id == operation_id), None)


Loader = Callable[[], CacheSnapshot]


class OperationsCache:
    """
    Caché con TTL sobre un ``loader`` que produce snapshots completos.

    Args:
        loader: Función sin argumentos que devuelve un CacheSnapshot nuevo.
        ttl_seconds: Segundos de validez de un snapshot.
        clock: Reloj monotónico inyectable (por defecto ``time.monotonic``).
    """

    def __init__(self, loader: Loader, ttl_seconds: float = 30, clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[CacheSnapshot] = None
        self._stamp: float = 0.0

    def _expired(self) -> bool:
        return self._snapshot is None or (self._clock() - self._stamp) >= self.ttl_seconds

    def get(self) -> CacheSnapshot:
        """Devuelve el snapshot vigente, recargando si no existe o expiró."""
        with self._lock:
            if self._expired():
                self._swap()
            return self._snapshot

    def refresh(self) -> CacheSnapshot:
        """Recarga incondicionalmente."""
        with self._lock:
            self._swap()
            return self._snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
            self._stamp = 0.0
        logger.info("🗑️ Caché de operaciones invalidado")

    @property
    def snapshot(self) -> Optional[CacheSnapshot]:
        return self._snapshot

    def _swap(self) -> None:
        snapshot = self._loader()
        self._snapshot = snapshot
        self._stamp = self._clock()
        logger.info(
            f"🔄 Caché recargado: {len(snapshot.operations)} operaciones, {len(snapshot.errors)} errores"
        )


# ============================================================================
# CARGA MULTI-PAÍS
# ============================================================================
def _country_sources(config: Dict[str, Any]) -> List[Tuple[CountryProfile, Path]]:
    folder = Path(config.get("DATA_FOLDER", "data"))
    files = config.get("CSV_FILES", {})
    return [
        (profile, folder / files[code])
        for code, profile in COUNTRY_PROFILES.items()
        if code in files
    ]


def load_all_countries(config: Dict[str, Any], processor: Optional[OperationProcessor] = None) -> CacheSnapshot:
    """
    Procesa un archivo por país en paralelo y concatena los resultados.

    Cada pasada es independiente; el orden del resultado sigue el de los
    perfiles de país. Un archivo ausente produce un error, no una excepción.
    """
    processor = processor or OperationProcessor.from_config(config)
    sources = _country_sources(config)

    with ThreadPoolExecutor(max_workers=max(1, len(sources))) as executor:
        results: List[ProcessingResult] = list(
            executor.map(lambda source: processor.process_file(source[1], source[0]), sources)
        )

    operations: List[OperationDetail] = []
    rows: Dict[str, Tuple[RawRow, ...]] = {}
    fields: Dict[str, Tuple[str, ...]] = {}
    errors: List[str] = []

    for (profile, path), result in zip(sources, results):
        if not result.success:
            errors.extend(f"{profile.code}: {e}" for e in result.errors)
            continue
        operations.extend(result.data)
        rows[profile.code] = tuple(result.raw_data)
        fields[profile.code] = tuple(result.fields)
        errors.extend(f"{profile.code}: {e}" for e in result.errors)

    logger.info(f"📦 Carga multi-país: {len(operations)} operaciones de {len(rows)} archivos")
    return CacheSnapshot(
        operations=tuple(operations),
        rows=rows,
        fields=fields,
        loaded_at=time.time(),
        errors=tuple(errors),
    )


def build_operations_cache(config: Dict[str, Any]) -> OperationsCache:
    return OperationsCache(
        loader=lambda: load_all_countries(config),
        ttl_seconds=config.get("CACHE_TTL_SECONDS", 30),
    )
