"""
Módulo para el parseo crudo del export tabular de operaciones.

Este módulo proporciona la clase `CSVSplitter`, que convierte el texto completo
de un export (con campos entre comillas que contienen saltos de línea y comas)
en una lista ordenada de registros indexados por nombre de columna.

La decisión de dónde termina cada fila lógica la toma `RowBoundaryMachine`,
una máquina de estados explícita (collecting → boundary_candidate → closed)
basada en la paridad acumulada de comillas y en heurísticas sobre la forma
de la línea.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Union

from .constants import ProcessingThresholds

logger = logging.getLogger(__name__)

RawRow = Dict[str, str]


class ParserError(Exception):
    """Excepción base para errores ocurridos durante el parseo."""

    pass


class FileReadError(ParserError):
    """Indica un error al leer el archivo de entrada."""

    pass


class SourceUnavailableError(FileReadError):
    """El archivo fuente no existe o no es un archivo legible."""

    pass


# ============================================================================
# MÁQUINA DE ESTADOS DE FRONTERA DE FILA
# ============================================================================
class RowBoundaryState(Enum):
    """Estados de la máquina que delimita filas lógicas."""

    COLLECTING = "collecting"
    BOUNDARY_CANDIDATE = "boundary_candidate"
    CLOSED = "closed"


# Una fila nueva empieza con el token de Item ID del export (<#C095VK2905C|>),
# con un primer campo vacío, con una comilla que abre el primer campo,
# o con un primer campo completo seguido del delimitador.
DEFAULT_RECORD_START = re.compile(r'^\s*(?:<#\w+\|?|,|"|[^\s",][^,"\n]*,)')


class RowBoundaryMachine:
    """
    Acumula líneas físicas hasta completar una fila lógica.

    Transiciones:
        - COLLECTING: la paridad de comillas desde el inicio de la fila es impar,
          o es par pero ninguna heurística auxiliar confirmó el cierre.
        - BOUNDARY_CANDIDATE: paridad par tras la última línea.
        - CLOSED: paridad par y además la línea termina con comilla de cierre,
          la siguiente línea inicia un registro nuevo, la siguiente línea está
          vacía, o se alcanzó el fin de la entrada. Con `expected_fields`,
          también cierra cuando la fila ya tiene todas sus columnas y la
          siguiente línea contiene el delimitador.

    Una vez en CLOSED, `take()` entrega el texto de la fila y reinicia la máquina.
    """

    def __init__(
        self,
        record_start: Pattern = DEFAULT_RECORD_START,
        max_lines_per_row: int = 1000,
        expected_fields: Optional[int] = None,
        delimiter: str = ",",
    ):
        self.record_start = record_start
        self.max_lines_per_row = max_lines_per_row
        self.expected_fields = expected_fields
        self.delimiter = delimiter
        self.state = RowBoundaryState.COLLECTING
        self.quote_count = 0
        self.start_line: Optional[int] = None
        self._lines: List[str] = []
        self.forced_close = False

    @property
    def has_content(self) -> bool:
        return any(line.strip() for line in self._lines)

    def feed(self, line: str, line_number: int, next_line: Optional[str]) -> RowBoundaryState:
        """
        Procesa una línea física y devuelve el estado resultante.

        Args:
            line: Línea actual (sin salto de línea).
            line_number: Número de línea física (1-based) para trazabilidad.
            next_line: Línea siguiente o None si es el final de la entrada.
        """
        if self.start_line is None:
            self.start_line = line_number
        self._lines.append(line)
        self.quote_count += line.count('"')

        if self.quote_count % 2 != 0:
            self.state = RowBoundaryState.COLLECTING
            if next_line is None or len(self._lines) >= self.max_lines_per_row:
                # Comilla sin cerrar: se entrega lo acumulado como fila sospechosa
                self.forced_close = True
                self.state = RowBoundaryState.CLOSED
            return self.state

        self.state = RowBoundaryState.BOUNDARY_CANDIDATE
        if self._confirms_boundary(line, next_line):
            self.state = RowBoundaryState.CLOSED
        else:
            self.state = RowBoundaryState.COLLECTING
        return self.state

    def _confirms_boundary(self, line: str, next_line: Optional[str]) -> bool:
        if next_line is None:
            return True
        stripped = line.rstrip()
        if stripped.endswith('"') and len(stripped.strip()) > 1:
            return True
        if not next_line.strip():
            return True
        if self.record_start.match(next_line):
            return True
        if self.expected_fields and self.delimiter in next_line:
            values = parse_csv_line("\n".join(self._lines), self.delimiter)
            if len(values) >= self.expected_fields:
                return True
        return len(self._lines) >= self.max_lines_per_row

    def take(self) -> str:
        """Entrega el texto de la fila cerrada y reinicia la máquina."""
        text = "\n".join(self._lines)
        self._lines = []
        self.quote_count = 0
        self.start_line = None
        self.forced_close = False
        self.state = RowBoundaryState.COLLECTING
        return text


# ============================================================================
# PARSEO DE CAMPOS
# ============================================================================
def parse_csv_line(text: str, delimiter: str = ",") -> List[str]:
    """
    Divide una fila lógica en valores.

    Las comillas solo abren un campo al inicio del mismo; dentro de un campo
    entre comillas, una comilla doble (``""``) se interpreta como comilla
    literal y el delimitador no separa. Los valores se devuelven sin las
    comillas externas y sin espacios en los extremos.
    """
    values: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if char == '"':
            if in_quotes:
                if i + 1 < length and text[i + 1] == '"':
                    current.append('"')
                    i += 1
                else:
                    in_quotes = False
            elif not "".join(current).strip():
                in_quotes = True
                current = []
            else:
                # Comilla suelta dentro de un campo sin comillas
                current.append(char)
        elif char == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    values.append("".join(current).strip())
    return values


# ============================================================================
# RESULTADO Y PARSER
# ============================================================================
@dataclass
class SplitResult:
    """Resultado del parseo crudo: filas, cabeceras y diagnóstico."""

    rows: List[RawRow] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)
    line_numbers: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    discarded_rows: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "rows": [dict(r) for r in self.rows],
            "fields": list(self.fields),
            "warnings": list(self.warnings),
            "discarded_rows": self.discarded_rows,
        }


class CSVSplitter:
    """
    Parser tolerante de exports con campos multilínea.

    Las filas malformadas (demasiado pocas columnas o comillas sin cerrar) se
    descartan con una advertencia; nunca abortan el lote completo.
    """

    DEFAULT_ENCODINGS = ("utf-8-sig", "utf-8", "latin1", "cp1252")

    def __init__(
        self,
        delimiter: str = ",",
        min_field_ratio: float = ProcessingThresholds.MIN_ROW_FIELD_RATIO,
        record_start: Pattern = DEFAULT_RECORD_START,
    ):
        if not 0 < min_field_ratio <= 1:
            raise ValueError(f"min_field_ratio fuera de rango: {min_field_ratio}")
        self.delimiter = delimiter
        self.min_field_ratio = min_field_ratio
        self.record_start = record_start
        self.stats: Counter = Counter()

    def min_fields(self, header_count: int) -> int:
        return max(1, int(header_count * self.min_field_ratio))

    def split(self, content: str) -> SplitResult:
        """
        Convierte el texto completo del export en filas indexadas por cabecera.

        Args:
            content: Texto completo (cabecera + filas).

        Returns:
            SplitResult con filas, cabeceras y advertencias.
        """
        result = SplitResult()
        self.stats = Counter()

        if not content or not content.strip():
            result.warnings.append("Contenido vacío: no hay cabecera ni filas")
            logger.warning("⚠️ Contenido vacío recibido por CSVSplitter")
            return result

        content = content.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
        lines = content.split("\n")

        header_index = next((i for i, ln in enumerate(lines) if ln.strip()), None)
        if header_index is None:
            return result

        # La cabecera también puede tener nombres entre comillas con saltos de
        # línea; termina en la primera línea con comillas balanceadas
        machine = RowBoundaryMachine(self.record_start, delimiter=self.delimiter)
        i = header_index
        while i < len(lines):
            nxt = lines[i + 1] if i + 1 < len(lines) else None
            state = machine.feed(lines[i], i + 1, nxt)
            i += 1
            if state is RowBoundaryState.CLOSED or machine.quote_count % 2 == 0:
                break
        result.fields = parse_csv_line(machine.take(), self.delimiter)
        header_count = len(result.fields)
        min_fields = self.min_fields(header_count)
        logger.info(f"📋 Cabeceras encontradas: {header_count} columnas")

        machine = RowBoundaryMachine(
            self.record_start, expected_fields=header_count, delimiter=self.delimiter
        )
        total_lines = len(lines)
        while i < total_lines:
            line = lines[i]
            nxt = lines[i + 1] if i + 1 < total_lines else None
            line_number = i + 1
            i += 1

            if machine.state is RowBoundaryState.COLLECTING and not machine.has_content and not line.strip():
                # Líneas en blanco entre filas
                self.stats["blank_lines"] += 1
                continue

            state = machine.feed(line, line_number, nxt)
            if state is not RowBoundaryState.CLOSED:
                continue

            start_line = machine.start_line or line_number
            forced = machine.forced_close
            row_text = machine.take()
            self._emit_row(result, row_text, start_line, min_fields, forced)

        self.stats["rows"] = len(result.rows)
        self.stats["discarded"] = result.discarded_rows
        logger.info(
            f"✅ Parseo crudo completo: {len(result.rows)} filas, "
            f"{result.discarded_rows} descartadas"
        )
        return result

    def _emit_row(
        self,
        result: SplitResult,
        row_text: str,
        start_line: int,
        min_fields: int,
        forced: bool,
    ) -> None:
        if not row_text.strip():
            return

        values = parse_csv_line(row_text, self.delimiter)
        if forced:
            message = f"Fila en línea {start_line}: comilla sin cerrar al final de la fila"
            result.warnings.append(message)
            logger.warning(f"⚠️ {message}")

        if len(values) < min_fields:
            message = (
                f"Fila en línea {start_line} descartada: muy pocas columnas "
                f"({len(values)} vs {len(result.fields)})"
            )
            result.warnings.append(message)
            result.discarded_rows += 1
            logger.warning(f"⚠️ {message}")
            return

        if len(values) > len(result.fields):
            message = (
                f"Fila en línea {start_line}: {len(values)} valores para "
                f"{len(result.fields)} columnas, se ignoran los sobrantes"
            )
            result.warnings.append(message)
            logger.warning(f"⚠️ {message}")

        row: RawRow = {
            header: values[idx] if idx < len(values) else ""
            for idx, header in enumerate(result.fields)
        }
        result.rows.append(row)
        result.line_numbers.append(start_line)

    def split_file(self, file_path: Union[str, Path]) -> SplitResult:
        """Lee un archivo del disco y lo divide en filas."""
        return self.split(read_source_text(file_path, self.DEFAULT_ENCODINGS))


def read_source_text(file_path: Union[str, Path], encodings=CSVSplitter.DEFAULT_ENCODINGS) -> str:
    """
    Lee el contenido del archivo intentando múltiples codificaciones.

    Raises:
        SourceUnavailableError: Si el archivo no existe o no es un archivo.
        FileReadError: Si no se puede decodificar con ninguna codificación.
    """
    path = Path(file_path)
    if not path.exists():
        raise SourceUnavailableError(f"Archivo no encontrado: {path}")
    if not path.is_file():
        raise SourceUnavailableError(f"La ruta no es un archivo: {path}")

    for encoding in encodings:
        try:
            with open(path, "r", encoding=encoding, errors="strict") as f:
                content = f.read()
            logger.debug(f"Archivo {path.name} leído con codificación: {encoding}")
            return content
        except (UnicodeDecodeError, LookupError):
            continue
        except OSError as e:
            raise FileReadError(f"No se pudo leer {path}: {e}") from e
    raise FileReadError(
        f"No se pudo leer el archivo {path} con ninguna de las codificaciones especificadas."
    )
