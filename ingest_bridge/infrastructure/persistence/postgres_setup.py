"""Bootstrap del esquema TimescaleDB.

El esquema es propiedad externa (init scripts del contenedor); este módulo
solo permite aplicarlo desde el bridge con ``start --init-schema``.
"""

from __future__ import annotations

import logging
import pathlib
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = pathlib.Path(__file__).parent / "migrations"
SCHEMA_FILE = MIGRATIONS_DIR / "timescale_001.sql"


def split_statements(sql_content: str) -> List[str]:
    """Separa un script SQL en sentencias (por ';'), sin vacías."""
    return [s.strip() for s in sql_content.split(";") if s.strip()]


def ensure_schema(engine: Engine, sql_file: Optional[pathlib.Path] = None) -> int:
    """Crea tablas, hypertables e índices si no existen.

    Seguro de llamar varias veces.

    Args:
        engine: Engine de PostgreSQL/TimescaleDB
        sql_file: Script a aplicar (por defecto la migración incluida)

    Returns:
        Número de sentencias ejecutadas
    """
    sql_file = sql_file or SCHEMA_FILE
    logger.info("[DB] Ensuring schema from %s", sql_file.name)

    statements = split_statements(sql_file.read_text(encoding="utf-8"))

    try:
        with engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))
    except Exception as e:
        logger.exception("[DB] Schema creation failed: %s", e)
        raise

    logger.info("[DB] Schema ready (%d statements)", len(statements))
    return len(statements)
