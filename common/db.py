from __future__ import annotations

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

logger = logging.getLogger(__name__)


def redact_url(url: str) -> str:
    """URL de conexión sin contraseña, apta para logs."""
    return make_url(url).render_as_string(hide_password=True)


def get_engine(url: str) -> Engine:
    """Crea el engine (con pool) compartido por todas las escrituras."""
    logger.info("[DB] Creating engine %s", redact_url(url))

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        future=True,
    )


def check_connection(engine: Engine) -> bool:
    """Test de conexión: ayuda a ver en logs si el bridge realmente llega a la BD."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("[DB] Connection test FAILED")
        return False

    logger.info("[DB] Connection test OK")
    return True
