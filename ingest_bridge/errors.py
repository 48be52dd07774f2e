"""Jerarquía de errores del bridge.

- BrokerConnectionError → se recupera reconectando (nunca fatal)
- PayloadParseError     → se descarta el registro derivado, el raw se guarda
- PersistenceError      → se descarta el registro tras los reintentos
- ConfigurationError    → fatal, solo en el arranque
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base de todos los errores del bridge."""


class BrokerConnectionError(BridgeError):
    """Fallo de transporte o rechazo del broker MQTT."""


class PayloadParseError(BridgeError):
    """Payload malformado o con forma inesperada."""


class PersistenceError(BridgeError):
    """Fallo al escribir un registro en la base de datos."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class ConfigurationError(BridgeError):
    """Configuración inválida en el arranque."""
