"""Core module - Arquitectura del bridge MQTT → TimescaleDB.

Estructura:
- transport/       → Sesión MQTT y reconexión
- domain/          → Mensajes y registros clasificados
- classification/  → Detección de formato y extracción de campos
- pipeline/        → Cola acotada, workers y coordinador
- monitoring/      → Estadísticas
"""
