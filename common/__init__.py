"""Configuración y conexión a BD compartidas."""
