"""Validación de topic filters MQTT."""

from __future__ import annotations

from typing import Iterable, List


def validate_topic_filter(topic_filter: str) -> None:
    """Valida un topic filter.

    Raises:
        ValueError: Si el filtro no cumple las reglas MQTT
    """
    if not topic_filter:
        raise ValueError("topic filter must not be empty")

    levels = topic_filter.split("/")
    for index, level in enumerate(levels):
        if "#" in level:
            if level != "#":
                raise ValueError(f"'#' must occupy a whole level: {topic_filter!r}")
            if index != len(levels) - 1:
                raise ValueError(f"'#' must be the last level: {topic_filter!r}")
        if "+" in level and level != "+":
            raise ValueError(f"'+' must occupy a whole level: {topic_filter!r}")


def validate_topic_filters(topic_filters: Iterable[str]) -> List[str]:
    """Valida una lista de filtros y la devuelve sin duplicados, en orden."""
    seen: List[str] = []
    for topic_filter in topic_filters:
        validate_topic_filter(topic_filter)
        if topic_filter not in seen:
            seen.append(topic_filter)
    if not seen:
        raise ValueError("at least one topic filter is required")
    return seen
