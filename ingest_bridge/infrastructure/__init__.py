"""Infraestructura - Adaptadores a servicios externos."""
