"""Acervo - institutional document retrieval backend."""

__version__ = "1.0.0"
