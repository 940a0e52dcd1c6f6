"""Prefix-based routing proxy for Ollama-compatible model backends."""
