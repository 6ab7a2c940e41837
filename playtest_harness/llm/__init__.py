"""Generative backends, model fallback and prompt templates."""
