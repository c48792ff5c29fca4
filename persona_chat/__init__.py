"""Persona Chat: multi-persona chat sessions with generated media."""
