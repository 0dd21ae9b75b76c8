"""Relational persistence for Reel Studio."""
