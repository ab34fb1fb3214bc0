"""Launcher package for the TanyaAyomi backend."""
