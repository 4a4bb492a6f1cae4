"""Vetra - synchronisation des systèmes de gestion vétérinaire (VMS)."""

__version__ = "0.1.0"
