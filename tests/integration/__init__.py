"""
Tests d'intégration pour vetra-vms-sync.

Ces tests utilisent un vrai PostgreSQL (port 5433 en local, 5432 sur GitHub Actions).
Ils sont désélectionnés par défaut.

Usage:
    pytest -m integration
"""
