# Modèles SQLAlchemy pour vetra-vms-sync
#
# - User: comptes Vetra (clients importés depuis un VMS inclus)
# - VmsIdentifier: liens (system_name, external_id) vers les VMS externes

from .user import User, VmsIdentifier

__all__ = [
    "User",
    "VmsIdentifier",
]
