"""Keycloak admin API adapter.

Provides the entity source and sync collaborator used by the
reconciliation service.
"""

from kmm.reconcile.keycloak.client import (
    KeycloakAdminClient,
    KeycloakAuthError,
    KeycloakConflictError,
    KeycloakError,
    KeycloakNotFoundError,
)
from kmm.reconcile.keycloak.gateway import KeycloakGateway
from kmm.reconcile.keycloak.settings import KeycloakSettings

__all__ = [
    "KeycloakAdminClient",
    "KeycloakAuthError",
    "KeycloakConflictError",
    "KeycloakError",
    "KeycloakGateway",
    "KeycloakNotFoundError",
    "KeycloakSettings",
]
