"""Entity snapshots fetched from a realm.

One concrete model per entity category. Snapshots are frozen: a sync never
patches them in place, a fresh fetch is needed to observe the new state.

Field names follow the Keycloak admin representation (camelCase aliases) so
raw API payloads validate directly, e.g.
``Client.model_validate({"clientId": "web", "publicClient": True})``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class EntityCategory(str, Enum):
    """Entity categories compared between two realms."""

    ROLES = "roles"
    CLIENTS = "clients"
    GROUPS = "groups"
    USERS = "users"


class FieldKind(str, Enum):
    """How a comparison field is compared."""

    SCALAR = "scalar"
    SET = "set"
    MAPPING = "mapping"


@dataclass(frozen=True)
class ComparisonField:
    """A field taking part in the comparison of two entities.

    Attributes:
        name: Name reported in differences (Keycloak camelCase name).
        attr: Attribute on the entity model.
        kind: Comparison semantics.
    """

    name: str
    attr: str
    kind: FieldKind


class Entity(BaseModel):
    """Base class for entity snapshots."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    category: ClassVar[EntityCategory]
    key_field: ClassVar[str]
    comparison_fields: ClassVar[tuple[ComparisonField, ...]] = ()

    id: str | None = Field(default=None, description="Realm-local identifier")

    @property
    def natural_key(self) -> str:
        """Identity of the entity within its realm."""
        return getattr(self, self.key_field)


class Role(Entity):
    """Realm role."""

    category: ClassVar[EntityCategory] = EntityCategory.ROLES
    key_field: ClassVar[str] = "name"
    comparison_fields: ClassVar[tuple[ComparisonField, ...]] = (
        ComparisonField("description", "description", FieldKind.SCALAR),
        ComparisonField("composite", "composite", FieldKind.SCALAR),
        ComparisonField("composites", "composites", FieldKind.SET),
        ComparisonField("clientComposites", "client_composites", FieldKind.MAPPING),
        ComparisonField("attributes", "attributes", FieldKind.MAPPING),
    )

    name: str
    description: str | None = None
    composite: bool | None = None
    client_role: bool | None = Field(default=None, alias="clientRole")
    attributes: dict[str, list[str]] | None = None

    # Child roles of a composite: realm role names, and clientId -> role names
    composites: list[str] | None = None
    client_composites: dict[str, list[str]] | None = Field(
        default=None, alias="clientComposites"
    )


class Client(Entity):
    """OIDC / SAML client."""

    category: ClassVar[EntityCategory] = EntityCategory.CLIENTS
    key_field: ClassVar[str] = "client_id"
    comparison_fields: ClassVar[tuple[ComparisonField, ...]] = (
        ComparisonField("protocol", "protocol", FieldKind.SCALAR),
        ComparisonField("enabled", "enabled", FieldKind.SCALAR),
        ComparisonField("publicClient", "public_client", FieldKind.SCALAR),
        ComparisonField("bearerOnly", "bearer_only", FieldKind.SCALAR),
        ComparisonField(
            "directAccessGrantsEnabled", "direct_access_grants_enabled", FieldKind.SCALAR
        ),
        ComparisonField(
            "serviceAccountsEnabled", "service_accounts_enabled", FieldKind.SCALAR
        ),
        ComparisonField("redirectUris", "redirect_uris", FieldKind.SET),
        ComparisonField("webOrigins", "web_origins", FieldKind.SET),
        ComparisonField("defaultClientScopes", "default_client_scopes", FieldKind.SET),
        ComparisonField("optionalClientScopes", "optional_client_scopes", FieldKind.SET),
        ComparisonField("clientRoles", "client_roles", FieldKind.SET),
    )

    client_id: str = Field(..., alias="clientId")
    name: str | None = None
    description: str | None = None
    protocol: str | None = None
    enabled: bool | None = None
    public_client: bool | None = Field(default=None, alias="publicClient")
    bearer_only: bool | None = Field(default=None, alias="bearerOnly")
    direct_access_grants_enabled: bool | None = Field(
        default=None, alias="directAccessGrantsEnabled"
    )
    service_accounts_enabled: bool | None = Field(
        default=None, alias="serviceAccountsEnabled"
    )
    redirect_uris: list[str] | None = Field(default=None, alias="redirectUris")
    web_origins: list[str] | None = Field(default=None, alias="webOrigins")
    default_client_scopes: list[str] | None = Field(
        default=None, alias="defaultClientScopes"
    )
    optional_client_scopes: list[str] | None = Field(
        default=None, alias="optionalClientScopes"
    )
    client_roles: list[str] | None = Field(default=None, alias="clientRoles")

    # scope name -> mapper name -> mapper representation (without "id")
    scope_mappers: dict[str, dict[str, dict[str, Any]]] | None = Field(
        default=None, alias="scopeMappers"
    )


class Group(Entity):
    """Group, flattened out of the realm's sub-group tree."""

    category: ClassVar[EntityCategory] = EntityCategory.GROUPS
    key_field: ClassVar[str] = "path"
    comparison_fields: ClassVar[tuple[ComparisonField, ...]] = (
        ComparisonField("realmRoles", "realm_roles", FieldKind.SET),
        ComparisonField("clientRoles", "client_roles", FieldKind.MAPPING),
        ComparisonField("attributes", "attributes", FieldKind.MAPPING),
    )

    path: str
    name: str | None = None
    realm_roles: list[str] | None = Field(default=None, alias="realmRoles")
    client_roles: dict[str, list[str]] | None = Field(default=None, alias="clientRoles")
    attributes: dict[str, list[str]] | None = None

    @property
    def parent_path(self) -> str | None:
        """Path of the parent group, or None for a top-level group."""
        head, _, _ = self.path.rstrip("/").rpartition("/")
        return head or None


class User(Entity):
    """Realm user."""

    category: ClassVar[EntityCategory] = EntityCategory.USERS
    key_field: ClassVar[str] = "username"
    comparison_fields: ClassVar[tuple[ComparisonField, ...]] = (
        ComparisonField("enabled", "enabled", FieldKind.SCALAR),
        ComparisonField("realmRoles", "realm_roles", FieldKind.SET),
        ComparisonField("clientRoles", "client_roles", FieldKind.MAPPING),
        ComparisonField("groups", "groups", FieldKind.SET),
        ComparisonField("attributes", "attributes", FieldKind.MAPPING),
        ComparisonField("requiredActions", "required_actions", FieldKind.SET),
    )

    username: str
    email: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    enabled: bool | None = None
    realm_roles: list[str] | None = Field(default=None, alias="realmRoles")
    client_roles: dict[str, list[str]] | None = Field(default=None, alias="clientRoles")
    groups: list[str] | None = None
    attributes: dict[str, list[str]] | None = None
    required_actions: list[str] | None = Field(default=None, alias="requiredActions")


ENTITY_MODELS: dict[EntityCategory, type[Entity]] = {
    EntityCategory.ROLES: Role,
    EntityCategory.CLIENTS: Client,
    EntityCategory.GROUPS: Group,
    EntityCategory.USERS: User,
}


def entity_model(category: EntityCategory | str) -> type[Entity]:
    """Get the entity model for a category."""
    return ENTITY_MODELS[EntityCategory(category)]


def parse_entities(
    category: EntityCategory | str,
    payload: Iterable[Mapping[str, Any]],
) -> list[Entity]:
    """Validate raw admin API representations into entity snapshots."""
    model = entity_model(category)
    return [model.model_validate(item) for item in payload]
