"""Keycloak Admin API client.

Wraps the Keycloak Admin REST API of one realm for:
- Snapshot fetching (roles, clients, groups, users)
- Additive entity sync (create, or complete an existing entity)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from kmm.reconcile.keycloak.settings import KeycloakSettings
from kmm.reconcile.models.entities import Client, Group, Role, User

logger = logging.getLogger(__name__)

# Client settings copied on sync, in admin representation
CLIENT_SETTINGS = (
    "name",
    "description",
    "protocol",
    "enabled",
    "publicClient",
    "bearerOnly",
    "directAccessGrantsEnabled",
    "serviceAccountsEnabled",
)


class KeycloakError(Exception):
    """Base exception for Keycloak API errors."""

    def __init__(
        self, message: str, status_code: int | None = None, response: dict | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class KeycloakAuthError(KeycloakError):
    """Authentication failed."""

    pass


class KeycloakNotFoundError(KeycloakError):
    """Resource not found."""

    pass


class KeycloakConflictError(KeycloakError):
    """Resource already exists."""

    pass


@dataclass
class TokenInfo:
    """OAuth token information."""

    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_valid(self, leeway: int = 30) -> bool:
        """Check if token is still valid."""
        return time.time() < (self.expires_at - leeway)


def _q(segment: str) -> str:
    return quote(segment, safe="")


class KeycloakAdminClient:
    """Async client for the Keycloak Admin REST API of one realm."""

    def __init__(
        self,
        settings: KeycloakSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._token: TokenInfo | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "KeycloakAdminClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            timeout=self._settings.timeout, transport=self._transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def settings(self) -> KeycloakSettings:
        """Get settings."""
        return self._settings

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(self) -> None:
        """Authenticate and obtain access token.

        Tries service client credentials first, falls back to admin user/pass.
        """
        if self._settings.has_client_credentials:
            token_url = f"{self._settings.realm_url}/protocol/openid-connect/token"
            data = {
                "grant_type": "client_credentials",
                "client_id": self._settings.admin_client_id,
                "client_secret": self._settings.admin_client_secret,
            }
            principal = f"service client {self._settings.admin_client_id}"
        elif self._settings.has_admin_credentials:
            token_url = f"{self._settings.auth_realm_url}/protocol/openid-connect/token"
            data = {
                "grant_type": "password",
                "client_id": "admin-cli",
                "username": self._settings.admin_user,
                "password": self._settings.admin_password,
            }
            principal = f"admin user {self._settings.admin_user}"
        else:
            raise KeycloakAuthError(
                f"No credentials configured for {self._settings.base_url} "
                f"realm {self._settings.realm}"
            )

        logger.debug("Authenticating as %s", principal)
        response = await self._client.post(token_url, data=data)

        if response.status_code != 200:
            raise KeycloakAuthError(
                f"Authentication as {principal} failed: {response.text}",
                status_code=response.status_code,
            )

        payload = response.json()
        self._token = TokenInfo(
            access_token=payload["access_token"],
            expires_at=time.time() + float(payload.get("expires_in", 300)),
            refresh_token=payload.get("refresh_token"),
        )
        logger.debug("Authenticated as %s", principal)

    async def _ensure_token(self) -> str:
        """Ensure we have a valid token."""
        if not self._token or not self._token.is_valid():
            await self.authenticate()
        return self._token.access_token

    async def _headers(self) -> dict[str, str]:
        """Get request headers with auth token."""
        token = await self._ensure_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request to admin API."""
        url = f"{self._settings.admin_url}{path}"
        headers = await self._headers()
        response = await self._client.get(url, headers=headers, params=params)
        return self._handle_response(response)

    async def _post(self, path: str, json: list | dict | None = None) -> Any:
        """Make POST request to admin API."""
        url = f"{self._settings.admin_url}{path}"
        headers = await self._headers()
        response = await self._client.post(url, headers=headers, json=json)
        return self._handle_response(response, expected_status=[200, 201, 204])

    async def _put(self, path: str, json: dict | None = None) -> Any:
        """Make PUT request to admin API."""
        url = f"{self._settings.admin_url}{path}"
        headers = await self._headers()
        response = await self._client.put(url, headers=headers, json=json)
        return self._handle_response(response, expected_status=[200, 204])

    async def _get_paged(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        missing_ok: bool = False,
    ) -> list[dict[str, Any]]:
        """GET every page of a list endpoint (first/max paging).

        With missing_ok, a 404 on the first page means the realm does not
        expose the list at all and yields []. Any other 404 propagates.
        """
        items: list[dict[str, Any]] = []
        first = 0
        size = self._settings.page_size
        while True:
            try:
                page = await self._get(
                    path, params={**(params or {}), "first": first, "max": size}
                )
            except KeycloakNotFoundError:
                if missing_ok and first == 0:
                    logger.debug("%s not available in realm %s", path, self._settings.realm)
                    return []
                raise
            items.extend(page or [])
            if not page or len(page) < size:
                return items
            first += size

    def _handle_response(
        self,
        response: httpx.Response,
        expected_status: list[int] | None = None,
    ) -> Any:
        """Handle API response."""
        expected = expected_status or [200]

        if response.status_code == 404:
            raise KeycloakNotFoundError(
                f"Resource not found: {response.request.url}",
                status_code=404,
            )

        if response.status_code == 409:
            raise KeycloakConflictError(
                f"Resource already exists: {response.text}",
                status_code=409,
            )

        if response.status_code in (401, 403):
            raise KeycloakAuthError(
                f"Not authorized ({response.status_code}): {response.request.url}",
                status_code=response.status_code,
            )

        if response.status_code not in expected:
            raise KeycloakError(
                f"Unexpected response {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None

        return response.json()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_client_by_client_id(self, client_id: str) -> dict[str, Any] | None:
        """Get a client by clientId."""
        clients = await self._get("/clients", params={"clientId": client_id})
        for client in clients or []:
            if client.get("clientId") == client_id:
                return client
        return None

    async def get_group_by_path(self, path: str) -> dict[str, Any] | None:
        """Get a group by its full path, or None."""
        try:
            return await self._get(f"/group-by-path{quote(path, safe='/')}")
        except KeycloakNotFoundError:
            return None

    async def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        """Get a user by exact username."""
        users = await self._get("/users", params={"username": username, "exact": "true"})
        for user in users or []:
            if user.get("username") == username:
                return user
        return None

    async def list_client_scopes(self) -> list[dict[str, Any]]:
        """List all client scopes in the realm."""
        return await self._get("/client-scopes")

    async def get_realm_role(self, name: str) -> dict[str, Any]:
        return await self._get(f"/roles/{_q(name)}")

    async def get_client_role(self, client_uuid: str, name: str) -> dict[str, Any]:
        return await self._get(f"/clients/{client_uuid}/roles/{_q(name)}")

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def fetch_roles(self) -> list[Role]:
        """Fetch realm roles with their attributes and composites."""
        client_ids: dict[str, str] = {}
        roles = await self._get_paged(
            "/roles", params={"briefRepresentation": "false"}, missing_ok=True
        )
        return [await self._role_snapshot(r, client_ids) for r in roles]

    async def fetch_role(self, name: str) -> Role | None:
        try:
            raw = await self.get_realm_role(name)
        except KeycloakNotFoundError:
            return None
        return await self._role_snapshot(raw, {})

    async def _role_snapshot(self, raw: dict[str, Any], client_ids: dict[str, str]) -> Role:
        """Role plus its child roles, client children keyed by clientId.

        client_ids caches client uuid -> clientId across roles.
        """
        if not raw.get("composite"):
            return Role.model_validate(raw)

        children = await self._get(f"/roles/{_q(raw['name'])}/composites") or []
        realm_children: list[str] = []
        client_children: dict[str, list[str]] = {}
        for child in children:
            if not child.get("clientRole"):
                realm_children.append(child["name"])
                continue
            container = child["containerId"]
            if container not in client_ids:
                client_ids[container] = (await self._get(f"/clients/{container}"))["clientId"]
            client_children.setdefault(client_ids[container], []).append(child["name"])

        return Role.model_validate(
            {**raw, "composites": realm_children, "clientComposites": client_children}
        )

    async def fetch_clients(self) -> list[Client]:
        """Fetch clients with scopes, client roles and scope mappers."""
        mapper_cache: dict[str, dict[str, dict[str, Any]]] = {}
        clients = await self._get_paged("/clients", missing_ok=True)
        return [await self._client_snapshot(c, mapper_cache) for c in clients]

    async def fetch_client(self, client_id: str) -> Client | None:
        raw = await self.get_client_by_client_id(client_id)
        if raw is None:
            return None
        return await self._client_snapshot(raw, {})

    async def _client_snapshot(
        self,
        raw: dict[str, Any],
        mapper_cache: dict[str, dict[str, dict[str, Any]]],
    ) -> Client:
        client_uuid = raw["id"]
        default_scopes = await self._get(f"/clients/{client_uuid}/default-client-scopes")
        optional_scopes = await self._get(f"/clients/{client_uuid}/optional-client-scopes")
        roles = await self._get(f"/clients/{client_uuid}/roles")

        scope_mappers: dict[str, dict[str, dict[str, Any]]] = {}
        for scope in (default_scopes or []) + (optional_scopes or []):
            scope_id = scope.get("id")
            name = scope.get("name")
            if not scope_id or not name:
                continue
            if scope_id not in mapper_cache:
                mappers = await self._get(
                    f"/client-scopes/{scope_id}/protocol-mappers/models"
                )
                mapper_cache[scope_id] = {
                    m["name"]: {k: v for k, v in m.items() if k != "id"}
                    for m in mappers or []
                    if m.get("name")
                }
            scope_mappers[name] = mapper_cache[scope_id]

        return Client.model_validate(
            {
                **raw,
                "defaultClientScopes": [s["name"] for s in default_scopes or [] if s.get("name")],
                "optionalClientScopes": [s["name"] for s in optional_scopes or [] if s.get("name")],
                "clientRoles": [r["name"] for r in roles or [] if r.get("name")],
                "scopeMappers": scope_mappers,
            }
        )

    async def fetch_groups(self) -> list[Group]:
        """Fetch every group, flattening the sub-group tree."""
        top = await self._get_paged(
            "/groups", params={"briefRepresentation": "false"}, missing_ok=True
        )
        groups: list[Group] = []
        stack = list(reversed(top))
        while stack:
            raw = stack.pop()
            groups.append(Group.model_validate(raw))
            children = raw.get("subGroups") or []
            if not children and raw.get("subGroupCount"):
                # Keycloak 23+ no longer inlines sub-groups and pages children
                children = await self._get_paged(
                    f"/groups/{raw['id']}/children",
                    params={"briefRepresentation": "false"},
                )
            stack.extend(reversed(children))
        return groups

    async def fetch_group(self, path: str) -> Group | None:
        raw = await self.get_group_by_path(path)
        return Group.model_validate(raw) if raw else None

    async def fetch_users(self) -> list[User]:
        """Fetch users with role mappings, group paths and required actions."""
        users = await self._get_paged(
            "/users", params={"briefRepresentation": "false"}, missing_ok=True
        )
        return [await self._user_snapshot(raw) for raw in users]

    async def fetch_user(self, username: str) -> User | None:
        raw = await self.get_user_by_username(username)
        return await self._user_snapshot(raw) if raw else None

    async def _user_snapshot(self, raw: dict[str, Any]) -> User:
        user_id = raw["id"]
        realm_roles, client_roles = await self._role_mappings(f"/users/{user_id}")
        groups = await self._get(f"/users/{user_id}/groups")
        return User.model_validate(
            {
                **raw,
                "realmRoles": realm_roles,
                "clientRoles": client_roles,
                "groups": [g["path"] for g in groups or [] if g.get("path")],
            }
        )

    async def _role_mappings(self, owner: str) -> tuple[list[str], dict[str, list[str]]]:
        """Realm role names and clientId -> role names mapped to a user or group."""
        mappings = await self._get(f"{owner}/role-mappings") or {}
        realm_roles = [r["name"] for r in mappings.get("realmMappings") or []]
        client_roles = {
            client_id: [r["name"] for r in entry.get("mappings") or []]
            for client_id, entry in (mappings.get("clientMappings") or {}).items()
        }
        return realm_roles, client_roles

    # -------------------------------------------------------------------------
    # Sync writers
    # -------------------------------------------------------------------------

    async def sync_role(self, role: Role) -> None:
        """Create a realm role, or update description and attributes.

        Child roles of a composite are added, never removed.
        """
        payload: dict[str, Any] = {"name": role.name}
        if role.description is not None:
            payload["description"] = role.description
        if role.composite is not None:
            payload["composite"] = role.composite
        if role.attributes is not None:
            payload["attributes"] = role.attributes

        try:
            await self._post("/roles", json=payload)
            logger.info("Created role: %s", role.name)
        except KeycloakConflictError:
            current = await self.get_realm_role(role.name)
            attributes = {**(current.get("attributes") or {}), **(role.attributes or {})}
            await self._put(
                f"/roles/{_q(role.name)}",
                json={**current, **payload, "attributes": attributes},
            )
            logger.info("Updated role: %s", role.name)

        if role.composites or role.client_composites:
            await self._add_composites(role)

    async def _add_composites(self, role: Role) -> None:
        path = f"/roles/{_q(role.name)}/composites"
        children = await self._get(path) or []
        have_realm = {c["name"] for c in children if not c.get("clientRole")}
        have_client = {
            (c.get("containerId"), c["name"]) for c in children if c.get("clientRole")
        }

        reps = [
            await self.get_realm_role(name)
            for name in sorted(set(role.composites or []) - have_realm)
        ]
        for client_id, names in sorted((role.client_composites or {}).items()):
            target = await self.get_client_by_client_id(client_id)
            if target is None:
                raise KeycloakNotFoundError(f"Client not found: {client_id}")
            for name in sorted(set(names)):
                if (target["id"], name) not in have_client:
                    reps.append(await self.get_client_role(target["id"], name))

        if reps:
            await self._post(path, json=reps)
            logger.debug("Added %d composite roles to %s", len(reps), role.name)

    async def sync_client(self, client: Client) -> None:
        """Create a client or complete an existing one.

        Settings are overwritten; redirect URIs, web origins, scopes and
        client roles are only added.
        """
        settings = client.model_dump(by_alias=True, include=_client_attrs(), exclude_none=True)
        uris = list(client.redirect_uris or [])
        origins = list(client.web_origins or [])

        current = await self.get_client_by_client_id(client.client_id)
        if current is None:
            await self._post(
                "/clients",
                json={
                    "clientId": client.client_id,
                    **settings,
                    "redirectUris": uris,
                    "webOrigins": origins,
                },
            )
            current = await self.get_client_by_client_id(client.client_id)
            if current is None:
                raise KeycloakError(f"Failed to retrieve created client: {client.client_id}")
            logger.info("Created client: %s", client.client_id)
        else:
            await self._put(
                f"/clients/{current['id']}",
                json={
                    **current,
                    **settings,
                    "redirectUris": _union(current.get("redirectUris"), uris),
                    "webOrigins": _union(current.get("webOrigins"), origins),
                },
            )
            logger.info("Updated client: %s", client.client_id)

        client_uuid = current["id"]
        await self._add_client_scopes(client_uuid, "default", client.default_client_scopes)
        await self._add_client_scopes(client_uuid, "optional", client.optional_client_scopes)

        existing_roles = {
            r["name"] for r in await self._get(f"/clients/{client_uuid}/roles") or []
        }
        for role in sorted(set(client.client_roles or []) - existing_roles):
            await self._post(f"/clients/{client_uuid}/roles", json={"name": role})
            logger.info("Created client role %s on %s", role, client.client_id)

    async def _add_client_scopes(
        self, client_uuid: str, kind: str, names: list[str] | None
    ) -> None:
        if not names:
            return
        assigned = {
            s.get("name")
            for s in await self._get(f"/clients/{client_uuid}/{kind}-client-scopes") or []
        }
        scope_ids = {s.get("name"): s.get("id") for s in await self.list_client_scopes()}
        for name in sorted(set(names) - assigned):
            scope_id = scope_ids.get(name)
            if scope_id is None:
                raise KeycloakNotFoundError(f"Client scope not found: {name}")
            await self._put(f"/clients/{client_uuid}/{kind}-client-scopes/{scope_id}")
            logger.debug("Added %s scope %s to client %s", kind, name, client_uuid)

    async def sync_group(self, group: Group) -> None:
        """Create a group under its parent path and add missing role mappings."""
        current = await self.get_group_by_path(group.path)
        name = group.name or group.path.rstrip("/").rsplit("/", 1)[-1]
        if current is None:
            payload: dict[str, Any] = {"name": name}
            if group.attributes is not None:
                payload["attributes"] = group.attributes

            parent_path = group.parent_path
            if parent_path is None:
                await self._post("/groups", json=payload)
            else:
                parent = await self.get_group_by_path(parent_path)
                if parent is None:
                    raise KeycloakNotFoundError(f"Parent group not found: {parent_path}")
                await self._post(f"/groups/{parent['id']}/children", json=payload)

            current = await self.get_group_by_path(group.path)
            if current is None:
                raise KeycloakError(f"Failed to retrieve created group: {group.path}")
            logger.info("Created group: %s", group.path)
        elif group.attributes:
            attributes = {**(current.get("attributes") or {}), **group.attributes}
            await self._put(f"/groups/{current['id']}", json={**current, "attributes": attributes})
            logger.info("Updated group: %s", group.path)

        await self._add_role_mappings(
            f"/groups/{current['id']}", group.realm_roles, group.client_roles
        )

    async def sync_user(self, user: User) -> None:
        """Create a user and add missing role mappings and group memberships."""
        payload = user.model_dump(
            by_alias=True,
            include={"username", "email", "first_name", "last_name", "enabled",
                     "attributes", "required_actions"},
            exclude_none=True,
        )
        try:
            await self._post("/users", json=payload)
            logger.info("Created user: %s", user.username)
        except KeycloakConflictError:
            logger.info("User %s exists, completing memberships", user.username)

        current = await self.get_user_by_username(user.username)
        if current is None:
            raise KeycloakError(f"Failed to retrieve user: {user.username}")
        user_id = current["id"]

        await self._add_role_mappings(f"/users/{user_id}", user.realm_roles, user.client_roles)

        member_of = {g.get("path") for g in await self._get(f"/users/{user_id}/groups") or []}
        for path in sorted(set(user.groups or []) - member_of):
            group = await self.get_group_by_path(path)
            if group is None:
                raise KeycloakNotFoundError(f"Group not found: {path}")
            await self._put(f"/users/{user_id}/groups/{group['id']}")
            logger.debug("Added user %s to group %s", user.username, path)

    async def _add_role_mappings(
        self,
        owner: str,
        realm_roles: list[str] | None,
        client_roles: dict[str, list[str]] | None,
    ) -> None:
        have_realm, have_client = await self._role_mappings(owner)

        missing = sorted(set(realm_roles or []) - set(have_realm))
        if missing:
            reps = [await self.get_realm_role(name) for name in missing]
            await self._post(f"{owner}/role-mappings/realm", json=reps)
            logger.debug("Mapped realm roles %s on %s", missing, owner)

        for client_id, names in sorted((client_roles or {}).items()):
            missing = sorted(set(names) - set(have_client.get(client_id, [])))
            if not missing:
                continue
            target = await self.get_client_by_client_id(client_id)
            if target is None:
                raise KeycloakNotFoundError(f"Client not found: {client_id}")
            reps = [await self.get_client_role(target["id"], name) for name in missing]
            await self._post(f"{owner}/role-mappings/clients/{target['id']}", json=reps)
            logger.debug("Mapped %s roles %s on %s", client_id, missing, owner)


def _client_attrs() -> set[str]:
    by_alias = {
        (field.alias or name): name for name, field in Client.model_fields.items()
    }
    return {by_alias[a] for a in CLIENT_SETTINGS}


def _union(current: list[str] | None, wanted: list[str]) -> list[str]:
    merged = list(current or [])
    merged.extend(v for v in wanted if v not in merged)
    return merged
