"""Tests for the Keycloak admin adapter against a mocked admin API."""

import json

import httpx
import pytest

from kmm.reconcile.directory import FileClusterDirectory
from kmm.reconcile.errors import SyncError
from kmm.reconcile.keycloak import (
    KeycloakAdminClient,
    KeycloakAuthError,
    KeycloakGateway,
    KeycloakNotFoundError,
    KeycloakSettings,
)
from kmm.reconcile.models import Client, EntityCategory, Group, Role, User
from kmm.reconcile.service import ReconciliationService

BASE = "http://kc.test"
ADMIN = f"{BASE}/admin/realms/acme"


def _settings(**kwargs) -> KeycloakSettings:
    values = {
        "base_url": BASE,
        "realm": "acme",
        "admin_client_id": "kmm",
        "admin_client_secret": "secret",
    }
    values.update(kwargs)
    return KeycloakSettings(**values)


class FakeAdminApi:
    """Routes admin API requests to canned responses and records writes."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/protocol/openid-connect/token"):
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 300})

        key = (request.method, request.url.path)
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404)
        if callable(handler):
            return handler(request)
        status, body = handler
        return httpx.Response(status, json=body) if body is not None else httpx.Response(status)

    def writes(self):
        return [
            (r.method, r.url.path, json.loads(r.content) if r.content else None)
            for r in self.requests
            if r.method in ("POST", "PUT") and "openid-connect" not in r.url.path
        ]


def _path(suffix: str) -> str:
    return f"/admin/realms/acme{suffix}"


@pytest.mark.asyncio
async def test_fetch_roles_authenticates_with_client_credentials():
    api = FakeAdminApi({("GET", _path("/roles")): (200, [{"name": "admin", "composite": False}])})

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        roles = await kc.fetch_roles()

    assert roles == [Role(name="admin", composite=False)]
    token_request = api.requests[0]
    assert token_request.url.path == "/realms/acme/protocol/openid-connect/token"
    assert b"grant_type=client_credentials" in token_request.content
    assert api.requests[1].headers["Authorization"] == "Bearer tok"
    assert api.requests[1].url.params["briefRepresentation"] == "false"


@pytest.mark.asyncio
async def test_admin_user_authenticates_against_master():
    api = FakeAdminApi({("GET", _path("/roles")): (200, [])})
    settings = _settings(
        admin_client_id=None, admin_client_secret=None, admin_user="admin", admin_password="pw"
    )

    async with KeycloakAdminClient(settings, transport=httpx.MockTransport(api)) as kc:
        await kc.fetch_roles()

    assert api.requests[0].url.path == "/realms/master/protocol/openid-connect/token"
    assert b"grant_type=password" in api.requests[0].content


@pytest.mark.asyncio
async def test_missing_credentials_raise_auth_error():
    settings = _settings(admin_client_id=None, admin_client_secret=None)

    async with KeycloakAdminClient(settings, transport=httpx.MockTransport(FakeAdminApi())) as kc:
        with pytest.raises(KeycloakAuthError):
            await kc.fetch_roles()


@pytest.mark.asyncio
async def test_fetch_clients_collects_scopes_roles_and_mappers():
    api = FakeAdminApi(
        {
            ("GET", _path("/clients")): (200, [{"id": "u1", "clientId": "web", "protocol": "openid-connect"}]),
            ("GET", _path("/clients/u1/default-client-scopes")): (200, [{"id": "s1", "name": "profile"}]),
            ("GET", _path("/clients/u1/optional-client-scopes")): (200, []),
            ("GET", _path("/clients/u1/roles")): (200, [{"name": "reader"}]),
            ("GET", _path("/client-scopes/s1/protocol-mappers/models")): (
                200,
                [{"id": "m1", "name": "email", "protocolMapper": "oidc-usermodel-property-mapper"}],
            ),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        (client,) = await kc.fetch_clients()

    assert isinstance(client, Client)
    assert client.default_client_scopes == ["profile"]
    assert client.optional_client_scopes == []
    assert client.client_roles == ["reader"]
    assert client.scope_mappers == {
        "profile": {"email": {"name": "email", "protocolMapper": "oidc-usermodel-property-mapper"}}
    }


@pytest.mark.asyncio
async def test_fetch_groups_flattens_tree():
    api = FakeAdminApi(
        {
            ("GET", _path("/groups")): (
                200,
                [
                    {
                        "id": "g1",
                        "name": "ops",
                        "path": "/ops",
                        "realmRoles": ["admin"],
                        "subGroups": [{"id": "g2", "name": "oncall", "path": "/ops/oncall"}],
                    },
                    {"id": "g3", "name": "dev", "path": "/dev", "subGroupCount": 1, "subGroups": []},
                ],
            ),
            ("GET", _path("/groups/g3/children")): (
                200,
                [{"id": "g4", "name": "qa", "path": "/dev/qa"}],
            ),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        groups = await kc.fetch_groups()

    assert [g.path for g in groups] == ["/ops", "/ops/oncall", "/dev", "/dev/qa"]
    assert groups[0].realm_roles == ["admin"]


@pytest.mark.asyncio
async def test_fetch_users_pages_and_adds_memberships():
    def users(request):
        first = int(request.url.params["first"])
        page = [{"id": "u1", "username": "bob"}] if first == 0 else []
        return httpx.Response(200, json=page)

    api = FakeAdminApi(
        {
            ("GET", _path("/users")): users,
            ("GET", _path("/users/u1/role-mappings")): (
                200,
                {
                    "realmMappings": [{"name": "viewer"}],
                    "clientMappings": {"web": {"mappings": [{"name": "reader"}]}},
                },
            ),
            ("GET", _path("/users/u1/groups")): (200, [{"path": "/ops"}]),
        }
    )

    async with KeycloakAdminClient(_settings(page_size=1), transport=httpx.MockTransport(api)) as kc:
        (user,) = await kc.fetch_users()

    assert user.username == "bob"
    assert user.realm_roles == ["viewer"]
    assert user.client_roles == {"web": ["reader"]}
    assert user.groups == ["/ops"]


@pytest.mark.asyncio
async def test_sync_role_updates_on_conflict():
    api = FakeAdminApi(
        {
            ("POST", _path("/roles")): (409, {"errorMessage": "exists"}),
            ("GET", _path("/roles/admin")): (
                200,
                {"id": "r1", "name": "admin", "attributes": {"keep": ["1"]}},
            ),
            ("PUT", _path("/roles/admin")): (204, None),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_role(Role(name="admin", description="Admins", attributes={"new": ["2"]}))

    method, path, body = api.writes()[-1]
    assert (method, path) == ("PUT", _path("/roles/admin"))
    assert body["description"] == "Admins"
    assert body["attributes"] == {"keep": ["1"], "new": ["2"]}


@pytest.mark.asyncio
async def test_sync_group_creates_child_and_adds_missing_roles():
    created = {"done": False}

    def group_by_path(request):
        if request.url.path.endswith("/ops/oncall") and not created["done"]:
            return httpx.Response(404)
        if request.url.path.endswith("/ops"):
            return httpx.Response(200, json={"id": "g1", "path": "/ops"})
        return httpx.Response(200, json={"id": "g2", "path": "/ops/oncall"})

    def create_child(request):
        created["done"] = True
        return httpx.Response(201)

    api = FakeAdminApi(
        {
            ("GET", _path("/group-by-path/ops/oncall")): group_by_path,
            ("GET", _path("/group-by-path/ops")): group_by_path,
            ("POST", _path("/groups/g1/children")): create_child,
            ("GET", _path("/groups/g2/role-mappings")): (
                200,
                {"realmMappings": [{"name": "viewer"}]},
            ),
            ("GET", _path("/roles/admin")): (200, {"id": "r1", "name": "admin"}),
            ("POST", _path("/groups/g2/role-mappings/realm")): (204, None),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_group(Group(path="/ops/oncall", realmRoles=["viewer", "admin"]))

    assert api.writes() == [
        ("POST", _path("/groups/g1/children"), {"name": "oncall"}),
        ("POST", _path("/groups/g2/role-mappings/realm"), [{"id": "r1", "name": "admin"}]),
    ]


def _inventory(tmp_path):
    path = tmp_path / "clusters.yaml"
    path.write_text(
        "clusters:\n"
        f"  - {{id: 1, name: src, base_url: '{BASE}', realm: acme, client_id: kmm, client_secret: s}}\n"
        f"  - {{id: 2, name: dst, base_url: '{BASE}', realm: acme, client_id: kmm, client_secret: s}}\n"
    )
    return FileClusterDirectory(path)


@pytest.mark.asyncio
async def test_gateway_returns_empty_list_for_unavailable_category(tmp_path):
    api = FakeAdminApi()
    gateway = KeycloakGateway(
        _inventory(tmp_path), transport_factory=lambda: httpx.MockTransport(api)
    )

    assert await gateway.fetch_entities(1, EntityCategory.GROUPS) == []


@pytest.mark.asyncio
async def test_gateway_sync_missing_source_entity_raises(tmp_path):
    api = FakeAdminApi()
    gateway = KeycloakGateway(
        _inventory(tmp_path), transport_factory=lambda: httpx.MockTransport(api)
    )

    with pytest.raises(SyncError):
        await gateway.sync_entity(1, 2, EntityCategory.ROLES, "ghost")


@pytest.mark.asyncio
async def test_gateway_sync_role_creates_in_destination(tmp_path):
    api = FakeAdminApi(
        {
            ("GET", _path("/roles/admin")): (200, {"id": "r1", "name": "admin", "description": "A"}),
            ("POST", _path("/roles")): (201, None),
        }
    )
    gateway = KeycloakGateway(
        _inventory(tmp_path), transport_factory=lambda: httpx.MockTransport(api)
    )

    await gateway.sync_entity(1, 2, EntityCategory.ROLES, "admin")

    assert api.writes() == [("POST", _path("/roles"), {"name": "admin", "description": "A"})]


def test_settings_for_cluster_and_urls(inventory_file, monkeypatch):
    monkeypatch.setenv("KMM_KEYCLOAK_ADMIN_USER", "env-admin")
    cluster = FileClusterDirectory(inventory_file).get_config(1)

    settings = KeycloakSettings.for_cluster(cluster, timeout=5)

    assert settings.admin_url == "https://sso.acme.example/admin/realms/acme"
    assert settings.has_client_credentials
    assert settings.admin_user is None
    assert settings.timeout == 5


@pytest.mark.asyncio
async def test_fetch_groups_pages_children():
    children = [
        {"id": f"t{i}", "name": f"team{i:02d}", "path": f"/org/team{i:02d}"} for i in range(12)
    ]

    def list_children(request):
        # Keycloak 23+ returns at most `max` children, 10 when not given
        first = int(request.url.params.get("first", 0))
        size = int(request.url.params.get("max", 10))
        return httpx.Response(200, json=children[first:first + size])

    api = FakeAdminApi(
        {
            ("GET", _path("/groups")): (
                200,
                [{"id": "org", "name": "org", "path": "/org", "subGroupCount": 12, "subGroups": []}],
            ),
            ("GET", _path("/groups/org/children")): list_children,
        }
    )

    async with KeycloakAdminClient(_settings(page_size=5), transport=httpx.MockTransport(api)) as kc:
        groups = await kc.fetch_groups()

    assert len(groups) == 13
    assert [g.path for g in groups[1:]] == [c["path"] for c in children]


@pytest.mark.asyncio
async def test_fetch_roles_collects_composites():
    api = FakeAdminApi(
        {
            ("GET", _path("/roles")): (
                200,
                [{"name": "admin", "composite": True}, {"name": "viewer", "composite": False}],
            ),
            ("GET", _path("/roles/admin/composites")): (
                200,
                [
                    {"name": "viewer", "clientRole": False, "containerId": "acme"},
                    {"name": "reader", "clientRole": True, "containerId": "c1"},
                ],
            ),
            ("GET", _path("/clients/c1")): (200, {"id": "c1", "clientId": "web"}),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        admin, viewer = await kc.fetch_roles()

    assert admin.composites == ["viewer"]
    assert admin.client_composites == {"web": ["reader"]}
    assert viewer.composites is None


@pytest.mark.asyncio
async def test_sync_role_adds_missing_composites():
    api = FakeAdminApi(
        {
            ("POST", _path("/roles")): (201, None),
            ("GET", _path("/roles/admin/composites")): (
                200,
                [{"name": "viewer", "clientRole": False, "containerId": "acme"}],
            ),
            ("GET", _path("/roles/auditor")): (200, {"id": "r2", "name": "auditor"}),
            ("GET", _path("/clients")): (200, [{"id": "c1", "clientId": "web"}]),
            ("GET", _path("/clients/c1/roles/reader")): (200, {"id": "cr1", "name": "reader"}),
            ("POST", _path("/roles/admin/composites")): (204, None),
        }
    )
    role = Role(
        name="admin",
        composite=True,
        composites=["viewer", "auditor"],
        clientComposites={"web": ["reader"]},
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_role(role)

    assert api.writes() == [
        ("POST", _path("/roles"), {"name": "admin", "composite": True}),
        (
            "POST",
            _path("/roles/admin/composites"),
            [{"id": "r2", "name": "auditor"}, {"id": "cr1", "name": "reader"}],
        ),
    ]


@pytest.mark.asyncio
async def test_sync_client_creates_client_with_scopes_and_roles():
    created = {"done": False}

    def list_clients(request):
        return httpx.Response(200, json=[{"id": "c1", "clientId": "web"}] if created["done"] else [])

    def create_client(request):
        created["done"] = True
        return httpx.Response(201)

    api = FakeAdminApi(
        {
            ("GET", _path("/clients")): list_clients,
            ("POST", _path("/clients")): create_client,
            ("GET", _path("/clients/c1/default-client-scopes")): (200, []),
            ("GET", _path("/client-scopes")): (200, [{"id": "s1", "name": "profile"}]),
            ("PUT", _path("/clients/c1/default-client-scopes/s1")): (204, None),
            ("GET", _path("/clients/c1/roles")): (200, []),
            ("POST", _path("/clients/c1/roles")): (201, None),
        }
    )
    client = Client(
        clientId="web",
        redirectUris=["https://b/*"],
        defaultClientScopes=["profile"],
        clientRoles=["reader"],
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_client(client)

    assert api.writes() == [
        ("POST", _path("/clients"), {"clientId": "web", "redirectUris": ["https://b/*"], "webOrigins": []}),
        ("PUT", _path("/clients/c1/default-client-scopes/s1"), None),
        ("POST", _path("/clients/c1/roles"), {"name": "reader"}),
    ]


@pytest.mark.asyncio
async def test_sync_client_merges_redirect_uris_of_existing_client():
    api = FakeAdminApi(
        {
            ("GET", _path("/clients")): (
                200,
                [{"id": "c1", "clientId": "web", "redirectUris": ["https://a/*"], "webOrigins": []}],
            ),
            ("PUT", _path("/clients/c1")): (204, None),
            ("GET", _path("/clients/c1/roles")): (200, []),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_client(Client(clientId="web", enabled=True, redirectUris=["https://b/*"]))

    ((method, path, body),) = api.writes()
    assert (method, path) == ("PUT", _path("/clients/c1"))
    assert body["redirectUris"] == ["https://a/*", "https://b/*"]
    assert body["enabled"] is True


@pytest.mark.asyncio
async def test_sync_client_unknown_scope_raises():
    api = FakeAdminApi(
        {
            ("GET", _path("/clients")): (200, [{"id": "c1", "clientId": "web"}]),
            ("PUT", _path("/clients/c1")): (204, None),
            ("GET", _path("/clients/c1/optional-client-scopes")): (200, []),
            ("GET", _path("/client-scopes")): (200, []),
        }
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        with pytest.raises(KeycloakNotFoundError):
            await kc.sync_client(Client(clientId="web", optionalClientScopes=["audit"]))


def _user_routes(overrides=None):
    routes = {
        ("POST", _path("/users")): (201, None),
        ("GET", _path("/users")): (200, [{"id": "u1", "username": "bob"}]),
        ("GET", _path("/users/u1/role-mappings")): (200, {}),
        ("GET", _path("/roles/viewer")): (200, {"id": "r1", "name": "viewer"}),
        ("GET", _path("/clients")): (200, [{"id": "c1", "clientId": "web"}]),
        ("GET", _path("/clients/c1/roles/reader")): (200, {"id": "cr1", "name": "reader"}),
        ("GET", _path("/users/u1/groups")): (200, []),
        ("GET", _path("/group-by-path/ops")): (200, {"id": "g1", "path": "/ops"}),
        ("POST", _path("/users/u1/role-mappings/realm")): (204, None),
        ("POST", _path("/users/u1/role-mappings/clients/c1")): (204, None),
        ("PUT", _path("/users/u1/groups/g1")): (204, None),
    }
    routes.update(overrides or {})
    return routes


BOB = User(
    username="bob",
    enabled=True,
    realmRoles=["viewer"],
    clientRoles={"web": ["reader"]},
    groups=["/ops"],
)


@pytest.mark.asyncio
async def test_sync_user_creates_user_with_roles_and_groups():
    api = FakeAdminApi(_user_routes())

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_user(BOB)

    assert api.writes() == [
        ("POST", _path("/users"), {"username": "bob", "enabled": True}),
        ("POST", _path("/users/u1/role-mappings/realm"), [{"id": "r1", "name": "viewer"}]),
        ("POST", _path("/users/u1/role-mappings/clients/c1"), [{"id": "cr1", "name": "reader"}]),
        ("PUT", _path("/users/u1/groups/g1"), None),
    ]


@pytest.mark.asyncio
async def test_sync_existing_user_skips_present_memberships():
    api = FakeAdminApi(
        _user_routes(
            {
                ("POST", _path("/users")): (409, {"errorMessage": "exists"}),
                ("GET", _path("/users/u1/role-mappings")): (
                    200,
                    {
                        "realmMappings": [{"name": "viewer"}],
                        "clientMappings": {"web": {"mappings": [{"name": "reader"}]}},
                    },
                ),
                ("GET", _path("/users/u1/groups")): (200, [{"path": "/ops"}]),
            }
        )
    )

    async with KeycloakAdminClient(_settings(), transport=httpx.MockTransport(api)) as kc:
        await kc.sync_user(BOB)

    assert api.writes() == [("POST", _path("/users"), {"username": "bob", "enabled": True})]


@pytest.mark.asyncio
async def test_gateway_propagates_missing_sub_resource(tmp_path):
    api = FakeAdminApi(
        {
            ("GET", _path("/clients")): (
                200,
                [{"id": "a1", "clientId": "app"}, {"id": "w1", "clientId": "web"}],
            ),
            ("GET", _path("/clients/a1/default-client-scopes")): (200, []),
            ("GET", _path("/clients/a1/optional-client-scopes")): (200, []),
            ("GET", _path("/clients/a1/roles")): (200, []),
        }
    )
    directory = _inventory(tmp_path)
    gateway = KeycloakGateway(directory, transport_factory=lambda: httpx.MockTransport(api))

    with pytest.raises(KeycloakNotFoundError):
        await gateway.fetch_entities(1, EntityCategory.CLIENTS)

    result = await ReconciliationService(source=gateway, directory=directory).compare(
        1, 2, categories=["clients"]
    )
    assert result.degraded_categories() == {EntityCategory.CLIENTS}
