"""Connection settings for one realm's admin API.

The service builds them from inventory entries (`KeycloakSettings.for_cluster`);
KMM_KEYCLOAK_* environment variables only provide defaults for ad-hoc use.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kmm.reconcile.models.clusters import ClusterConfig


class KeycloakSettings(BaseSettings):
    """Where a realm lives and how to authenticate against its admin API."""

    model_config = SettingsConfigDict(
        env_prefix="KMM_KEYCLOAK_",
        extra="ignore",
    )

    base_url: str = "http://localhost:8080"
    realm: str = "master"
    timeout: float = Field(default=30.0, gt=0)

    # Service client, authenticates against `realm` (preferred)
    admin_client_id: str | None = None
    admin_client_secret: str | None = None

    # Admin user, authenticates against `auth_realm` through admin-cli
    admin_user: str | None = None
    admin_password: str | None = None
    auth_realm: str = "master"

    # List endpoints are read in pages of this size
    page_size: int = Field(default=100, ge=1)

    @property
    def root_url(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def realm_url(self) -> str:
        return f"{self.root_url}/realms/{self.realm}"

    @property
    def admin_url(self) -> str:
        """Base of every admin REST call for the realm."""
        return f"{self.root_url}/admin/realms/{self.realm}"

    @property
    def auth_realm_url(self) -> str:
        return f"{self.root_url}/realms/{self.auth_realm}"

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.admin_client_id and self.admin_client_secret)

    @property
    def has_admin_credentials(self) -> bool:
        return bool(self.admin_user and self.admin_password)

    @classmethod
    def for_cluster(
        cls, cluster: ClusterConfig, timeout: float | None = None
    ) -> "KeycloakSettings":
        """Settings for a cluster of the inventory.

        Every credential is passed explicitly (None included) so values from
        KMM_KEYCLOAK_* never leak into a cluster that does not define them.
        """
        kwargs = {} if timeout is None else {"timeout": timeout}
        return cls(
            base_url=cluster.base_url,
            realm=cluster.realm,
            admin_user=cluster.username,
            admin_password=cluster.password,
            admin_client_id=cluster.client_id,
            admin_client_secret=cluster.client_secret,
            **kwargs,
        )
