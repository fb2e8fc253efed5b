"""Reconciliation of one container's principal with its local snapshot."""

import ipaddress
from typing import List, Optional

from tapcon_monitor.managers.alias_diff import diff_ip_aliases, diff_port_aliases
from tapcon_monitor.managers.snapshot_tracker import ContainerSnapshot
from tapcon_monitor.metadata.api import MetadataAPI
from tapcon_monitor.models.principal import EndorsedStatement, IpAlias, Principal
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.audit_logger import AuditEventType, get_audit_logger
from tapcon_monitor.utils.exceptions import (
    MetadataAPIError,
    NamespaceNotFoundError,
    PortAliasExistsError,
    PrincipalNotFoundError,
)

logger = get_logger(__name__)


def _valid_ip(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


class ReconcileCache:
    """
    Best-known remote principal of one container.

    No cached principal means the principal is not created remotely yet.
    Each remote mutation only touches the cache when it succeeds, so one
    failing call never blocks the unrelated ones.
    """

    def __init__(self, api: MetadataAPI, snapshot: ContainerSnapshot) -> None:
        """
        Initialize the cache.

        Args:
            api: Metadata service capability
            snapshot: Snapshot of the container this principal represents
        """
        self.api = api
        self.snapshot = snapshot
        self.principal: Optional[Principal] = None
        self.audit_logger = get_audit_logger()

    @property
    def principal_id(self) -> str:
        return self.snapshot.tapcon_id

    def valid(self) -> bool:
        """Whether a principal is believed to exist remotely."""
        return self.principal is not None

    async def refresh(self) -> None:
        """
        Replace the cached principal with the remote one.

        Raises:
            PrincipalNotFoundError: If the principal is gone; the cache is cleared
            MetadataAPIError: On other failures; the cache is left as is
        """
        try:
            principal = await self.api.show_principal(self.principal_id)
        except PrincipalNotFoundError:
            self.principal = None
            raise
        self.principal = principal

    async def create(self) -> None:
        """
        Bring the remote principal in line with the snapshot.

        Creates the principal when absent, then reconciles statements, the
        image link, IP aliases and port aliases. A failure in one of these
        steps is logged and the remaining steps still run.

        Raises:
            MetadataAPIError: If the principal cannot be created
        """
        if self.principal is None:
            await self.api.create_principal(self.principal_id)
            self.principal = Principal()
            self.audit_logger.log_event(
                AuditEventType.PRINCIPAL_CREATE, principal=self.principal_id
            )

        steps = (
            ("statements", self.reconcile_statements),
            ("image link", self.reconcile_image_link),
            ("ip aliases", self.reconcile_ip_aliases),
            ("port aliases", self.reconcile_port_aliases),
        )
        for name, step in steps:
            try:
                await step()
            except MetadataAPIError as e:
                logger.error(
                    f"Error reconciling {name}",
                    extra={"principal": self.principal_id, "error": str(e)},
                )

    async def remove(self) -> None:
        """
        Delete the remote principal if one is cached.

        Raises:
            MetadataAPIError: If deletion fails; the cache is left as is
        """
        if self.principal is None:
            return
        await self.api.delete_principal(self.principal_id)
        self.principal = None
        self.audit_logger.log_event(AuditEventType.PRINCIPAL_DELETE, principal=self.principal_id)

    async def reconcile_statements(self) -> None:
        """
        Post container facts the principal does not hold yet.

        Missing facts are appended to the cache before the post and are not
        rolled back if the post fails.
        """
        principal = self._require_principal()
        to_post: List[str] = []
        for fact in self.snapshot.facts():
            if principal.has_statement(fact):
                continue
            to_post.append(fact)

        if not to_post:
            return
        for fact in to_post:
            principal.statements.append(EndorsedStatement(endorser="", fact=fact))
        await self.api.post_proof_for_child(self.principal_id, to_post)

    async def reconcile_image_link(self) -> None:
        """Link the container's image unless already linked."""
        principal = self._require_principal()
        link = self.snapshot.image_id
        if not link or link in principal.links:
            return
        principal.links.append(link)
        await self.api.link_proof_for_child(self.principal_id, [link])

    async def reconcile_ip_aliases(self) -> None:
        """
        Create and delete IP aliases to match the discovered IPs.

        IPs on no attached network are skipped. A failed create is left out of
        the rebuilt alias list; a failed delete is kept in it so it is retried.
        """
        principal = self._require_principal()
        remote = list(principal.aliases.ips)

        local: List[IpAlias] = []
        for ip in self.snapshot.ips:
            try:
                ns_name = self.snapshot.resolve_namespace(ip)
            except NamespaceNotFoundError:
                continue
            alias = IpAlias(ns_name=ns_name, ip=ip)
            if alias not in local:
                local.append(alias)

        to_create, to_delete = diff_ip_aliases(local, remote)
        latest: List[IpAlias] = [alias for alias in local if alias in remote]

        for alias in to_create:
            try:
                await self.api.create_ip_alias(self.principal_id, alias.ns_name, alias.ip)
            except MetadataAPIError as e:
                logger.warning(
                    "Failed to create IP alias",
                    extra={
                        "principal": self.principal_id,
                        "ns_name": alias.ns_name,
                        "ip": alias.ip,
                        "error": str(e),
                    },
                )
                continue
            latest.append(alias)

        for alias in to_delete:
            try:
                await self.api.delete_ip_alias(self.principal_id, alias.ns_name, alias.ip)
            except MetadataAPIError as e:
                logger.warning(
                    "Failed to delete IP alias",
                    extra={
                        "principal": self.principal_id,
                        "ns_name": alias.ns_name,
                        "ip": alias.ip,
                        "error": str(e),
                    },
                )
                latest.append(alias)

        principal.aliases.ips = latest

    async def reconcile_port_aliases(self) -> None:
        """
        Create and delete port aliases to match the required ports.

        Created aliases join the mutual set. Aliases that fail to delete stay
        in it. The cached port aliases are rebuilt from the mutual set.
        """
        principal = self._require_principal()
        client_only, server_only, mutual = diff_port_aliases(self.snapshot.ports(), principal)

        for alias in client_only:
            if not _valid_ip(alias.ip):
                continue
            try:
                await self.api.create_port_alias(self.principal_id, *alias)
            except MetadataAPIError as e:
                logger.warning(
                    "Failed to create port alias",
                    extra={"principal": self.principal_id, "alias": list(alias), "error": str(e)},
                )
                continue
            mutual.append(alias)

        for alias in server_only:
            if not _valid_ip(alias.ip):
                mutual.append(alias)
                continue
            try:
                await self.api.delete_port_alias(self.principal_id, *alias)
            except MetadataAPIError as e:
                logger.warning(
                    "Failed to delete port alias",
                    extra={"principal": self.principal_id, "alias": list(alias), "error": str(e)},
                )
                mutual.append(alias)

        principal.aliases.ports = []
        for alias in mutual:
            try:
                principal.add_port_alias(*alias)
            except PortAliasExistsError:
                pass

    def _require_principal(self) -> Principal:
        if self.principal is None:
            raise MetadataAPIError("reconcile", "no principal state to reconcile against")
        return self.principal
