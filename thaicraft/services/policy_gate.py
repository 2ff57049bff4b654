"""
Policy Gate.

Decides whether the user must (re-)accept the Terms of Service, Privacy
Policy, and Content Policy before a wallet connection may proceed, and
records their acceptance.

The server is the source of truth for the current versions.  When it is
unreachable or answers with anything unusable, the versions bundled with
the package (``thaicraft/policies/*.json``) are used instead, so the
gate never blocks sign-in on a network failure.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import lru_cache
from importlib import resources
from typing import Any, Optional

from pydantic import ValidationError

from thaicraft.database import DatabaseManager
from thaicraft.errors import ThaiCraftAuthError
from thaicraft.logger import StructuredLogger
from thaicraft.models.enums import PolicyName, StoreKey
from thaicraft.models.policy_models import (
    AcceptedPolicySet,
    PolicyDocument,
    PolicyMeta,
    PolicyVersionSet,
)
from thaicraft.services.auth_api import AuthApiClient
from thaicraft.services.key_value_store import KeyValueStore
from thaicraft.utils.audit import AuditAction, log_audit_event


def utc_now_iso() -> str:
    """Current UTC time as ``2025-01-15T08:30:00.000Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@lru_cache(maxsize=None)
def load_bundled_policy(name: PolicyName) -> PolicyDocument:
    """Read the policy document shipped inside the package."""
    raw: str = (
        resources.files("thaicraft") / "policies" / f"{name.value}.json"
    ).read_text(encoding="utf-8")
    return PolicyDocument.model_validate_json(raw)


class PolicyGate:
    """Policy version lookup and consent bookkeeping.

    Parameters
    ----------
    store:
        Persistent key/value store holding ``policyAcceptedVersions``.
    api:
        Auth server client used for ``/api/policies``.
    logger:
        Structured logger instance.
    db:
        Optional database manager; when given, consent is also written to
        the ``audit_log`` table.
    """

    def __init__(
        self,
        store: KeyValueStore,
        api: AuthApiClient,
        logger: StructuredLogger,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        self._store = store
        self._api = api
        self._logger = logger
        self._db = db

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    @staticmethod
    def local_versions() -> PolicyVersionSet:
        """Versions of the bundled policy documents."""
        return PolicyVersionSet(
            terms=PolicyMeta(name=PolicyName.TERMS, version=load_bundled_policy(PolicyName.TERMS).version),
            privacy=PolicyMeta(name=PolicyName.PRIVACY, version=load_bundled_policy(PolicyName.PRIVACY).version),
            content=PolicyMeta(name=PolicyName.CONTENT, version=load_bundled_policy(PolicyName.CONTENT).version),
        )

    async def current_versions(self) -> PolicyVersionSet:
        """Fetch the currently required versions; never raises.

        Falls back to :meth:`local_versions` when the server is
        unreachable, answers non-2xx, or omits any of the three policies.
        """
        try:
            body = await self._api.list_policies()
        except ThaiCraftAuthError as exc:
            self._logger.info("Policy versions unavailable from server (%s); using bundled.", exc)
            return self.local_versions()

        versions = self._parse_versions(body)
        if versions is None:
            self._logger.warning("Policy list response incomplete; using bundled versions.")
            return self.local_versions()
        return versions

    @staticmethod
    def _parse_versions(body: dict[str, Any]) -> Optional[PolicyVersionSet]:
        data = body.get("data")
        if not body.get("success") or not isinstance(data, list):
            return None

        found: dict[str, PolicyMeta] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                meta = PolicyMeta.model_validate(item)
            except ValidationError:
                # Unknown policy names are not ours to gate on.
                continue
            found[meta.name.value] = meta

        if not all(name.value in found for name in PolicyName):
            return None
        return PolicyVersionSet(**found)

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    def accepted(self) -> Optional[AcceptedPolicySet]:
        """The last recorded acceptance, or ``None`` if absent or malformed."""
        raw = self._store.get(StoreKey.ACCEPTED_POLICIES)
        if raw is None:
            return None
        try:
            return AcceptedPolicySet.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.warning("Stored policy acceptance is malformed: %s", exc)
            return None

    @staticmethod
    def needs_acceptance(
        current: PolicyVersionSet,
        accepted: Optional[AcceptedPolicySet],
    ) -> bool:
        """``True`` unless every accepted version equals the current one."""
        if accepted is None:
            return True
        return any(
            accepted.version_of(name) != current.version_of(name)
            for name in PolicyName
        )

    def record_acceptance(self, accepted: AcceptedPolicySet) -> bool:
        """Persist *accepted*.  Returns ``False`` if the store write failed."""
        stored = self._store.set(
            StoreKey.ACCEPTED_POLICIES,
            accepted.model_dump_json(by_alias=True),
        )
        if stored:
            log_audit_event(
                logger=self._logger,
                action=AuditAction.POLICY_ACCEPTED,
                entity_type="PolicyConsent",
                entity_id="policies",
                user_id="anonymous",
                details={name.value: accepted.version_of(name) for name in PolicyName},
                db=self._db,
            )
        return stored

    def accept_versions(self, versions: PolicyVersionSet) -> AcceptedPolicySet:
        """Record acceptance of *versions*, stamped now."""
        accepted = AcceptedPolicySet.for_versions(versions, utc_now_iso())
        self.record_acceptance(accepted)
        return accepted

    def acceptance_for_request(self, versions: PolicyVersionSet) -> AcceptedPolicySet:
        """Acceptance to send with a verify or register request.

        Uses the stored acceptance when there is one; otherwise stamps
        *versions* with the current time.
        """
        return self.accepted() or AcceptedPolicySet.for_versions(versions, utc_now_iso())

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def fetch_document(self, name: PolicyName) -> PolicyDocument:
        """Full text of one policy, falling back to the bundled copy."""
        try:
            body = await self._api.get_policy(name.value)
            if body.get("success") and isinstance(body.get("data"), dict):
                return PolicyDocument.model_validate(body["data"])
            self._logger.warning("Policy '%s' response unusable; using bundled copy.", name)
        except ThaiCraftAuthError as exc:
            self._logger.info("Policy '%s' unavailable from server (%s); using bundled copy.", name, exc)
        except ValidationError as exc:
            self._logger.warning("Policy '%s' document malformed: %s", name, exc)
        return load_bundled_policy(name)
