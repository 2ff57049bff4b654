"""
Policy consent models.

``PolicyVersionSet`` is what the server (or the bundled fallback)
currently requires; ``AcceptedPolicySet`` is what the user last agreed
to, persisted as camelCase JSON under ``policyAcceptedVersions``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from thaicraft.models.enums import PolicyName


class PolicyMeta(BaseModel):
    name: PolicyName
    version: str


class PolicyVersionSet(BaseModel):
    """Current required version of each of the three policies."""

    terms: PolicyMeta
    privacy: PolicyMeta
    content: PolicyMeta

    def version_of(self, name: PolicyName) -> str:
        return getattr(self, name.value).version


class AcceptedPolicy(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str
    accepted_at: str  # ISO-8601 UTC


class AcceptedPolicySet(BaseModel):
    """Versions the user has explicitly agreed to, with timestamps."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    terms: AcceptedPolicy
    privacy: AcceptedPolicy
    content: AcceptedPolicy

    def version_of(self, name: PolicyName) -> str:
        return getattr(self, name.value).version

    @classmethod
    def for_versions(cls, versions: PolicyVersionSet, accepted_at: str) -> "AcceptedPolicySet":
        """Build an acceptance of *versions*, all stamped *accepted_at*."""
        return cls(
            terms=AcceptedPolicy(version=versions.terms.version, accepted_at=accepted_at),
            privacy=AcceptedPolicy(version=versions.privacy.version, accepted_at=accepted_at),
            content=AcceptedPolicy(version=versions.content.version, accepted_at=accepted_at),
        )


class PolicyDocument(BaseModel):
    """Full policy text for the policy viewer.

    Server documents may carry additional presentation fields; they are
    kept as extras.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: PolicyName
    version: str
    effective_date: Optional[str] = None
    last_updated: Optional[str] = None
    content: str = ""  # markdown
