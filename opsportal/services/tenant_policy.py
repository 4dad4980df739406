from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re

from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.core.errors import NotFoundError
from opsportal.domain.models import Team
from opsportal.persistence.repos import teams as teams_repo
from opsportal.persistence.store import DirectoryStore


logger = logging.getLogger(__name__)

TENANT_PPE = "PPE"
TENANT_FARM = "Farm"
TENANT_DEFAULT = "Default"

FEATURE_VENDORS = "vendors"

# Feature sets per tenant type; anything unrecognized falls back to the Default set.
TENANT_FEATURES: dict[str, frozenset[str]] = {
    TENANT_PPE: frozenset(
        {"dashboard", "live-monitoring", "analytics", "reports", "configure-ppe", "alerts"}
    ),
    TENANT_FARM: frozenset(
        {"dashboard", "records", "alerts", "live-monitoring", "configure-livestock", FEATURE_VENDORS}
    ),
    TENANT_DEFAULT: frozenset({"dashboard"}),
}

# (singular, plural) labels that replace the generic "Location" noun.
_LOCATION_LABELS: dict[str, tuple[str, str]] = {
    TENANT_PPE: ("Facility", "Facilities"),
    TENANT_FARM: ("Farm", "Farms"),
}

_LOCATION_PATTERN = re.compile(r"\b(locations?)\b", re.IGNORECASE)


def canonical_tenant_type(name: str | None) -> str:
    # Match stored tenant type names case-insensitively against the known set.
    if name:
        for known in TENANT_FEATURES:
            if known.lower() == name.strip().lower():
                return known
    return TENANT_DEFAULT


def _match_case(source: str, replacement: str) -> str:
    if source.isupper():
        return replacement.upper()
    if source.islower():
        return replacement.lower()
    return replacement[:1].upper() + replacement[1:].lower()


@dataclass(frozen=True)
class Vocabulary:
    """Tenant-specific relabeling of generic nouns.

    Only whole-word "location"/"locations" are rewritten; the replacement copies the
    case style of the matched word and every other character is left alone. The
    labels never contain the source noun, so applying a vocabulary twice is the same
    as applying it once.
    """

    tenant_type: str
    singular: str | None = None
    plural: str | None = None

    @classmethod
    def for_tenant_type(cls, tenant_type: str) -> "Vocabulary":
        canonical = canonical_tenant_type(tenant_type)
        labels = _LOCATION_LABELS.get(canonical)
        if labels is None:
            return cls(tenant_type=canonical)
        return cls(tenant_type=canonical, singular=labels[0], plural=labels[1])

    @property
    def location_label(self) -> str:
        return self.singular or "Location"

    @property
    def locations_label(self) -> str:
        return self.plural or "Locations"

    def relabel(self, text: str) -> str:
        if self.singular is None or not text:
            return text

        def _replace(match: re.Match[str]) -> str:
            word = match.group(1)
            target = self.plural if word.lower() == "locations" else self.singular
            return _match_case(word, target or word)

        return _LOCATION_PATTERN.sub(_replace, text)

    def as_dict(self) -> dict[str, str]:
        return {"location": self.location_label, "locations": self.locations_label}


def enabled_features_for(tenant_type: str, *, use_vendors: bool = True) -> frozenset[str]:
    canonical = canonical_tenant_type(tenant_type)
    features = TENANT_FEATURES[canonical]
    # Farm teams that opted out of vendor management lose the vendors surface.
    if canonical == TENANT_FARM and not use_vendors:
        features = features - {FEATURE_VENDORS}
    return features


@dataclass(frozen=True)
class TenantPolicy:
    team_id: str
    tenant_type: str
    vocabulary: Vocabulary
    enabled_features: frozenset[str] = field(default_factory=frozenset)

    def has_feature(self, feature: str) -> bool:
        return feature in self.enabled_features


class TenantPolicyResolver:
    """Resolve a team's tenant type, vocabulary and feature set.

    Instances cache per team id for their own lifetime and never write; the API
    layer builds one per request so toggles such as use_vendors are seen on the
    next request.
    """

    def __init__(self, store: DirectoryStore) -> None:
        self._store = store
        self._cache: dict[str, TenantPolicy] = {}

    async def resolve(self, team_id: str) -> TenantPolicy:
        cached = self._cache.get(team_id)
        if cached is not None:
            return cached
        async with self._store.session() as session:
            team = await teams_repo.get_team(session, team_id)
            if team is None:
                raise NotFoundError("Team not found", team_id=team_id)
            return await self._build(session, team)

    async def resolve_slug(self, slug: str) -> TenantPolicy:
        async with self._store.session() as session:
            team = await teams_repo.get_team_by_slug(session, slug)
            if team is None:
                raise NotFoundError("Team not found", team_slug=slug)
            cached = self._cache.get(team.id)
            if cached is not None:
                return cached
            return await self._build(session, team)

    async def has_feature(self, team_id: str, feature: str) -> bool:
        policy = await self.resolve(team_id)
        return policy.has_feature(feature)

    async def _build(self, session: AsyncSession, team: Team) -> TenantPolicy:
        tenant_type = await teams_repo.get_tenant_type(session, team.tenant_type_id)
        stored_name = tenant_type.name if tenant_type is not None else None
        canonical = canonical_tenant_type(stored_name)
        if stored_name is not None and canonical == TENANT_DEFAULT and stored_name != TENANT_DEFAULT:
            logger.warning(
                "tenant_type_unknown team_id=%s tenant_type=%s fallback=%s",
                team.id,
                stored_name,
                TENANT_DEFAULT,
            )
        policy = TenantPolicy(
            team_id=team.id,
            tenant_type=canonical,
            vocabulary=Vocabulary.for_tenant_type(canonical),
            enabled_features=enabled_features_for(canonical, use_vendors=team.use_vendors),
        )
        self._cache[team.id] = policy
        return policy
