"""Claim graph produced by the mapping step."""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class ClaimType(str, Enum):
    FACTUAL = "factual"
    PRESCRIPTIVE = "prescriptive"
    CONDITIONAL = "conditional"
    CONTESTED = "contested"
    SPECULATIVE = "speculative"


class ClaimRole(str, Enum):
    ANCHOR = "anchor"
    BRANCH = "branch"
    SUPPLEMENT = "supplement"
    CHALLENGER = "challenger"


class EdgeType(str, Enum):
    SUPPORTS = "supports"
    CONFLICTS = "conflicts"
    TRADEOFF = "tradeoff"
    PREREQUISITE = "prerequisite"


class Claim(BaseModel):
    """A distilled position with the providers that support it.

    Supporters may be numeric citation indices or raw provider ids.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    label: str = ""
    text: str = ""
    supporters: list[int | str] = Field(default_factory=list)
    type: ClaimType = ClaimType.FACTUAL
    role: ClaimRole | None = None
    challenges: str | None = None


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    type: EdgeType


class ClaimGraph(BaseModel):
    """Claims plus typed edges; every edge endpoint must be a known claim."""

    model_config = ConfigDict(frozen=True)

    claims: list[Claim] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @model_validator(mode="after")
    def _edges_reference_claims(self) -> "ClaimGraph":
        ids = {c.id for c in self.claims}
        for edge in self.edges:
            if edge.from_ not in ids or edge.to not in ids:
                raise ValueError(
                    f"Edge {edge.from_} -> {edge.to} references an unknown claim"
                )
        return self

    @classmethod
    def from_topology(cls, topology: dict[str, Any]) -> "ClaimGraph":
        """Build a graph from mapper output, dropping anything unusable.

        Accepts either ``claims`` or ``nodes`` as the claim list key and
        ``from``/``to`` or ``source``/``target`` as edge endpoints. Ids are
        compared as strings; claims or edges that still fail validation are
        dropped with a warning.
        """
        raw_claims = topology.get("claims") or topology.get("nodes") or []
        claims: list[Claim] = []
        for raw in raw_claims:
            if not isinstance(raw, dict):
                continue
            try:
                claims.append(Claim.model_validate(_normalize_claim(raw)))
            except ValidationError as e:
                logger.warning(f"Dropping claim {raw.get('id')!r}: {e.error_count()} invalid field(s)")
        ids = {c.id for c in claims}

        edges: list[Edge] = []
        for raw in topology.get("edges") or []:
            if not isinstance(raw, dict):
                continue
            try:
                edge = Edge.model_validate(_normalize_edge(raw))
            except ValidationError as e:
                logger.warning(f"Dropping edge {raw!r}: {e.error_count()} invalid field(s)")
                continue
            if edge.from_ not in ids or edge.to not in ids:
                logger.warning(f"Dropping edge {edge.from_} -> {edge.to}: unknown endpoint")
                continue
            edges.append(edge)
        return cls(claims=claims, edges=edges)


# Mapper vocabulary that differs from EdgeType
_EDGE_TYPE_ALIASES = {
    "complements": EdgeType.SUPPORTS.value,
    "conflict": EdgeType.CONFLICTS.value,
    "prerequisites": EdgeType.PREREQUISITE.value,
}


def _id_text(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, str)):
        return str(value).strip()
    return value


def _normalize_claim(raw: dict[str, Any]) -> dict[str, Any]:
    data = dict(raw)
    data["id"] = _id_text(data.get("id"))
    if "type" in data and data["type"] not in {t.value for t in ClaimType}:
        data.pop("type")
    if "role" in data and data["role"] not in {r.value for r in ClaimRole}:
        data["role"] = None
    supporters = data.get("supporters")
    data["supporters"] = [
        s for s in (supporters if isinstance(supporters, list) else [])
        if isinstance(s, (int, str)) and not isinstance(s, bool)
    ]
    return data


def _normalize_edge(raw: dict[str, Any]) -> dict[str, Any]:
    edge_type = raw.get("type")
    if isinstance(edge_type, str):
        edge_type = edge_type.strip().lower()
        edge_type = _EDGE_TYPE_ALIASES.get(edge_type, edge_type)
    return {
        "from": _id_text(raw.get("from", raw.get("source"))),
        "to": _id_text(raw.get("to", raw.get("target"))),
        "type": edge_type,
    }
