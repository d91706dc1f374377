"""provenance.core.stages

Batch state machine.

Created → Harvested → Processing → QualityTesting → Distribution → Delivered
with a side exit to Rejected from any non-terminal stage.

Processing and QualityTesting carry sub-stage tags. A sub-stage event is an
ordinary event in the chain, but it does not move the outer stage.

This module does not write anything. It restricts which moves exist and who
may make them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from provenance.core.exceptions import ValidationError


class Role(StrEnum):
    FARMER = "farmer"
    FACILITY = "facility"
    LABORATORY = "laboratory"
    DISTRIBUTOR = "distributor"
    REGULATOR = "regulator"
    CONSUMER = "consumer"


class BatchStage(StrEnum):
    CREATED = "created"
    HARVESTED = "harvested"
    PROCESSING = "processing"
    QUALITY_TESTING = "quality_testing"
    DISTRIBUTION = "distribution"
    DELIVERED = "delivered"
    REJECTED = "rejected"


class SubStage(StrEnum):
    # Processing
    DRYING = "drying"
    CLEANING = "cleaning"
    GRINDING = "grinding"
    PACKAGING = "packaging"
    STORAGE = "storage"
    # Quality testing
    PESTICIDE = "pesticide"
    DNA = "dna"
    NUTRITIONAL = "nutritional"
    MICROBIAL = "microbial"
    HEAVY_METALS = "heavy_metals"


TERMINAL_STAGES: Final[frozenset[BatchStage]] = frozenset({BatchStage.DELIVERED, BatchStage.REJECTED})

READ_ONLY_ROLES: Final[frozenset[Role]] = frozenset({Role.CONSUMER})

SUB_STAGE_PARENT: Final[dict[SubStage, BatchStage]] = {
    SubStage.DRYING: BatchStage.PROCESSING,
    SubStage.CLEANING: BatchStage.PROCESSING,
    SubStage.GRINDING: BatchStage.PROCESSING,
    SubStage.PACKAGING: BatchStage.PROCESSING,
    SubStage.STORAGE: BatchStage.PROCESSING,
    SubStage.PESTICIDE: BatchStage.QUALITY_TESTING,
    SubStage.DNA: BatchStage.QUALITY_TESTING,
    SubStage.NUTRITIONAL: BatchStage.QUALITY_TESTING,
    SubStage.MICROBIAL: BatchStage.QUALITY_TESTING,
    SubStage.HEAVY_METALS: BatchStage.QUALITY_TESTING,
}

# Genesis: (none) → CREATED.
GENESIS_ROLES: Final[frozenset[Role]] = frozenset({Role.FARMER})

# (from, to) → roles allowed to make the move.
TRANSITIONS: Final[dict[tuple[BatchStage, BatchStage], frozenset[Role]]] = {
    (BatchStage.CREATED, BatchStage.HARVESTED): frozenset({Role.FARMER}),
    (BatchStage.HARVESTED, BatchStage.PROCESSING): frozenset({Role.FACILITY}),
    (BatchStage.PROCESSING, BatchStage.QUALITY_TESTING): frozenset({Role.FACILITY, Role.LABORATORY}),
    (BatchStage.QUALITY_TESTING, BatchStage.DISTRIBUTION): frozenset({Role.LABORATORY}),
    (BatchStage.DISTRIBUTION, BatchStage.DELIVERED): frozenset({Role.FACILITY, Role.DISTRIBUTOR}),
}

REJECT_ROLES: Final[frozenset[Role]] = frozenset({Role.REGULATOR, Role.LABORATORY})

# Parent stage → roles allowed to record its sub-stages.
SUB_STAGE_ROLES: Final[dict[BatchStage, frozenset[Role]]] = {
    BatchStage.PROCESSING: frozenset({Role.FACILITY}),
    BatchStage.QUALITY_TESTING: frozenset({Role.LABORATORY}),
}


@dataclass(frozen=True, slots=True)
class ProposedStage:
    """Target of an append: an outer stage, optionally narrowed to a sub-stage."""

    stage: BatchStage
    sub_stage: SubStage | None = None

    @property
    def is_sub_stage(self) -> bool:
        return self.sub_stage is not None

    def __str__(self) -> str:
        return str(self.sub_stage) if self.sub_stage is not None else str(self.stage)


def parse_stage(value: str | BatchStage | SubStage | ProposedStage) -> ProposedStage:
    """Resolve a stage string into an outer stage or a sub-stage.

    Accepts either enum's value (``"processing"``, ``"drying"``) or a
    ``"parent.sub"`` form (``"processing.drying"``).
    """

    if isinstance(value, ProposedStage):
        return value
    if isinstance(value, SubStage):
        return ProposedStage(stage=SUB_STAGE_PARENT[value], sub_stage=value)
    if isinstance(value, BatchStage):
        return ProposedStage(stage=value)

    raw = str(value).strip().lower()
    if "." in raw:
        parent_raw, sub_raw = raw.split(".", 1)
        try:
            parent = BatchStage(parent_raw)
            sub = SubStage(sub_raw)
        except ValueError as e:
            raise ValidationError(f"Unknown stage: {value}", stage=str(value)) from e
        if SUB_STAGE_PARENT[sub] != parent:
            raise ValidationError(f"Sub-stage {sub} does not belong to {parent}", stage=str(value))
        return ProposedStage(stage=parent, sub_stage=sub)

    try:
        return ProposedStage(stage=BatchStage(raw))
    except ValueError:
        pass
    try:
        return parse_stage(SubStage(raw))
    except ValueError as e:
        raise ValidationError(f"Unknown stage: {value}", stage=str(value)) from e


def parse_role(value: str | Role) -> Role:
    try:
        return Role(str(value).strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown role: {value}", role=str(value)) from e


def is_terminal(stage: BatchStage) -> bool:
    return stage in TERMINAL_STAGES


def allowed_roles(current: BatchStage | None, proposed: ProposedStage) -> frozenset[Role] | None:
    """Roles allowed to move ``current`` → ``proposed``.

    Returns ``None`` when the move does not exist at all (skip, backward,
    same-state, or sub-stage outside its parent). Terminal states have no moves.
    """

    if current is None:
        if proposed.stage == BatchStage.CREATED and not proposed.is_sub_stage:
            return GENESIS_ROLES
        return None

    if is_terminal(current):
        return None

    if proposed.is_sub_stage:
        if proposed.stage != current:
            return None
        return SUB_STAGE_ROLES.get(current)

    if proposed.stage == BatchStage.REJECTED:
        return REJECT_ROLES

    return TRANSITIONS.get((current, proposed.stage))


def next_stages(current: BatchStage) -> list[BatchStage]:
    """Outer stages reachable from ``current``, as shown on batch reads."""

    if is_terminal(current):
        return []
    out = [to for (frm, to) in TRANSITIONS if frm == current]
    out.append(BatchStage.REJECTED)
    return out
