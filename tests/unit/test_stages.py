from __future__ import annotations

import pytest

from provenance.core.exceptions import ValidationError
from provenance.core.stages import (
    BatchStage,
    ProposedStage,
    Role,
    SubStage,
    allowed_roles,
    is_terminal,
    next_stages,
    parse_role,
    parse_stage,
)


def test_stage_enum_values_are_stable() -> None:
    # Contract: stored and hashed as these strings.
    assert BatchStage.QUALITY_TESTING.value == "quality_testing"
    assert SubStage.HEAVY_METALS.value == "heavy_metals"
    assert Role.DISTRIBUTOR.value == "distributor"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("harvested", ProposedStage(BatchStage.HARVESTED)),
        ("Processing", ProposedStage(BatchStage.PROCESSING)),
        ("drying", ProposedStage(BatchStage.PROCESSING, SubStage.DRYING)),
        ("quality_testing.dna", ProposedStage(BatchStage.QUALITY_TESTING, SubStage.DNA)),
        (SubStage.PESTICIDE, ProposedStage(BatchStage.QUALITY_TESTING, SubStage.PESTICIDE)),
        (BatchStage.REJECTED, ProposedStage(BatchStage.REJECTED)),
    ],
)
def test_parse_stage(raw, expected: ProposedStage) -> None:
    assert parse_stage(raw) == expected


@pytest.mark.parametrize("raw", ["shipped", "processing.dna", "nope.drying", ""])
def test_parse_stage_rejects_unknown_or_misparented(raw: str) -> None:
    with pytest.raises(ValidationError):
        parse_stage(raw)


def test_parse_role() -> None:
    assert parse_role("Laboratory") is Role.LABORATORY
    with pytest.raises(ValidationError):
        parse_role("auditor")


def test_proposed_stage_str() -> None:
    assert str(ProposedStage(BatchStage.PROCESSING)) == "processing"
    assert str(ProposedStage(BatchStage.PROCESSING, SubStage.GRINDING)) == "grinding"


def test_transition_table() -> None:
    p = ProposedStage
    assert allowed_roles(None, p(BatchStage.CREATED)) == {Role.FARMER}
    assert allowed_roles(BatchStage.CREATED, p(BatchStage.HARVESTED)) == {Role.FARMER}
    assert allowed_roles(BatchStage.HARVESTED, p(BatchStage.PROCESSING)) == {Role.FACILITY}
    assert allowed_roles(BatchStage.PROCESSING, p(BatchStage.QUALITY_TESTING)) == {Role.FACILITY, Role.LABORATORY}
    assert allowed_roles(BatchStage.QUALITY_TESTING, p(BatchStage.DISTRIBUTION)) == {Role.LABORATORY}
    assert allowed_roles(BatchStage.DISTRIBUTION, p(BatchStage.DELIVERED)) == {Role.FACILITY, Role.DISTRIBUTOR}


def test_moves_that_do_not_exist() -> None:
    p = ProposedStage
    # backward, skip, same-state, genesis twice
    assert allowed_roles(BatchStage.QUALITY_TESTING, p(BatchStage.HARVESTED)) is None
    assert allowed_roles(BatchStage.CREATED, p(BatchStage.PROCESSING)) is None
    assert allowed_roles(BatchStage.PROCESSING, p(BatchStage.PROCESSING)) is None
    assert allowed_roles(BatchStage.CREATED, p(BatchStage.CREATED)) is None
    assert allowed_roles(None, p(BatchStage.HARVESTED)) is None


def test_reject_from_any_open_stage() -> None:
    for stage in BatchStage:
        roles = allowed_roles(stage, ProposedStage(BatchStage.REJECTED))
        if is_terminal(stage):
            assert roles is None
        else:
            assert roles == {Role.REGULATOR, Role.LABORATORY}


def test_sub_stages_only_inside_their_parent() -> None:
    drying = ProposedStage(BatchStage.PROCESSING, SubStage.DRYING)
    dna = ProposedStage(BatchStage.QUALITY_TESTING, SubStage.DNA)
    assert allowed_roles(BatchStage.PROCESSING, drying) == {Role.FACILITY}
    assert allowed_roles(BatchStage.QUALITY_TESTING, dna) == {Role.LABORATORY}
    assert allowed_roles(BatchStage.HARVESTED, drying) is None
    assert allowed_roles(BatchStage.PROCESSING, dna) is None


def test_terminal_stages_have_no_moves() -> None:
    assert is_terminal(BatchStage.DELIVERED)
    assert is_terminal(BatchStage.REJECTED)
    assert next_stages(BatchStage.DELIVERED) == []
    assert next_stages(BatchStage.CREATED) == [BatchStage.HARVESTED, BatchStage.REJECTED]
