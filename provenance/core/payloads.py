"""provenance.core.payloads

Typed payloads per stage.

Payloads are opaque to the chain (only their hash is chained), but a few
fields matter to the people reading the history later: where a harvest came
from, what a lab concluded. Those fields are validated when present. Unknown
fields pass through untouched.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from provenance.core.exceptions import ValidationError
from provenance.core.hashchain import canonical_json
from provenance.core.stages import BatchStage, ProposedStage, SubStage


class _Payload(BaseModel):
    model_config = {"extra": "allow"}


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: float | None = None


class CreatedPayload(_Payload):
    scientific_name: str | None = None
    category: Literal["herb", "spice", "medicinal", "aromatic", "grain", "other"] | None = None
    cultivation_region: str | None = None


class HarvestPayload(_Payload):
    quantity_kg: float | None = Field(default=None, gt=0)
    coordinates: Coordinates | None = None
    harvest_method: Literal["manual", "mechanical", "mixed"] | None = None
    grade: Literal["Premium", "Grade A", "Grade B", "Grade C"] | None = None


class ProcessingStepPayload(_Payload):
    facility_id: str | None = None
    input_kg: float | None = Field(default=None, ge=0)
    output_kg: float | None = Field(default=None, ge=0)
    temperature_c: float | None = None
    duration_hours: float | None = Field(default=None, ge=0)
    result: Literal["pass", "fail", "warning"] | None = None


class LabTestPayload(_Payload):
    lab_name: str | None = None
    test_id: str | None = None
    result: Literal["pass", "fail", "warning", "conditional", "pending"] | None = None


class ReleasePayload(_Payload):
    """Quality release into distribution. Only a passing result releases."""

    result: Literal["pass"] = "pass"
    certificate_id: str | None = None


class DeliveryPayload(_Payload):
    recipient: str | None = None
    coordinates: Coordinates | None = None


class RejectionPayload(_Payload):
    reason: str | None = Field(default=None, min_length=1)
    severity: Literal["low", "medium", "high", "critical"] | None = None


_STAGE_PAYLOAD_MODELS: dict[BatchStage, type[BaseModel]] = {
    BatchStage.CREATED: CreatedPayload,
    BatchStage.HARVESTED: HarvestPayload,
    BatchStage.PROCESSING: ProcessingStepPayload,
    BatchStage.QUALITY_TESTING: LabTestPayload,
    BatchStage.DISTRIBUTION: ReleasePayload,
    BatchStage.DELIVERED: DeliveryPayload,
    BatchStage.REJECTED: RejectionPayload,
}

_SUB_STAGE_PAYLOAD_MODELS: dict[SubStage, type[BaseModel]] = {
    SubStage.DRYING: ProcessingStepPayload,
    SubStage.CLEANING: ProcessingStepPayload,
    SubStage.GRINDING: ProcessingStepPayload,
    SubStage.PACKAGING: ProcessingStepPayload,
    SubStage.STORAGE: ProcessingStepPayload,
    SubStage.PESTICIDE: LabTestPayload,
    SubStage.DNA: LabTestPayload,
    SubStage.NUTRITIONAL: LabTestPayload,
    SubStage.MICROBIAL: LabTestPayload,
    SubStage.HEAVY_METALS: LabTestPayload,
}


def payload_model_for(proposed: ProposedStage) -> type[BaseModel] | None:
    if proposed.sub_stage is not None:
        return _SUB_STAGE_PAYLOAD_MODELS.get(proposed.sub_stage)
    return _STAGE_PAYLOAD_MODELS.get(proposed.stage)


def validate_payload(proposed: ProposedStage, payload: Any, *, max_bytes: int) -> dict[str, Any]:
    """Validate a payload for ``proposed`` and return it in canonical form.

    Raises:
        ValidationError: not a JSON object, too large, or fails the stage model.
    """

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")

    try:
        encoded = canonical_json(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"payload is not JSON-serializable: {e}") from e

    size = len(encoded.encode("utf-8"))
    if size > int(max_bytes):
        raise ValidationError(f"payload too large: {size} > {max_bytes} bytes", size=size, max_bytes=int(max_bytes))

    model = payload_model_for(proposed)
    if model is not None:
        try:
            model.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(f"invalid payload for {proposed}", errors=errors) from e

    # Round-trip so the stored payload is exactly what was hashed.
    return json.loads(encoded)
