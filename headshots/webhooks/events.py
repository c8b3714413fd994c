"""Provider event decoding and classification.

The provider posts one JSON body per prediction lifecycle change:

    {"id": "...", "status": "succeeded", "output": ..., "error": null,
     "metrics": {"predict_time": 12.3}}

``output`` is decoded at the boundary into a tagged union, checked in this
order so a payload satisfying more than one shape resolves the same way
every time:

1. object with a string ``weights`` entry  -> TrainingOutput
2. list of strings                         -> ImageOutput
3. absent / null                           -> NoOutput
4. anything else                           -> UnknownOutput
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from headshots.errors import PayloadError


class ProviderStatus(str, Enum):
    """Prediction status as reported by the provider."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({ProviderStatus.SUCCEEDED, ProviderStatus.FAILED})


class EventKind(str, Enum):
    """Which reconciliation path an event takes."""
    TRAINING_COMPLETE = "training_complete"
    GENERATION_COMPLETE = "generation_complete"
    JOB_FAILED = "job_failed"
    INTERMEDIATE = "intermediate"
    UNRECOGNIZED = "unrecognized"


# ── Output union ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TrainingOutput:
    weights: str
    version: str | None = None


@dataclass(frozen=True)
class ImageOutput:
    urls: tuple[str, ...]


@dataclass(frozen=True)
class NoOutput:
    pass


@dataclass(frozen=True)
class UnknownOutput:
    raw: Any = None


Output = Union[TrainingOutput, ImageOutput, NoOutput, UnknownOutput]


def decode_output(raw: Any) -> Output:
    """Decode a raw ``output`` value into the Output union."""
    if isinstance(raw, dict) and isinstance(raw.get("weights"), str):
        version = raw.get("version")
        return TrainingOutput(
            weights=raw["weights"],
            version=version if isinstance(version, str) else None,
        )
    if isinstance(raw, list) and all(isinstance(u, str) for u in raw):
        return ImageOutput(urls=tuple(raw))
    if raw is None:
        return NoOutput()
    return UnknownOutput(raw=raw)


# ── Event ────────────────────────────────────────────────────────────────


class _WebhookBody(BaseModel):
    """Wire shape of a provider delivery. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    output: Any = None
    error: Any = None
    metrics: Any = None


@dataclass(frozen=True)
class ProviderEvent:
    """Normalized provider event ready for reconciliation."""

    job_id: str
    status: ProviderStatus | None  # None = status this service doesn't know
    raw_status: str
    output: Output = field(default_factory=NoOutput)
    error: str | None = None
    predict_time: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def parse_event(payload: Any) -> ProviderEvent:
    """Build a ProviderEvent from a decoded JSON payload.

    Raises:
        PayloadError: not an object, or missing a string ``id``/``status``
    """
    if not isinstance(payload, dict):
        raise PayloadError(f"Expected JSON object, got {type(payload).__name__}")
    try:
        body = _WebhookBody.model_validate(payload)
    except ValidationError as e:
        raise PayloadError(f"Invalid webhook body ({e.error_count()} errors)") from e

    try:
        status: ProviderStatus | None = ProviderStatus(body.status)
    except ValueError:
        status = None

    predict_time = None
    if isinstance(body.metrics, dict) and isinstance(body.metrics.get("predict_time"), (int, float)):
        predict_time = float(body.metrics["predict_time"])

    return ProviderEvent(
        job_id=body.id,
        status=status,
        raw_status=body.status,
        output=decode_output(body.output),
        error=None if body.error is None else str(body.error),
        predict_time=predict_time,
    )


def decode_body(body: bytes) -> ProviderEvent:
    """Parse raw request bytes into a ProviderEvent.

    Raises:
        PayloadError: body is not valid JSON or not a valid event
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadError("Body is not valid JSON") from e
    return parse_event(payload)


def classify(event: ProviderEvent) -> EventKind:
    """Pick the reconciliation path for ``event``.

    Priority: training output, image output, failure, intermediate status.
    A succeeded event with any other output, or an unknown status, is a
    classification miss.
    """
    if event.status == ProviderStatus.SUCCEEDED:
        if isinstance(event.output, TrainingOutput):
            return EventKind.TRAINING_COMPLETE
        if isinstance(event.output, ImageOutput):
            return EventKind.GENERATION_COMPLETE
        return EventKind.UNRECOGNIZED
    if event.status == ProviderStatus.FAILED:
        return EventKind.JOB_FAILED
    if event.status in (
        ProviderStatus.STARTING,
        ProviderStatus.PROCESSING,
        ProviderStatus.CANCELED,
    ):
        return EventKind.INTERMEDIATE
    return EventKind.UNRECOGNIZED
