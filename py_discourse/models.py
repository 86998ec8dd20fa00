"""Data models for the analysis job client.

- Job lifecycle state (``JobPhase``, ``JobStatus``, ``LogEntry``)
- Wire payloads from the analysis service (``StatusSnapshot``, ``QueueState``)
- Analysis results and weighted score breakdown
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobPhase(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_PHASES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


ACTIVE_PHASES = frozenset({JobPhase.QUEUED, JobPhase.PROCESSING})
TERMINAL_PHASES = frozenset({JobPhase.COMPLETED, JobPhase.ERROR, JobPhase.STOPPED})


def clamp_progress(value: Any) -> float:
    try:
        progress = float(value)
    except (TypeError, ValueError):
        return 0.0
    if progress != progress:  # NaN
        return 0.0
    return max(0.0, min(100.0, progress))


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    progress_at_time: float
    message: str

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any] | str,
        *,
        fallback_progress: float = 0.0,
        now: Optional[float] = None,
    ) -> "LogEntry":
        """Build an entry from a server log item (dict or bare message string)."""
        if isinstance(payload, str):
            return cls(
                timestamp=now if now is not None else time.time(),
                progress_at_time=fallback_progress,
                message=payload,
            )
        raw_ts = payload.get("timestamp")
        try:
            timestamp = float(raw_ts) if raw_ts is not None else None
        except (TypeError, ValueError):
            timestamp = None
        if timestamp is None:
            timestamp = now if now is not None else time.time()
        raw_progress = payload.get("progress")
        if raw_progress is None:
            raw_progress = payload.get("progress_at_time", fallback_progress)
        return cls(
            timestamp=timestamp,
            progress_at_time=clamp_progress(raw_progress),
            message=str(payload.get("message", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "progress": self.progress_at_time,
            "message": self.message,
        }


@dataclass(frozen=True)
class JobStatus:
    status: JobPhase = JobPhase.IDLE
    progress: float = 0.0
    message: str = ""
    observed_at: float = 0.0
    update_seq: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "observed_at": self.observed_at,
            "update_seq": self.update_seq,
        }


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable copy of the store handed to readers."""

    job_id: Optional[str]
    status: JobStatus
    logs: tuple[LogEntry, ...] = ()
    results: Optional[Dict[str, Any]] = None

    @property
    def phase(self) -> JobPhase:
        return self.status.status


@dataclass
class StateChange:
    """Notification emitted by the store after every accepted mutation."""

    kind: str  # "begin", "status", "log", "logs", "terminal", "results", "reset"
    snapshot: JobSnapshot
    previous: JobStatus = field(default_factory=JobStatus)

    @property
    def progress_changed(self) -> bool:
        return self.snapshot.status.progress != self.previous.progress


class WarningLevel(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"


class QueueState(BaseModel):
    """Queue advisory from the analysis service."""

    warning_level: WarningLevel = WarningLevel.NONE
    warning_message: str = ""
    estimated_wait_minutes: Optional[float] = None
    queue_position: Optional[int] = None

    @field_validator("warning_level", mode="before")
    @classmethod
    def _coerce_level(cls, value: Any) -> Any:
        if value is None or value == "":
            return WarningLevel.NONE
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("warning_message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def needs_confirmation(self) -> bool:
        return self.warning_level != WarningLevel.NONE


class StatusSnapshot(BaseModel):
    """Full job status snapshot (stream ``status`` payload or poll response)."""

    model_config = ConfigDict(populate_by_name=True)

    status: JobPhase
    progress: float = 0.0
    message: str = ""
    log_messages: List[Any] = Field(default_factory=list)
    results: Optional[Dict[str, Any]] = None
    update_seq: Optional[int] = Field(None, alias="seq")

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "idle":
                raise ValueError("server status cannot be idle")
        return value

    @field_validator("progress", mode="before")
    @classmethod
    def _coerce_progress(cls, value: Any) -> float:
        return clamp_progress(value)

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("log_messages", mode="before")
    @classmethod
    def _coerce_logs(cls, value: Any) -> Any:
        return [] if value is None else value

    def log_entries(self, *, now: Optional[float] = None) -> List[LogEntry]:
        return [
            LogEntry.from_payload(item, fallback_progress=self.progress, now=now)
            for item in self.log_messages
            if isinstance(item, (dict, str))
        ]


# ============================================================================
# Analysis results
# ============================================================================


class SpeechAnalysis(BaseModel):
    model_config = ConfigDict(extra="allow")
    score: float = 0.0
    speaking_rate: Optional[float] = None
    clarity: Optional[float] = None
    pace: Optional[float] = None
    confidence: Optional[float] = None


class BodyLanguage(BaseModel):
    model_config = ConfigDict(extra="allow")
    score: float = 0.0
    eye_contact: Optional[float] = None
    gestures: Optional[float] = None
    posture: Optional[float] = None
    engagement: Optional[float] = None


class ComponentScore(BaseModel):
    model_config = ConfigDict(extra="allow")
    score: float = 0.0


class ScoreWeights(BaseModel):
    """Percent weights applied to component scores (sum to 100)."""

    speech: float = 30.0
    body_language: float = 25.0
    teaching: float = 35.0
    presentation: float = 10.0

    @field_validator("speech", "body_language", "teaching", "presentation")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("weights must be non-negative")
        return value


class AnalysisResults(BaseModel):
    """Results attached to a completed job."""

    model_config = ConfigDict(extra="allow")

    overall_score: Optional[float] = None
    speech_analysis: SpeechAnalysis = Field(default_factory=SpeechAnalysis)
    body_language: BodyLanguage = Field(default_factory=BodyLanguage)
    teaching_effectiveness: ComponentScore = Field(default_factory=ComponentScore)
    presentation_skills: ComponentScore = Field(default_factory=ComponentScore)
    strengths: List[str] = Field(default_factory=list)
    improvement_suggestions: List[str] = Field(default_factory=list)

    def score_breakdown(self, weights: Optional[ScoreWeights] = None) -> List[Dict[str, Any]]:
        """Weighted contribution of each component to the overall score."""
        weights = weights or ScoreWeights()
        rows = [
            ("Speech Analysis", self.speech_analysis.score, weights.speech),
            ("Body Language", self.body_language.score, weights.body_language),
            ("Teaching Effectiveness", self.teaching_effectiveness.score, weights.teaching),
            ("Presentation Skills", self.presentation_skills.score, weights.presentation),
        ]
        return [
            {
                "label": label,
                "score": score,
                "weight_pct": weight,
                "weighted": round(score * weight / 100.0, 1),
            }
            for label, score, weight in rows
        ]

    def weighted_total(self, weights: Optional[ScoreWeights] = None) -> float:
        return round(sum(row["weighted"] for row in self.score_breakdown(weights)), 1)
