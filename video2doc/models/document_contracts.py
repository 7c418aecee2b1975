from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

DocumentStatus = Literal["pending", "processing", "completed", "error"]
DocumentFormat = Literal["markdown", "html", "plain"]
DocumentTone = Literal["formal", "casual", "technical", "academic"]
SkillLevel = Literal["beginner", "intermediate", "advanced"]
OutputType = Literal["tutorial", "guide", "reference"]
Sentiment = Literal["positive", "negative", "neutral", "mixed"]

class StyleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    format: DocumentFormat = "markdown"
    tone: DocumentTone = "formal"
    skill_level: SkillLevel = "intermediate"
    output_type: OutputType = "tutorial"


class Chapter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    start: float
    end: float
    summary: str | None = None


class Highlight(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    count: int = 1
    rank: float | None = None
    start: float | None = None
    end: float | None = None


class Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    entity_type: str
    start: float | None = None
    end: float | None = None


def _default_chapters() -> list[Chapter]:
    return []


def _default_highlights() -> list[Highlight]:
    return []


def _default_entities() -> list[Entity]:
    return []


def _default_strings() -> list[str]:
    return []


class VideoDocumentMetadata(BaseModel):
    """Metadata of a document generated from a video.

    Fields are filled stage by stage: video info first, then the transcript
    fields, then the generated summary fields.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["video"] = "video"
    style: StyleConfig = Field(default_factory=StyleConfig)

    video_id: str | None = None
    title: str | None = None
    channel_title: str | None = None
    duration_seconds: int | None = None

    transcription_job_id: str | None = None
    transcript: str | None = None
    word_count: int | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    chapters: list[Chapter] = Field(default_factory=_default_chapters)
    highlights: list[Highlight] = Field(default_factory=_default_highlights)
    entities: list[Entity] = Field(default_factory=_default_entities)

    summary: str | None = None
    key_points: list[str] = Field(default_factory=_default_strings)
    sentiment: Sentiment | None = None
    topics: list[str] = Field(default_factory=_default_strings)
    estimated_reading_minutes: int | None = None


class ManualDocumentMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["manual"] = "manual"
    word_count: int | None = None
    summary: str | None = None
    key_points: list[str] = Field(default_factory=_default_strings)
    topics: list[str] = Field(default_factory=_default_strings)


DocumentMetadata = Annotated[
    VideoDocumentMetadata | ManualDocumentMetadata,
    Field(discriminator="kind"),
]

DOCUMENT_METADATA_ADAPTER: TypeAdapter[VideoDocumentMetadata | ManualDocumentMetadata] = (
    TypeAdapter(DocumentMetadata)
)


class DocumentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_url: str = Field(min_length=1, max_length=2048)
    style: StyleConfig = Field(default_factory=StyleConfig)


class DocumentProcessRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_url: str = Field(min_length=1, max_length=2048)


class DocumentResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    user_id: str
    status: DocumentStatus
    source_reference: str
    title: str | None = None
    content: str | None = None
    metadata: DocumentMetadata
    error_message: str | None = None
    created_at: str
    updated_at: str
    completed_at: str | None = None


class ProcessingJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    document_id: str
    provider_job_id: str
    status: str
    progress: int = Field(ge=0, le=100)
    status_message: str | None = None
    error_message: str | None = None
    created_at: str


class ProcessAcceptedResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_id: str
    status: DocumentStatus
    message: str


class UsageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    month: str
    tier: str
    documents_processed: int
    total_video_duration_seconds: int
    documents_per_month: int | None
    max_video_duration_seconds: int | None
    remaining_documents: int | None
    features: dict[str, bool]
