"""Data types threaded through one pipeline run."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studymind.processing.markers import KIND_CREATED, KIND_MENTION, Marker, parse_markers

RENDERED_TYPES = ("DOCUMENT", "AUDIO", "VIDEO", "IMAGE")

FOLDER_ICONS = (
    "book", "folder", "document", "note", "flashcard", "audio", "video", "image",
    "science", "math", "history", "language", "art", "music", "sports", "computer",
)
DEFAULT_FOLDER_COLOR = "#A8C686"
DEFAULT_FOLDER_ICON = "folder"

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


class Intent(str, Enum):
    CONVERSE = "CONVERSE"
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Stage(str, Enum):
    CLASSIFYING = "classifying"
    CONVERSING = "conversing"
    RESOLVING = "resolving"
    PLANNING = "planning"
    MATERIALIZING = "materializing"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


# --- Parent references ---


@dataclass(frozen=True)
class Root:
    """Place the item at the top of the library."""


@dataclass(frozen=True)
class ExistingId:
    """Place the item inside an item that already exists."""

    id: int


@dataclass(frozen=True)
class PendingSibling:
    """Place the item inside whatever was materialized just before it in this run."""


ParentRef = Union[Root, ExistingId, PendingSibling]


def parent_ref_from_wire(value) -> ParentRef:
    """Translate the planner's integer sentinels: null/0 root, -1 previous item, n existing."""
    if value is None:
        return Root()
    try:
        number = int(value)
    except (TypeError, ValueError):
        return Root()
    if number == -1:
        return PendingSibling()
    if number <= 0:
        return Root()
    return ExistingId(number)


# --- Item metadata, one model per item type ---


class _Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class FolderMetadata(_Metadata):
    color: str = DEFAULT_FOLDER_COLOR
    icon: str = DEFAULT_FOLDER_ICON

    @field_validator("color", mode="before")
    @classmethod
    def _valid_color(cls, value):
        if isinstance(value, str) and _HEX_COLOR_RE.match(value.strip()):
            return value.strip()
        return DEFAULT_FOLDER_COLOR

    @field_validator("icon", mode="before")
    @classmethod
    def _valid_icon(cls, value):
        if isinstance(value, str) and value.strip().lower() in FOLDER_ICONS:
            return value.strip().lower()
        return DEFAULT_FOLDER_ICON


class NoteMetadata(_Metadata):
    description: str = ""
    notes: str = ""


class Flashcard(BaseModel):
    question: str
    answer: str


class FlashcardMetadata(_Metadata):
    description: str = ""
    cards: list[Flashcard] = Field(default_factory=list)
    card_count: Optional[int] = Field(default=None, alias="cardCount")


class _FileMetadata(_Metadata):
    description: str = ""
    file_type: str = Field(default="", alias="fileType")
    file_path: Optional[str] = Field(default=None, alias="filePath")
    file_url: Optional[str] = Field(default=None, alias="fileUrl")
    file_size: Optional[int] = Field(default=None, alias="fileSize")


class DocumentMetadata(_FileMetadata):
    file_type: str = Field(default="pdf", alias="fileType")


class AudioMetadata(_FileMetadata):
    file_type: str = Field(default="mp3", alias="fileType")
    duration: Optional[float] = None


class VideoMetadata(_FileMetadata):
    file_type: str = Field(default="mp4", alias="fileType")
    duration: Optional[float] = None


class ImageMetadata(_FileMetadata):
    file_type: str = Field(default="png", alias="fileType")
    resolution: Optional[str] = None


ItemMetadata = Union[
    FolderMetadata, NoteMetadata, FlashcardMetadata,
    DocumentMetadata, AudioMetadata, VideoMetadata, ImageMetadata,
]

METADATA_MODELS: dict[str, type[_Metadata]] = {
    "FOLDER": FolderMetadata,
    "NOTE": NoteMetadata,
    "FLASHCARD": FlashcardMetadata,
    "DOCUMENT": DocumentMetadata,
    "AUDIO": AudioMetadata,
    "VIDEO": VideoMetadata,
    "IMAGE": ImageMetadata,
}


def parse_metadata(item_type: str, data: Optional[dict]) -> ItemMetadata:
    """Validate a loose metadata dict into the model for ``item_type``."""
    return METADATA_MODELS[item_type].model_validate(data or {})


def dump_metadata(metadata: ItemMetadata) -> dict:
    """Serialize metadata the way it is stored (camelCase keys, no nulls)."""
    return metadata.model_dump(by_alias=True, exclude_none=True)


# --- Pipeline records ---


@dataclass
class ConversationTurn:
    role: str  # USER | ASSISTANT
    message: str

    @property
    def markers(self) -> list[Marker]:
        return parse_markers(self.message)


@dataclass
class Reference:
    """A library item resolved for this run, with the reason it was fetched."""

    id: int
    uid: str
    name: str
    type: str
    parent_id: Optional[int]
    kind: str = KIND_MENTION
    purpose: str = ""
    need_content: bool = False
    content: str = ""

    def as_prompt_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "name": self.name,
            "type": self.type,
            "parentId": self.parent_id,
            "purpose": self.purpose,
            "content": self.content,
        }


@dataclass
class PlannedContentItem:
    name: str
    type: str
    parent: ParentRef = field(default_factory=Root)
    metadata: dict = field(default_factory=dict)
    prompt: Optional[str] = None

    @property
    def needs_prompt(self) -> bool:
        return self.type in RENDERED_TYPES


@dataclass
class PipelineState:
    """Mutable context owned by exactly one pipeline run."""

    user_id: int
    session_uid: str
    user_message: str
    prior_turns: list[ConversationTurn] = field(default_factory=list)
    prior_summary: str = ""
    session_title: str = ""
    session_description: str = ""
    intent: Optional[Intent] = None
    queue: list[PlannedContentItem] = field(default_factory=list)
    cursor: int = 0
    materialized: list = field(default_factory=list)
    rendered_files: list = field(default_factory=list)
    mention_refs: list[Reference] = field(default_factory=list)
    session_refs: list[Reference] = field(default_factory=list)
    response: str = ""
    error: Optional[str] = None
    stage: Stage = Stage.CLASSIFYING

    @property
    def references(self) -> list[Reference]:
        return [*self.mention_refs, *self.session_refs]

    @property
    def queue_done(self) -> bool:
        return self.cursor >= len(self.queue)

    def created_markers_in_history(self) -> list[Marker]:
        markers = []
        for turn in self.prior_turns:
            if turn.role == "ASSISTANT":
                markers.extend(parse_markers(turn.message, kinds=(KIND_CREATED,)))
        return markers
