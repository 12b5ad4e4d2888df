from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from queryloop.models.conversation import (
    Conversation,
    Message,
    QueryMode,
    Reaction,
    SearchResultItem,
    UploadedFileRef,
)


# --- Requests ---


class UploadedFile(BaseModel):
    path: str
    publicUrl: str
    fileName: str
    fileType: str = ""
    fileSize: int = 0

    def to_ref(self) -> UploadedFileRef:
        return UploadedFileRef.from_dict(self.model_dump())

    @classmethod
    def from_ref(cls, ref: UploadedFileRef) -> UploadedFile:
        return cls(**ref.to_dict())


class ConversationCreateRequest(BaseModel):
    query: str = ""
    mode: QueryMode = QueryMode.SEARCH
    model: str | None = None
    user_email: str | None = None
    uploaded_files: list[UploadedFile] = Field(default_factory=list)


class QueryRequest(BaseModel):
    query: str = ""
    mode: QueryMode | None = None
    uploaded_files: list[UploadedFile] = Field(default_factory=list)


class ReactionRequest(BaseModel):
    reaction: Literal["like", "dislike"]


# --- Responses ---


class SearchResultItemResponse(BaseModel):
    title: str
    description: str
    source_name: str
    url: str
    image_url: str
    thumbnail_url: str

    @classmethod
    def from_item(cls, item: SearchResultItem) -> SearchResultItemResponse:
        return cls(
            title=item.title,
            description=item.description,
            source_name=item.source_name,
            url=item.url,
            image_url=item.image_url,
            thumbnail_url=item.thumbnail_url,
        )


class MessageResponse(BaseModel):
    id: str
    user_text: str
    results: list[SearchResultItemResponse]
    answer: str | None
    liked: bool
    disliked: bool
    loading: bool
    created_at: datetime | None

    @classmethod
    def from_message(
        cls, message: Message, loading: bool, reaction: Reaction | None = None
    ) -> MessageResponse:
        reaction = reaction or Reaction(liked=message.liked, disliked=message.disliked)
        return cls(
            id=message.id,
            user_text=message.user_text,
            results=[SearchResultItemResponse.from_item(i) for i in message.results],
            answer=message.answer,
            liked=reaction.liked,
            disliked=reaction.disliked,
            loading=loading,
            created_at=message.created_at,
        )


class ConversationResponse(BaseModel):
    id: str
    query: str
    mode: QueryMode
    model: str
    created_at: datetime | None
    uploaded_files: list[UploadedFile]
    messages: list[MessageResponse]
    polling: bool

    @classmethod
    def from_view(
        cls,
        conversation: Conversation,
        loading: dict[str, bool],
        polling: bool,
        reactions: dict[str, Reaction] | None = None,
    ) -> ConversationResponse:
        reactions = reactions or {}
        return cls(
            id=conversation.id,
            query=conversation.query,
            mode=conversation.mode,
            model=conversation.model,
            created_at=conversation.created_at,
            uploaded_files=[UploadedFile.from_ref(f) for f in conversation.uploaded_files],
            messages=[
                MessageResponse.from_message(m, loading.get(m.id, False), reactions.get(m.id))
                for m in conversation.messages
            ],
            polling=polling,
        )


class ConversationSummary(BaseModel):
    id: str
    query: str
    mode: QueryMode
    model: str
    created_at: datetime | None


class SubmissionResponse(BaseModel):
    conversation_id: str
    message_id: str
    route: str
    use_direct_model: bool
    job_handle: str | None = None


class FileContextResponse(BaseModel):
    conversation_id: str
    files: list[UploadedFile]


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
    default_model: str


class ReactionResponse(BaseModel):
    message_id: str
    liked: bool
    disliked: bool


class PollerCancelResponse(BaseModel):
    conversation_id: str
    cancelled: bool
