"""Data models for API requests and responses."""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Literal
from datetime import datetime


Rating = Literal["positive", "negative"]


class FeedbackRequest(BaseModel):
    """Request model for feedback endpoint."""
    response_id: str = Field(..., description="ID of the generated response being rated")
    response_type: str = Field(..., description="Category of the response, e.g. 'indian-cuisine'")
    rating: Optional[Rating] = Field(None, description="Thumbs up/down; omitted for comment-only feedback")
    comment: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class FeedbackResponse(BaseModel):
    """Response model for feedback endpoint."""
    success: bool
    message: str
    feedback_id: str


class FeedbackEntry(BaseModel):
    id: str
    response_id: str
    response_type: str
    rating: Optional[Rating] = None
    comment: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class FeedbackListResponse(BaseModel):
    feedback: List[FeedbackEntry]
    count: int


class GenerationParametersModel(BaseModel):
    """Sampling parameters for one response type."""
    temperature: float = Field(..., ge=0.0, le=1.0)
    top_p: float = Field(..., ge=0.0, le=1.0)
    top_k: int = Field(..., gt=0)
    max_output_tokens: int = Field(..., gt=0)


class ParametersResponse(BaseModel):
    response_type: str
    parameters: GenerationParametersModel


class GenerateRequest(BaseModel):
    """Request model for the generation endpoint."""
    prompt: str
    response_type: str = "default"


class GenerateResponse(BaseModel):
    response_id: str
    response_type: str
    text: str
    parameters: GenerationParametersModel


class DocumentRecord(BaseModel):
    """A document's verification record (one block of the chain)."""
    document_name: str
    document_hash: str
    block_hash: str
    previous_hash: str
    verification_data: Dict[str, Any]
    owner: str
    content_type: Optional[str] = None
    size: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class DocumentListItem(BaseModel):
    name: str
    url: str
    size: int
    content_type: str
    stored: bool
    verification: Optional[DocumentRecord] = None


class VerificationResponse(BaseModel):
    document_name: str
    valid: bool


class ChainResponse(BaseModel):
    """The chain in insertion order plus the result of walking it back from the newest block."""
    records: List[DocumentRecord]
    length: int
    visited: int
    reached_sentinel: bool
    intact: bool
    breaks: List[str]
    forks: List[str]
