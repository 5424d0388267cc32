from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.monolog import Role


class SessionUpsert(BaseModel):
    session_id: str = Field(min_length=1, max_length=100)
    title: Optional[str] = Field(default=None, max_length=500)
    directory: Optional[str] = Field(default=None, max_length=1000)
    created_at: Optional[datetime] = None


class SessionRef(BaseModel):
    id: int
    session_id: str


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    title: Optional[str]
    working_directory: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]


class MonologCreate(BaseModel):
    session_ref: int
    parent_id: Optional[int] = None
    role: Role
    first_message_id: str = Field(min_length=1, max_length=100)
    content: str = ""
    participant_id: int
    provider_id: int
    mode_id: int
    started_at: Optional[datetime] = None


class MonologCreated(BaseModel):
    id: int


class ContentUpdate(BaseModel):
    text: str
    message_id: Optional[str] = Field(default=None, max_length=100)


class MonologClose(BaseModel):
    last_message_id: str = Field(min_length=1, max_length=100)
    final_content: Optional[str] = None
    completed_at: Optional[datetime] = None
    is_aborted: bool = False
    tokens_input: Optional[int] = Field(default=None, ge=0)
    tokens_output: Optional[int] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)


class OperationResult(BaseModel):
    success: bool


class MonologOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int = Field(description="session_ref")
    parent_monolog_id: Optional[int]
    role: Role
    first_message_id: str
    last_message_id: Optional[str]
    content: str
    participant_id: int
    provider_id: int
    mode_id: int
    tokens_input: Optional[int]
    tokens_output: Optional[int]
    cost: Optional[Decimal]
    started_at: datetime
    completed_at: Optional[datetime]
    is_aborted: bool


class SearchRequest(BaseModel):
    query_vector: Optional[List[float]] = None
    query: Optional[str] = Field(default=None, description="Текст запроса, эмбеддинг строится на сервере")
    session_ref: Optional[int] = None
    limit: int = Field(default=10, gt=0)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_query(self):
        if not self.query_vector and not (self.query and self.query.strip()):
            raise ValueError("either query_vector or query is required")
        return self


class SearchHit(BaseModel):
    monolog: MonologOut
    similarity: float
