"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field


class QuestionRequest(BaseModel):
    question: str = Field(default="", max_length=2000)


class QuestionCreated(BaseModel):
    note_id: str
    question: str
    segment: int


class Health(BaseModel):
    status: str = "ok"
    version: str
