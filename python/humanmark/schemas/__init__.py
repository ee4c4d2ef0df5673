"""Pydantic schemas for request/response models."""

from humanmark.schemas.flows import (
    FlowCreateOut,
    FlowCreateRequest,
    VerificationOut,
    VerificationRequest,
    parse_context,
)

__all__ = [
    "FlowCreateRequest",
    "FlowCreateOut",
    "VerificationRequest",
    "VerificationOut",
    "parse_context",
]
