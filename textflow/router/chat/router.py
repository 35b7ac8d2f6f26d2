"""Base router for the anonymous chat API."""

from fastapi import APIRouter

router = APIRouter(prefix="/api/chat", tags=["Chat"])
