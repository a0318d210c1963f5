"""FastAPI dependency injection."""

from fastapi import Request

from broker.connection import ConnectionManager
from storage.reading_store import BoundedReadingStore


def get_service(request: Request):
    return request.app.state.service


def get_connection(request: Request) -> ConnectionManager:
    return request.app.state.service.connection


def get_store(request: Request) -> BoundedReadingStore:
    return request.app.state.service.store
