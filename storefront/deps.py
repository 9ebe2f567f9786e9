from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from .config import Settings
from .events import EventPublisher
from .mpesa import MpesaClient


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_events(request: Request) -> EventPublisher:
    return request.app.state.events


def get_mpesa(request: Request) -> MpesaClient:
    return request.app.state.mpesa
