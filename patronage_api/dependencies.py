"""FastAPI dependencies resolving the objects create_app() stored on app.state."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from patronage_config.schema import EngineConfig
from patronage_kernel.domain.clock import Clock
from patronage_services.distribution_service import DistributionService


def get_session_factory(request: Request) -> Callable[[], Session]:
    return request.app.state.session_factory


def get_distribution_service(request: Request) -> DistributionService:
    return request.app.state.distribution_service


def get_config(request: Request) -> EngineConfig:
    return request.app.state.config


def get_clock(request: Request) -> Clock:
    return request.app.state.clock
