"""Accessors for the long-lived collaborators that main.py attaches to app.state."""
from fastapi import Request

from procurement.services.ai_service import Oracle
from procurement.services.ingestion import ProposalPipeline
from procurement.services.mailer import Mailer
from procurement.services.push_listener import PushListener


def get_pipeline(request: Request) -> ProposalPipeline:
    return request.app.state.pipeline


def get_oracle(request: Request) -> Oracle | None:
    return request.app.state.pipeline.oracle


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_push_listener(request: Request) -> PushListener | None:
    return getattr(request.app.state, "push_listener", None)