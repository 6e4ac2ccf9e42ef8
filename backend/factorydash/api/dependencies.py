"""FastAPI dependencies resolving the components stored on ``app.state``."""

from fastapi import Request

from factorydash.services.callbacks import CallbackIngress
from factorydash.services.ledger import SessionLedger
from factorydash.services.resume_gate import ResumeGate
from factorydash.services.sessions import SessionService


def get_ledger(request: Request) -> SessionLedger:
    return request.app.state.ledger


def get_ingress(request: Request) -> CallbackIngress:
    return request.app.state.ingress


def get_resume_gate(request: Request) -> ResumeGate:
    return request.app.state.resume_gate


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service
