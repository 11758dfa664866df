"""Shared route dependencies."""

from fastapi import Depends, Request

from middleware import require_auth
from reportcredits.bootstrap import ReportCreditServices


def get_services(request: Request) -> ReportCreditServices:
    """Services built in the app lifespan."""
    return request.app.state.services


async def get_current_user_id(user: dict = Depends(require_auth)) -> str:
    return user["sub"]
