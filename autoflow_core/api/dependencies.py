"""
FastAPI dependencies.
"""

from fastapi import Header, Request

from ..engine import AutomationEngine


def get_engine(request: Request) -> AutomationEngine:
    """The engine built by the application factory."""
    return request.app.state.engine


def get_tenant_id(tenant_id: str = Header(..., alias="X-Tenant-ID", min_length=1)) -> str:
    """Tenant scope of the request."""
    return tenant_id
