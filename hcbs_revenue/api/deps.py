"""
FastAPI Dependencies
Dependency injection for the service container and the acting user
Source: https://fastapi.tiangolo.com/tutorial/dependencies/
Verified: 2026-10-19
"""

from fastapi import Header, Request

from hcbs_revenue.services.container import BillingContainer


def get_container(request: Request) -> BillingContainer:
    """Container started by the application lifespan."""
    return request.app.state.container


async def get_actor_id(
    actor_id: str = Header(..., alias="X-Actor-Id", min_length=1, max_length=100),
) -> str:
    """
    User performing the request.

    Every state change is attributed to an actor in claim history; the
    header is set by the gateway in front of this service.
    """
    return actor_id
