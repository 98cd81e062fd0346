"""Shared FastAPI dependencies."""

import uuid

from fastapi import Header


async def get_actor_id(
    x_actor_id: uuid.UUID = Header(..., alias="X-Actor-Id"),
) -> uuid.UUID:
    """Acting user, already authenticated and authorized by the gateway."""
    return x_actor_id
