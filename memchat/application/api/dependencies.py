from typing import Annotated, Optional

import structlog
from fastapi import Depends, Header, Request

from memchat.infrastructure.container import ServiceContainer
from memchat.infrastructure.security.identity import extract_bearer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_owner_id(
    container: Annotated[ServiceContainer, Depends(get_container)],
    authorization: Annotated[Optional[str], Header()] = None
) -> str:
    """Resolve the bearer token to an owner id and bind it to the log context"""

    owner_id = await container.identity.resolve(extract_bearer(authorization))
    structlog.contextvars.bind_contextvars(owner_id=owner_id)
    return owner_id


Container = Annotated[ServiceContainer, Depends(get_container)]
OwnerId = Annotated[str, Depends(get_owner_id)]
