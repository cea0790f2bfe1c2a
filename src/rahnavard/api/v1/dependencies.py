"""Shared API dependencies for request protection and service access."""

from typing import Annotated, Any

from fastapi import Depends, Request

from rahnavard.api.v1.guard import GuardOptions, GuardResult, RequestGuard
from rahnavard.services.container import SecurityContainer


def get_container(request: Request) -> SecurityContainer:
    """Return the security services attached to the application at startup."""
    return request.app.state.security


# Type alias for the security container dependency
ContainerDep = Annotated[SecurityContainer, Depends(get_container)]


class Protect:
    """Dependency that runs the request guard and raises its rejection.

    Usage:
        GuardDep = Annotated[GuardResult, Depends(Protect(require_auth=True))]
    """

    def __init__(self, options: GuardOptions | None = None, **overrides: Any) -> None:
        self.options = options or GuardOptions(**overrides)

    async def __call__(self, request: Request, container: ContainerDep) -> GuardResult:
        result = await RequestGuard(container).guard(request, self.options)
        if result.rejection is not None:
            raise result.rejection

        if result.rotated_token:
            request.state.rotated_token = result.rotated_token
        if result.subject is not None:
            request.state.subject_id = result.subject.id
        return result


def require_role(*roles: str, **overrides: Any) -> Protect:
    """Protect a route so only authenticated subjects holding one of ``roles`` pass."""
    return Protect(GuardOptions(require_auth=True, roles=tuple(roles), **overrides))
