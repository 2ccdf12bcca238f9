"""Request-scoped access to the service container."""

from fastapi import HTTPException, Request

from app.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialized.")
    return services
