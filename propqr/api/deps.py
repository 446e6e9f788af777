from fastapi import Request

from propqr.services.registry import ServiceRegistry


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services
