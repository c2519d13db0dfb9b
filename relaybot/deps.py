from fastapi import Request

from .relay import RelayService
from .runtime import RelayRuntime


def get_runtime(request: Request) -> RelayRuntime:
    """
    FastAPI dependency that returns the runtime built in the app lifespan.
    Tests can override it with a runtime wired to fakes.
    """
    return request.app.state.runtime


def get_relay(request: Request) -> RelayService:
    return get_runtime(request).relay
