from .endpoint import SalmonEndpointServer, handle_envelope, start_endpoint

__all__ = [
    "SalmonEndpointServer",
    "handle_envelope",
    "start_endpoint",
]
