"""HTTP access to the remote plant-management service."""

from infrastructure.api.plant_api import PlantServiceApi
from infrastructure.api.transport import Request, Response, TransportClient

__all__ = ["PlantServiceApi", "Request", "Response", "TransportClient"]
