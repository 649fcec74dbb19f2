"""Tool gateway: stdio worker and the spawn-per-call client."""

from gateway_assistant.gateway.client import GatewayClient
from gateway_assistant.gateway.server import GatewayWorker, create_health_app, run_worker

__all__ = [
    "GatewayClient",
    "GatewayWorker",
    "create_health_app",
    "run_worker",
]
