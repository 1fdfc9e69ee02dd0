from sqlgate.gateway.interface import SQLGateway, SQLResult
from sqlgate.gateway.registry import GatewayRegistry, default_gateway_registry
from sqlgate.gateway.sqlite import SQLiteGateway

__all__ = [
    "GatewayRegistry",
    "SQLGateway",
    "SQLResult",
    "SQLiteGateway",
    "default_gateway_registry",
]
