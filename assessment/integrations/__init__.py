# Integrations module
# Partner gateways that talk to the coordinator over signed envelopes

from assessment.integrations.coordinator import CoordinatorClient, CoordinatorError
from assessment.integrations.gateways import Gateways, GatewayResult, IntegrationGateway

__all__ = [
    "CoordinatorClient",
    "CoordinatorError",
    "Gateways",
    "GatewayResult",
    "IntegrationGateway",
]
