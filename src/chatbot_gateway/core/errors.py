from __future__ import annotations


class GatewayError(Exception):
    pass


class CommandRegistrationError(GatewayError):
    pass


class DurableStoreUnavailable(GatewayError):
    pass


class ExternalServiceError(GatewayError):
    pass


class TransportClosedError(GatewayError):
    pass
