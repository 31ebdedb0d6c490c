"""Custom exception hierarchy for the ENI binder."""


class BinderError(Exception):
    """Base exception for all binder errors."""


class ConfigError(BinderError):
    """Invalid or missing configuration."""


class CandidateError(BinderError):
    """The candidate address pool for a zone could not be resolved."""


class NoCandidatesError(CandidateError):
    """Discovery returned nothing for the zone."""

    def __init__(self, zone: str):
        super().__init__(f"Could not get any ips from the pool for zone: {zone}")
        self.zone = zone


class MalformedCandidateError(CandidateError):
    """A discovered service URL does not reduce to an IPv4 address."""

    def __init__(self, message: str, candidate: str | None = None):
        super().__init__(message)
        self.candidate = candidate


class ProviderError(BinderError):
    """Error talking to the cloud provider."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class ProviderQueryError(ProviderError):
    """A describe / metadata query failed."""


class NotFoundError(ProviderQueryError):
    """The provider has no record of this instance."""


class AttachError(ProviderError):
    """attach_network_interface was rejected or failed."""


class DetachError(ProviderError):
    """detach_network_interface was rejected or failed."""
