from __future__ import annotations


class ProviderError(Exception):
    """Base class for scrape provider failures."""


class ProviderUnavailableError(ProviderError):
    """The provider rejected or could not accept a run request."""


class ProviderPollError(ProviderError):
    """Run status or results could not be read from the provider."""


class ProviderResponseError(ProviderError):
    """The provider answered with a body that is not the JSON it documents."""
