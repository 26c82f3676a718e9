from typing import ClassVar

from docproc.config.settings import Settings
from docproc.extraction.client_base import BaseExtractionClient
from docproc.extraction.example_client_adapter import ExampleExtractionClient


class ExtractionClientFactory:
    """Creates the configured extraction client."""

    PROVIDERS: ClassVar[dict[str, type[BaseExtractionClient]]] = {
        "example": ExampleExtractionClient,
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseExtractionClient:
        provider = settings.extraction_provider.lower()
        client_cls = cls.PROVIDERS.get(provider)
        if client_cls is None:
            raise ValueError(
                f"Unknown extraction provider '{provider}'. Choose from: {list(cls.PROVIDERS)}"
            )
        return client_cls()
