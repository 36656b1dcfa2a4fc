"""Configuration management for the Drape-Works fabric try-on service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the DRAPEWORKS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (DRAPEWORKS_* prefix)
2. .env file in the project root
3. Default values defined in DrapeworksConfig

Example .env file:
    DRAPEWORKS_GOOGLE_API_KEY=...
    DRAPEWORKS_GENERATION_MODEL=gemini-3-pro-image-preview
    DRAPEWORKS_DATA_DIR=data
    DRAPEWORKS_PRICE_OUTPUT_IMAGE=0.032

The API key is also accepted from the plain ``GOOGLE_API_KEY`` variable so an
existing Google Cloud deployment does not need a second secret.

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
It is the default used by the API layer; tests build their own instances
pointing at temporary directories.

Pricing
-------
The four per-unit prices feed :class:`~drapeworks.core.usage_ledger.Pricing`.
They default to the published Gemini 3 Pro Image Preview rates and should be
overridden through the environment whenever the provider changes them.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from drapeworks.core.usage_ledger import Pricing


class DrapeworksConfig(BaseSettings):
    """Main configuration for the Drape-Works service.

    Attributes
    ----------
    Generation Service:
        google_api_key : str | None
            Credential for the image generation service
        generation_model : str
            Model identifier sent with every request and stored on usage records
        aspect_ratio : str
            Output aspect ratio hint (portrait 4:5 suits garment photos)
        image_size : str
            Output resolution hint

    Pricing (USD):
        price_input_text_per_million : float
        price_output_text_per_million : float
        price_input_image : float
        price_output_image : float

    Storage:
        data_dir : Path
            Directory holding the usage ledger
        usage_file : Path | None
            Explicit ledger location (defaults to data_dir/usage-data.json,
            or usage-data.db for the sqlite backend)
        ledger_backend : Literal["json", "sqlite"]
            Persistence strategy injected into the ledger

    Limits:
        recent_records_limit : int
            Number of records returned in the stats "recent" list
        max_custom_prompt_length : int
            Upper bound on custom instruction text accepted by the API

    Server:
        server_host : str
        server_port : int
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DRAPEWORKS_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Generation service
    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "google_api_key", "DRAPEWORKS_GOOGLE_API_KEY", "GOOGLE_API_KEY"
        ),
        description="API key for the image generation service",
    )
    generation_model: str = Field(
        default="gemini-3-pro-image-preview",
        description="Generation model identifier",
    )
    aspect_ratio: str = Field(default="4:5", description="Output aspect ratio hint")
    image_size: str = Field(default="2K", description="Output resolution hint")

    # Pricing
    price_input_text_per_million: float = Field(default=1.25, ge=0.0)
    price_output_text_per_million: float = Field(default=5.00, ge=0.0)
    price_input_image: float = Field(default=0.0032, ge=0.0)
    price_output_image: float = Field(default=0.0320, ge=0.0)

    # Storage
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for persisted usage data",
    )
    usage_file: Path | None = Field(
        default=None,
        description="Explicit usage ledger path (derived from data_dir when unset)",
    )
    ledger_backend: Literal["json", "sqlite"] = Field(
        default="json",
        description="Usage ledger persistence backend",
    )

    # Limits
    recent_records_limit: int = Field(default=20, ge=1, le=1000)
    max_custom_prompt_length: int = Field(default=500, ge=1)

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def ledger_path(self) -> Path:
        """Resolved location of the usage ledger for the configured backend."""
        if self.usage_file is not None:
            return self.usage_file
        suffix = "db" if self.ledger_backend == "sqlite" else "json"
        return self.data_dir / f"usage-data.{suffix}"

    @property
    def pricing(self) -> Pricing:
        """Per-unit prices as the value object consumed by the ledger."""
        return Pricing(
            input_text_per_token=self.price_input_text_per_million / 1_000_000,
            output_text_per_token=self.price_output_text_per_million / 1_000_000,
            input_image=self.price_input_image,
            output_image=self.price_output_image,
        )


# Global configuration instance
# Loads values from environment variables (DRAPEWORKS_* prefix) and .env file.
config = DrapeworksConfig()
