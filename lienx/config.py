"""
Configuration module for LienX.
"""

import json
import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from lienx.model import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FetchConfig(BaseModel):
    """
    Configuration for document fetching.
    """

    user_agent: str = DEFAULT_USER_AGENT  # Browser-like client identity
    timeout: float = 30.0  # Hard timeout per request (seconds)
    max_retries: int = 2  # Retries after the first attempt
    backoff_factor: float = 1.0  # Factor for exponential backoff


class PdfConfig(BaseModel):
    """
    Configuration for PDF text extraction.
    """

    strategies: List[str] = ["pdfplumber", "pypdf", "ocr"]  # Tier order
    min_text_chars: int = 1  # Fewer non-blank characters counts as a failed tier


class OcrConfig(BaseModel):
    """
    Configuration for OCR.
    """

    enabled: bool = True  # Whether the OCR tier may run at all
    lang: str = "eng"  # OCR language
    scale: float = 2.0  # Rasterization scale relative to base_dpi
    base_dpi: int = 72  # PDF user-space resolution
    restricted_env_vars: List[str] = [  # Markers of serverless/sandboxed runtimes
        "AWS_LAMBDA_FUNCTION_NAME",
        "VERCEL",
        "NETLIFY",
        "FUNCTION_TARGET",
        "K_SERVICE",
        "FUNCTIONS_WORKER_RUNTIME",
    ]

    @property
    def dpi(self) -> int:
        return int(round(self.base_dpi * self.scale))


class ParsingConfig(BaseModel):
    """
    Configuration for row reconstruction.
    """

    min_address_length: int = 3  # Shorter addresses are treated as empty
    header_lookahead: int = 3  # Lines joined when a header is split


class EnrichmentConfig(BaseModel):
    """
    Configuration for the valuation enrichment collaborator.
    """

    enabled: bool = False  # Whether enrichment runs at all
    validate_before_save: bool = True  # Drop records without a valid valuation signal
    enrich_after_save: bool = True  # Fill valuation data for saved records
    rate_limit_delay: float = 0.2  # Seconds between successive calls
    api_url: str = "https://api.realestateapi.com/v2/PropertySearch"
    api_key_env: str = "REALESTATE_API_KEY"  # Environment variable holding the key
    state: str = "GA"  # State sent with every lookup
    timeout: float = 10.0  # Request timeout (seconds)


class MongoDBConfig(BaseModel):
    """
    Configuration for MongoDB persistence.
    """

    enabled: bool = False  # Whether MongoDB persistence is enabled
    uri: str = "mongodb://localhost:27017"  # MongoDB connection URI
    database: str = "tax_liens"  # Database name
    collection: str = "tax_liens"  # Lien collection
    runs_collection: str = "scrape_runs"  # Extraction run log collection
    properties_collection: str = "properties"  # Enrichment payloads


class OutputConfig(BaseModel):
    """
    Configuration for output.
    """

    json_path: Optional[str] = "./out/liens.json"  # JSON output path
    csv_path: Optional[str] = "./out/liens.csv"  # CSV output path
    ndjson_path: Optional[str] = None  # NDJSON output path (disabled by default)
    pretty_json: bool = True  # Whether to pretty-print JSON


class LoggingConfig(BaseModel):
    """
    Configuration for logging.
    """

    level: str = "INFO"  # Logging level (DEBUG/INFO/WARNING/ERROR)


class Config(BaseModel):
    """
    Main configuration.
    """

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    pdf: PdfConfig = Field(default_factory=PdfConfig)
    ocr: OcrConfig = Field(default_factory=OcrConfig)
    parsing: ParsingConfig = Field(default_factory=ParsingConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    mongodb: MongoDBConfig = Field(default_factory=MongoDBConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    jurisdictions: List[str] = ["dekalb", "gwinnett", "cobb", "fulton", "clayton"]


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from a file.

    Args:
        path: Path to the configuration file

    Returns:
        Configuration object

    Raises:
        ConfigError: If the file format is unsupported or the file is invalid
    """
    if path:
        if path.endswith(".yaml") or path.endswith(".yml"):
            loader = yaml.safe_load
        elif path.endswith(".json"):
            loader = json.load
        else:
            raise ConfigError(f"Unsupported configuration file format: {path}")

        try:
            with open(path, "r") as f:
                config_dict = loader(f) or {}
            return Config(**config_dict)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Invalid configuration file {path}: {e}")
    else:
        # Try to load from default locations
        default_locations = [
            "./config.yaml",
            "./config.yml",
            "./config.json",
            os.path.expanduser("~/.config/lienx/config.yaml"),
        ]

        for loc in default_locations:
            if os.path.exists(loc):
                return load_config(loc)

        return Config()
