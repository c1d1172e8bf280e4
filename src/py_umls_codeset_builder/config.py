# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    """
    Manages the application's configuration settings.
    Utilizes Pydantic's BaseSettings to allow for environment variable overrides.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="PYUMLSCODESET_"
    )

    # --- Credentials ---
    umls_api_key: str = Field(
        ...,
        description="UMLS API key for authenticating with the UTS REST API."
    )

    # --- Remote Services ---
    uts_base_url: str = Field("https://uts-ws.nlm.nih.gov/rest", description="Base URL of the UTS REST API.")
    rxnav_base_url: str = Field("https://rxnav.nlm.nih.gov/REST", description="Base URL of the RxNav REST API.")
    browse_url_template: str = Field(
        "https://uts.nlm.nih.gov/uts/umls/concept/{concept_id}",
        description="Public browse URL for a concept. Must contain a {concept_id} placeholder."
    )

    # --- Paging ---
    search_page_size: int = Field(default=75, description="Results requested per search page.")
    search_max_pages: int = Field(default=4, description="Number of search pages fetched in parallel.")
    atoms_page_size: int = Field(default=100, description="Atoms requested per concept.")
    descendants_page_size: int = Field(default=200, description="Descendants requested per page.")
    descendants_max_pages: int = Field(
        default=50,
        description="Hard ceiling on descendant pages fetched for a single code."
    )

    # --- HTTP Behavior ---
    request_timeout: float = Field(default=30.0, description="Per-request socket timeout in seconds.")
    max_retries: int = Field(default=2, description="Retries for HTTP 429 and 5xx responses.")
    retry_backoff: float = Field(default=1.0, description="Base delay in seconds for exponential retry back-off.")
    max_parallel_requests: int = Field(
        default=4,
        description="Maximum number of independent requests issued in parallel."
    )

    # --- Build Behavior ---
    size_warning_threshold: int = Field(
        default=100,
        description="Immediate-descendant count above which a build asks for confirmation."
    )
    size_danger_threshold: int = Field(
        default=500,
        description="Immediate-descendant count above which the confirmation warning is escalated."
    )
    default_vocabularies: List[str] = Field(
        default=[
            "SNOMEDCT_US", "ICD10CM", "ICD9CM", "RXNORM", "LNC", "CPT",
            "HCPCS", "NDC", "CVX", "ICD10PCS", "ATC"
        ],
        description="Vocabularies requested when browsing a concept without an explicit filter."
    )

    # --- File Paths ---
    export_dir: str = Field("./codesets", description="Directory where exported code sets are written.")


# Instantiate a global settings object to be used throughout the application
settings = Settings()
