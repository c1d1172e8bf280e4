# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""Errors raised by the code set builder."""
from typing import Optional


class CodeSetBuilderError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(CodeSetBuilderError):
    """Raised before any network call when the client cannot be configured."""


class GatewayError(CodeSetBuilderError):
    """
    A remote call to UTS or RxNav failed.

    `status` is the HTTP status code, or None for network and parse failures.
    """

    def __init__(self, status: Optional[int], message: str):
        self.status = status
        self.message = message
        super().__init__(f"[{status}] {message}" if status is not None else message)


class StandardVocabularyMissingError(CodeSetBuilderError):
    """The root concept has no atom in its domain's standard vocabulary."""

    def __init__(self, vocabulary: str, concept_id: Optional[str] = None, reason: Optional[str] = None):
        self.vocabulary = vocabulary
        self.concept_id = concept_id
        message = (
            f"No {vocabulary} code found for this concept. Cannot build comprehensive code set. "
            "Please select a different atom."
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class BuildCancelledError(CodeSetBuilderError):
    """A build was cancelled through its cancellation token."""
