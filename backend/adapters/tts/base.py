"""
Speech synthesis contract.

This module defines the *interface only*: no chunking policy, playback,
route claims or retries live here.

Key invariants:
- synthesize() returns PCM16 16kHz mono bytes (conversion is the adapter's job).
- Adapters raise SpeechSynthesisError; they never return partial audio on failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class SpeechSynthesisError(Exception):
    """
    Synthesis failed.

    kind:
        "missing_api_key" | "empty_text" | "api_error" | "network_error"

    status:
        Provider HTTP status for api_error, else None.
    """

    def __init__(self, kind: str, detail: str, *, status: int | None = None) -> None:
        super().__init__(f"{kind}: {detail}" if status is None else f"{kind} ({status}): {detail}")
        self.kind = kind
        self.detail = detail
        self.status = status


class SpeechSynthesizer(ABC):
    """
    Abstract interface for a text-to-speech provider.

    Implementations are responsible for:
    - Calling the TTS provider for one text segment
    - Returning PCM16 16kHz mono audio

    Non-responsibilities:
    - No text chunking
    - No audio playback or route claims
    - No retries
    """

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize a single text segment.

        Contract:
        - text is non-empty after stripping (callers validate first).
        - Raises SpeechSynthesisError on any provider or network failure.
        - MUST NOT retry internally.
        """
        raise NotImplementedError
