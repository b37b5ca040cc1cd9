"""Transcribe and summarize recordings with the OpenAI HTTP API."""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import requests

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")

TRANSCRIPTION_TIMEOUT = 5 * 60
SUMMARY_TIMEOUT = 2 * 60

SUMMARY_MODEL = "gpt-4"
SUMMARY_MAX_TOKENS = 1000
SUMMARY_TEMPERATURE = 0.3

# Title used when the summary reply is not the expected JSON object
FALLBACK_TITLE = "meeting_summary"

SUMMARY_PROMPT = """Analyze the following meeting transcript and extract:
1. The main topic of the meeting (used as the file name)
2. The key points and decisions

Answer in the language of the transcript.

Transcript:
{transcript}

Reply with JSON only, in this format:
{{
  "title": "short name of the main topic of the meeting",
  "summary": "detailed key points and decisions, separated by line breaks (\\\\n) for readability"
}}"""


class ProviderError(Exception):
    """Exception raised when the transcription provider call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @classmethod
    def from_response(cls, response: requests.Response) -> "ProviderError":
        return cls(
            f"API error {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )


@dataclass
class SummaryResult:
    """Title and summary generated from a transcript."""
    title: str
    summary: str


def unescape_newlines(text: str) -> str:
    """Turn literal ``\\n`` sequences into real line breaks."""
    return text.replace("\\n", "\n")


def parse_summary_content(content: str) -> SummaryResult:
    """
    Parse the model reply into a SummaryResult.

    Falls back to the whole reply as the summary, under FALLBACK_TITLE, when
    the reply is not a JSON object with string ``title`` and ``summary``.
    """
    try:
        data = json.loads(content)
    except ValueError:
        data = None

    if (
        not isinstance(data, dict)
        or not isinstance(data.get("title"), str)
        or not isinstance(data.get("summary"), str)
    ):
        logger.warning("Summary reply is not the expected JSON, using it verbatim")
        return SummaryResult(title=FALLBACK_TITLE, summary=unescape_newlines(content))

    return SummaryResult(title=data["title"], summary=unescape_newlines(data["summary"]))


class OpenAIProvider:
    """Whisper transcription and chat-completion summaries over HTTP."""

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        session: Optional[requests.Session] = None,
        summary_model: str = SUMMARY_MODEL,
    ):
        if not api_key:
            raise ProviderError("OpenAI API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.summary_model = summary_model

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _post(self, endpoint: str, timeout: float, **kwargs) -> dict:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.post(url, headers=self._headers(), timeout=timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderError(f"Request to {endpoint} failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError.from_response(response)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from {endpoint}: {e}", body=response.text) from e

    def transcribe(self, audio_path: Union[str, Path], language: Optional[str], model: str) -> str:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to the audio artifact.
            language: Two-letter language code; ``None`` or ``"auto"`` to detect.
            model: Transcription model identifier (e.g. ``whisper-1``).

        Returns:
            The plain-text transcript.
        """
        audio_path = Path(audio_path)
        data = {"model": model}
        if language and language != "auto":
            data["language"] = language

        logger.info("Starting transcription for file: %s", audio_path)
        with open(audio_path, "rb") as f:
            payload = self._post(
                "audio/transcriptions",
                TRANSCRIPTION_TIMEOUT,
                data=data,
                files={"file": (audio_path.name, f)},
            )

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ProviderError("Invalid transcription response format")
        if not text.strip():
            raise ProviderError("Empty transcript received")
        return text

    def summarize(self, transcript: str) -> SummaryResult:
        """Generate a title and key-point summary for a transcript."""
        payload = self._post(
            "chat/completions",
            SUMMARY_TIMEOUT,
            json={
                "model": self.summary_model,
                "messages": [
                    {"role": "user", "content": SUMMARY_PROMPT.format(transcript=transcript)},
                ],
                "max_tokens": SUMMARY_MAX_TOKENS,
                "temperature": SUMMARY_TEMPERATURE,
            },
        )

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Invalid summary response format") from e
        if not isinstance(content, str):
            raise ProviderError("Invalid summary response format")

        logger.info("Summary generation successful")
        return parse_summary_content(content)
