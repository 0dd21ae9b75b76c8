"""Video analysis provider backed by the Anthropic Messages API.

The analysis is a single synchronous LLM round trip, so ``submit``
returns an already-terminal outcome and there is nothing to poll.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

import anthropic
from pydantic import BaseModel, Field, ValidationError

from reelstudio.errors import InvalidInput, NoArtifact, ProviderUnavailable
from reelstudio.jobs.models import Artifact, JobKind, PollOutcome, Submission
from reelstudio.providers.base import invalid_params

logger = logging.getLogger(__name__)

_ANALYSIS_PROMPT = """\
You are an expert in Instagram Reels content analysis.

Analyze the transcript of a short vertical video and rate it.
Evaluate the hook (first 3-7 seconds), the call to action, the overall
sentiment, the speaking pace (normal is 120-150 words per minute) and the
key points. Write all free text in the language of the transcript.

Transcript language: {language}
{metadata}
Transcript:
{transcript}

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"summary": "<short summary>",
  "key_points": ["<point>"],
  "hook_analysis": {{"detected": true, "quality": "strong|weak|missing", "suggestion": "<tip>"}},
  "cta_analysis": {{"detected": true, "type": "engagement|follow|share|action", "suggestion": "<tip>"}},
  "wpm": 135,
  "sentiment": "positive|negative|neutral",
  "recommendations": ["<recommendation>"]}}
"""


class AnalysisParams(BaseModel):
    transcript: str = Field(..., min_length=1)
    language: str = Field("ru", min_length=2, max_length=8)
    filename: str | None = None
    duration_seconds: float | None = Field(None, gt=0)


class HookAnalysis(BaseModel):
    detected: bool
    quality: Literal["strong", "weak", "missing"]
    suggestion: str | None = None


class CtaAnalysis(BaseModel):
    detected: bool
    type: str | None = None
    suggestion: str | None = None


class TranscriptAnalysis(BaseModel):
    """Schema the LLM answer must satisfy before it is stored."""

    summary: str
    key_points: list[str] = Field(default_factory=list)
    hook_analysis: HookAnalysis
    cta_analysis: CtaAnalysis
    wpm: float = Field(..., ge=0)
    sentiment: Literal["positive", "negative", "neutral"]
    recommendations: list[str] = Field(default_factory=list)


def _strip_code_fences(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def parse_analysis(raw_text: str) -> TranscriptAnalysis:
    """Parse and validate the LLM's JSON answer.

    Raises:
        ProviderUnavailable: If the answer is not valid JSON of the expected shape.
    """
    try:
        data = json.loads(_strip_code_fences(raw_text))
        return TranscriptAnalysis.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ProviderUnavailable(
            f"analysis model returned an unusable answer: {exc}\nRaw response: {raw_text[:500]}"
        ) from exc


class AnalysisProvider:
    """Analyzes a video transcript with Claude.

    Gracefully handles a missing API key by marking itself unavailable
    rather than crashing.
    """

    kind = JobKind.VIDEO_ANALYSIS

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-20250514",
        max_transcript_chars: int = 20000,
        timeout: float = 30.0,
        max_retries: int = 2,
        client: Any | None = None,
    ) -> None:
        self._model = model
        self._max_transcript_chars = max_transcript_chars

        if client is not None:
            self._client = client
        elif api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key, timeout=timeout, max_retries=max_retries
            )
        else:
            self._client = None
            logger.warning("AnalysisProvider: No API key found, provider unavailable")

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            parsed = AnalysisParams.model_validate(params)
        except ValidationError as exc:
            raise invalid_params("analysis", exc) from exc

        transcript = parsed.transcript.strip()
        if not transcript:
            raise InvalidInput("transcript is empty")
        if len(transcript) > self._max_transcript_chars:
            raise InvalidInput(
                f"transcript is too long ({len(transcript)} chars, max {self._max_transcript_chars})"
            )
        return parsed.model_copy(update={"transcript": transcript}).model_dump(exclude_none=True)

    async def submit(self, params: dict[str, Any]) -> Submission:
        """Run the analysis and return a completed outcome.

        Raises:
            ProviderUnavailable: If the API call fails or the answer is unusable.
            InvalidInput: If the API rejects the request.
        """
        if self._client is None:
            raise ProviderUnavailable("analysis provider is not configured (no API key)")

        request = AnalysisParams.model_validate(params)
        prompt = _ANALYSIS_PROMPT.format(
            language=request.language,
            metadata=_format_metadata(request),
            transcript=request.transcript,
        )

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=2048,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.BadRequestError as exc:
            raise InvalidInput(f"Anthropic rejected the request: {exc}") from exc
        except anthropic.APIError as exc:
            raise ProviderUnavailable(f"Anthropic API error: {exc}") from exc

        raw_text = "".join(block.text for block in response.content if block.type == "text")
        analysis = parse_analysis(raw_text)

        result = {
            "analysis": analysis.model_dump(),
            "model": self._model,
            "language": request.language,
        }
        return Submission(external_ref=response.id, outcome=PollOutcome.completed(result))

    async def poll(self, external_ref: str) -> PollOutcome:
        raise ProviderUnavailable(
            f"analysis {external_ref} has no remote status; results are only available at submission"
        )

    async def fetch_artifact(self, external_ref: str, result: dict[str, Any]) -> Artifact:
        raise NoArtifact("video analysis jobs produce no downloadable artifact")

    async def cancel(self, external_ref: str) -> bool:
        return False


def _format_metadata(request: AnalysisParams) -> str:
    lines = []
    if request.filename:
        lines.append(f"File name: {request.filename}")
    if request.duration_seconds:
        lines.append(f"Duration: {request.duration_seconds:.0f} seconds")
    return "\n".join(lines) + ("\n" if lines else "")
