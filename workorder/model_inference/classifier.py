"""
AI Classifier Module.

This module provides the AIClassifier class that asks an OpenAI-compatible
chat model which registered client/supplier a document belongs to.

Approach:
    - Text: the OCR text and the entity list (name, code, keywords) are
      sent to a small text model with JSON output requested.
    - Vision: the stored main image is sent as a base64 data URL together
      with the entity list to a vision-capable model.

Both calls return an InferenceResult whose confidence lies in [0, 1] and
whose cost is computed here from the provider-reported token usage.

Author: ML Engineering Team
"""

import base64
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import OpenAI

from workorder.settings import AISettings
from workorder.storage.models import Entity
from workorder.postprocessor import DateNormalizer, normalize_short_text
from workorder.utils.logger import get_logger, log_cost
from workorder.utils.exceptions import InferenceError, ResponseParseError
from .inference_result import InferenceResult

# Initialize module logger
logger = get_logger(__name__)


PROVIDER = "openai"

CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

RESPONSE_SCHEMA = """{
  "clientName": "client name found on the document, or null",
  "clientCode": "code of the matching registered client, or null",
  "workDate": "YYYY-MM-DD, or null",
  "workType": "short summary of the work (50 characters max)",
  "notes": "remarks or special instructions, or null",
  "confidence": 0.85,
  "reasoning": "why this client was chosen"
}"""

TEXT_SYSTEM_PROMPT = (
    "You analyze work orders and purchase orders. The text may be Korean, "
    "English or a mix of both and comes from OCR, so expect recognition noise."
)

TEXT_PROMPT = """The following text was extracted by OCR from a work order.
Identify which registered client it belongs to and extract the work details.

OCR text:
{text}

Registered clients:
{clients}

Answer with a JSON object only:
{schema}"""

VISION_PROMPT = """You analyze photographed work orders and purchase orders (Korean and English).
Look at the image and:
1. Find the company or client name.
2. Find the scheduled work date or due date.
3. Summarize the requested work.
4. Note any remarks or special instructions.

Registered clients:
{clients}

Rules:
- Pick the closest registered client and return its code; use null if none fits.
- Lower the confidence when you are not sure.
- Convert dates to YYYY-MM-DD.

Answer with a JSON object only:
{schema}"""

IMAGE_MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.webp': 'image/webp',
}


def format_entity_list(entities: Sequence[Entity], include_keywords: bool = False) -> str:
    """Render the entity directory as prompt context."""
    if not entities:
        return "(no registered clients)"
    lines = []
    for entity in entities:
        line = f"- {entity.name} (code: {entity.code}"
        if include_keywords and entity.keywords:
            line += f", keywords: {', '.join(entity.keywords)}"
        lines.append(line + ")")
    return "\n".join(lines)


def parse_json_content(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model reply that should contain one JSON object.

    Markdown code fences around the object are tolerated.

    Raises:
        ResponseParseError: If no JSON object can be read.
    """
    if not content or not content.strip():
        raise ResponseParseError(content or "", "empty response")

    match = CODE_FENCE.search(content)
    json_string = match.group(1) if match else content.strip()

    try:
        data = json.loads(json_string)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse AI response: {e}")
        raise ResponseParseError(content, str(e)) from e

    if not isinstance(data, dict):
        raise ResponseParseError(content, "expected a JSON object")
    return data


def clamp_confidence(value: Any) -> float:
    """Coerce a model-reported confidence into [0, 1]; unreadable values give 0."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return max(0.0, min(1.0, confidence))


class AIClassifier:
    """
    OpenAI-backed document classifier.

    The OpenAI client is created on first use so that keyword-only
    deployments never need an API key.

    Attributes:
        settings: AISettings (models, limits, pricing)

    Example:
        >>> classifier = AIClassifier()
        >>> result = classifier.classify_by_text("ABC Corp 작업지시서", entities)
        >>> print(result.client_code, result.confidence, result.cost_usd)
    """

    def __init__(self, settings: Optional[AISettings] = None, client: Optional[Any] = None) -> None:
        """
        Initialize the classifier.

        Args:
            settings: AI settings. If None, loaded from configuration.
            client: Pre-built OpenAI-compatible client (tests, custom transports).
        """
        self.settings = settings or AISettings.from_config()
        self._client = client
        self.date_normalizer = DateNormalizer()

        logger.debug(
            f"AIClassifier initialized (text={self.settings.text_model}, "
            f"vision={self.settings.vision_model})"
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.settings.api_key:
                raise InferenceError(PROVIDER, "API key is not configured (OPENAI_API_KEY)")
            self._client = OpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url,
                timeout=self.settings.timeout_seconds,
                max_retries=self.settings.max_retries,
            )
        return self._client

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Cost in USD from token counts and configured per-token prices."""
        return (
            prompt_tokens * self.settings.input_cost_per_token
            + completion_tokens * self.settings.output_cost_per_token
        )

    def classify_by_text(self, text: str, entities: Sequence[Entity]) -> InferenceResult:
        """
        Classify a document from its OCR text.

        Args:
            text: Cleaned OCR text.
            entities: Active entities offered to the model.

        Returns:
            InferenceResult.

        Raises:
            InferenceError: If the provider call fails or times out.
            ResponseParseError: If the reply is not a JSON object.
        """
        prompt = TEXT_PROMPT.format(
            text=text,
            clients=format_entity_list(entities, include_keywords=True),
            schema=RESPONSE_SCHEMA,
        )
        messages = [
            {"role": "system", "content": TEXT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        return self._complete(
            self.settings.text_model,
            messages,
            response_format={"type": "json_object"},
        )

    def classify_by_image(self, image_path: Union[str, Path], entities: Sequence[Entity]) -> InferenceResult:
        """
        Classify a document from its image.

        Args:
            image_path: Path to the stored main image.
            entities: Active entities offered to the model.

        Raises:
            InferenceError: If the image cannot be read or the call fails.
            ResponseParseError: If the reply is not a JSON object.
        """
        path = Path(image_path)
        try:
            encoded = base64.b64encode(path.read_bytes()).decode('ascii')
        except OSError as e:
            logger.error(f"Failed to read image for vision classification: {path}: {e}")
            raise InferenceError(self.settings.vision_model, f"cannot read image {path}: {e}") from e

        mime_type = IMAGE_MIME_TYPES.get(path.suffix.lower(), 'image/jpeg')
        prompt = VISION_PROMPT.format(clients=format_entity_list(entities), schema=RESPONSE_SCHEMA)
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            }
        ]
        return self._complete(self.settings.vision_model, messages)

    def _complete(self, model: str, messages: List[Dict[str, Any]], **kwargs: Any) -> InferenceResult:
        """Run one chat completion and turn it into an InferenceResult."""
        started = time.monotonic()

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
                **kwargs
            )
        except InferenceError:
            raise
        except Exception as e:
            logger.error(f"AI request failed ({model}): {e}")
            raise InferenceError(model, str(e)) from e

        latency_ms = int((time.monotonic() - started) * 1000)

        usage = getattr(response, 'usage', None)
        prompt_tokens = int(getattr(usage, 'prompt_tokens', 0) or 0)
        completion_tokens = int(getattr(usage, 'completion_tokens', 0) or 0)
        cost_usd = self.calculate_cost(prompt_tokens, completion_tokens)

        # Billed even when the reply turns out to be unusable
        log_cost(
            PROVIDER, model, cost_usd,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
        )

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            error = ResponseParseError("", f"malformed completion: {e!r}")
            error.details['cost_usd'] = cost_usd
            raise error from e

        try:
            data = parse_json_content(content)
        except ResponseParseError as e:
            e.details['cost_usd'] = cost_usd
            raise

        result = InferenceResult(
            client_name=normalize_short_text(data.get('clientName'), max_length=200),
            client_code=normalize_short_text(data.get('clientCode'), max_length=100),
            confidence=clamp_confidence(data.get('confidence')),
            reasoning=str(data.get('reasoning') or ''),
            work_date=self.date_normalizer.normalize(data.get('workDate')),
            work_type=normalize_short_text(data.get('workType')),
            notes=normalize_short_text(data.get('notes'), max_length=500),
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost_usd,
            latency_ms=latency_ms,
            raw=data,
        )

        logger.info(
            f"AI classification ({model}): client={result.client_name} "
            f"code={result.client_code} confidence={result.confidence:.2f} "
            f"({latency_ms}ms, ${cost_usd:.6f})"
        )
        return result
