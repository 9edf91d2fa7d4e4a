"""Anthropic vision integration for reading vendor, amount and date off receipt images."""

import time
from pathlib import Path

from anthropic import AsyncAnthropic
from anthropic.types.beta import (
    BetaCacheControlEphemeralParam,
    BetaMessageParam,
    BetaTextBlockParam,
)
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
)

from pcardflow.models import ExtractedReceipt, PurchaseRequest

DEFAULT_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class ExtractionRefusedError(ExtractionError):
    """Raised when the model refuses to process the request."""


class ExtractionIncompleteError(ExtractionError):
    """Raised when the response is truncated due to token limits."""


class ReceiptImage(BaseModel):
    """Image input for the vision service: inline base64 data or a URL."""

    media_type: str = "image/jpeg"
    data: str | None = None
    url: str | None = None

    @property
    def size(self) -> int:
        return len(self.data or self.url or "")

    def to_content_block(self) -> dict:
        if self.data is not None:
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
            }
        return {"type": "image", "source": {"type": "url", "url": self.url}}


class VisionResult(BaseModel):
    """Extracted receipt fields with call metadata."""

    extracted: ExtractedReceipt
    input_tokens: int
    output_tokens: int
    processing_time: float  # in seconds
    model: str = Field(default="")


def _is_retryable(exception: BaseException) -> bool:
    # Refusals and truncations would only repeat.
    return not isinstance(exception, ExtractionRefusedError | ExtractionIncompleteError)


class VisionExtractor:
    """
    Receipt field extractor backed by Claude's vision and structured outputs.

    The expected vendor, amount and date of the purchase request are given to
    the model as context; matching itself is decided locally by
    ``pcardflow.core.verifier``, never by the model.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 2048,
        temperature: float = 0.0,
        timeout: float = 60.0,
        prompts_dir: str | None = None,
    ) -> None:
        """
        Initialize the vision extractor.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-haiku-4-5)
            max_tokens: Maximum tokens for response (default: 2048)
            temperature: Sampling temperature (default: 0.0 for deterministic)
            timeout: Per-call timeout in seconds
            prompts_dir: Directory containing Jinja2 templates (default: package prompts/)
        """
        self.client = AsyncAnthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

        if prompts_dir is None:
            prompts_dir = str(DEFAULT_PROMPTS_DIR)

        self.jinja_env = Environment(
            loader=FileSystemLoader(prompts_dir),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render_prompts(self, request: PurchaseRequest) -> tuple[str, str]:
        """
        Render system and user prompts from Jinja2 templates.

        Args:
            request: Purchase request whose details the receipt should show

        Returns:
            Tuple of (system_prompt, user_prompt)
        """
        system_template = self.jinja_env.get_template("verifier_system.jinja2")
        user_template = self.jinja_env.get_template("verifier_user.jinja2")

        system_prompt = system_template.render()
        user_prompt = user_template.render(
            EXPECTED_VENDOR=request.vendor_name,
            EXPECTED_AMOUNT=f"{request.total_amount:.2f}",
            EXPECTED_DATE=request.expense_date.isoformat(),
        )

        return system_prompt, user_prompt

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def extract(
        self, image: ReceiptImage, request: PurchaseRequest
    ) -> VisionResult:
        """
        Extract vendor, total, date and items from a receipt image.

        Args:
            image: Receipt image (inline data or URL)
            request: Purchase request the receipt is expected to match

        Returns:
            VisionResult with the extracted fields (any of which may be None)

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If response is truncated
            ExtractionError: If the response carries no parsed output
            Exception: For other API errors (after retry)
        """
        start_time = time.time()

        system_prompt, user_prompt = self._render_prompts(request)

        messages: list[BetaMessageParam] = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_prompt},
                    image.to_content_block(),  # type: ignore[list-item]
                ],
            }
        ]

        response = await self.client.beta.messages.parse(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            betas=["structured-outputs-2025-11-13"],
            system=[
                BetaTextBlockParam(
                    type="text",
                    text=system_prompt,
                    cache_control=BetaCacheControlEphemeralParam(type="ephemeral"),
                )
            ],
            messages=messages,
            output_format=ExtractedReceipt,
        )

        if response.stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")

        if response.stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        extracted: ExtractedReceipt | None = response.parsed_output  # type: ignore
        if extracted is None:
            raise ExtractionError("Model returned no parseable receipt data")

        return VisionResult(
            extracted=extracted,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            processing_time=time.time() - start_time,
            model=self.model,
        )
