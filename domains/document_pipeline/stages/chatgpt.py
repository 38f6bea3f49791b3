"""
ChatGPT cleanup stage.

Sends OCR markdown to the OpenAI chat completions API to fix markdown syntax,
spelling and grammar, then strips the code-fence wrapper the model sometimes
adds despite being told not to.
"""

import io
from typing import BinaryIO, Optional

import httpx
from loguru import logger

from app.models.schemas import SourceDocument
from app.utils.config import ConfigurationError
from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.errors import CleanupError
from domains.document_pipeline.stages.base import Stage

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

FENCE_OPEN = "```markdown"
FENCE_CLOSE = "```"

SYSTEM_MESSAGE = (
    "You are an AI that processes Markdown text. Your task is to clean up the input by "
    "fixing Markdown syntax, correcting spelling and grammar, and ensuring proper formatting. "
    "Do NOT include any extra explanations, comments, or surrounding text; only return the "
    "valid Markdown output."
)

PROMPT_TEMPLATE = (
    "Here is a Markdown file that was generated via OCR. Fix the Markdown formatting, correct "
    "any spelling and grammar errors, and ensure the syntax is valid. Do not add any "
    "explanations, comments, and do not surround the document text in a markdown code block. "
    "ONLY RETURN THE CLEANED MARKDOWN CONTENT AND NOTHING ELSE:\n\n{content}"
)


def strip_markdown_fence(text: str) -> str:
    """
    Remove a ```markdown ... ``` wrapper around the whole text.

    Text without the wrapper is returned unchanged, so applying this twice
    is the same as applying it once.
    """
    stripped = text.strip()
    if not stripped.startswith(FENCE_OPEN):
        return text

    inner = stripped[len(FENCE_OPEN):]
    if inner.endswith(FENCE_CLOSE):
        inner = inner[:-len(FENCE_CLOSE)]
    return inner.strip()


class ChatGPTStage(Stage):
    """Cleans up OCR markdown with ChatGPT."""

    name = "ChatGPT Cleanup"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o",
        temperature: float = 0.2,
        client: Optional[httpx.Client] = None,
        api_url: str = OPENAI_CHAT_URL,
    ):
        super().__init__()
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.client = client
        self.api_url = api_url

    def initialize(self, scope: CancelScope) -> None:
        super().initialize(scope)
        if not self.api_key:
            raise ConfigurationError("CHATGPT_API_KEY must be set")
        if self.client is None:
            self.client = httpx.Client(timeout=120.0)

    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        content = stream.read().decode("utf-8", errors="replace")
        logger.debug(f"Cleaning up {len(content)} characters of {document.name}")

        cleaned = strip_markdown_fence(self.clean_up(content))
        return io.BytesIO(cleaned.encode("utf-8"))

    def clean_up(self, content: str) -> str:
        """Ask the model for a cleaned-up version of ``content``."""
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": PROMPT_TEMPLATE.format(content=content)},
            ],
        }

        try:
            response = self.client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise CleanupError(f"ChatGPT API error: {e}") from e
        except ValueError as e:
            raise CleanupError(f"Unexpected ChatGPT response: {response.text[:200]}") from e

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise CleanupError(f"ChatGPT response has no message content: {data}") from e
