"""
Mathpix OCR stage.

Uploads the PDF to the Mathpix PDF API, polls the conversion status at a
fixed interval until it completes, fails or runs past the deadline, then
downloads the markdown result.
"""

import io
import time
from typing import BinaryIO, Optional

import httpx
from loguru import logger

from app.models.schemas import SourceDocument
from app.utils.config import ConfigurationError
from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.errors import ConversionError, ConversionTimeoutError
from domains.document_pipeline.stages.base import Stage

MATHPIX_PDF_API_URL = "https://api.mathpix.com/v3/pdf"


class MathpixStage(Stage):
    """Converts a PDF into markdown with Mathpix."""

    name = "Mathpix OCR"

    def __init__(
        self,
        app_id: Optional[str],
        app_key: Optional[str],
        poll_interval: float = 5.0,
        timeout: float = 600.0,
        client: Optional[httpx.Client] = None,
        api_url: str = MATHPIX_PDF_API_URL,
    ):
        """
        Args:
            app_id: Mathpix application id
            app_key: Mathpix application key
            poll_interval: Seconds between status polls
            timeout: Seconds to wait for a conversion before giving up
            client: HTTP client (one is created on initialize if omitted)
            api_url: PDF API endpoint
        """
        super().__init__()
        self.app_id = app_id
        self.app_key = app_key
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.client = client
        self.api_url = api_url.rstrip("/")

    def initialize(self, scope: CancelScope) -> None:
        super().initialize(scope)
        if not self.app_id or not self.app_key:
            raise ConfigurationError("MATHPIX_APP_ID and MATHPIX_APP_KEY must be set")
        if self.client is None:
            self.client = httpx.Client(timeout=60.0)

    def process(self, document: SourceDocument, stream: BinaryIO) -> BinaryIO:
        pdf_id = self.upload(document.name, stream)
        logger.info(f"Uploaded {document.name} to Mathpix as {pdf_id}")

        self.wait_for_completion(pdf_id)
        markdown = self.fetch_markdown(pdf_id)
        return io.BytesIO(markdown.encode("utf-8"))

    def upload(self, name: str, stream: BinaryIO) -> str:
        """Upload a PDF and return the Mathpix pdf id."""
        response = self._request(
            "POST", self.api_url, files={"file": (name, stream, "application/pdf")}
        )
        data = self._json(response)

        if data.get("error"):
            info = data.get("error_info") or {}
            raise ConversionError(
                f"Mathpix error: {data['error']}, "
                f"ErrorInfo.ID={info.get('id')}, ErrorInfo.Message={info.get('message')}"
            )

        pdf_id = data.get("pdf_id")
        if not pdf_id:
            raise ConversionError(f"Mathpix upload response has no pdf_id: {data}")
        return pdf_id

    def poll_status(self, pdf_id: str) -> str:
        """Return the current conversion status."""
        data = self._json(self._request("GET", f"{self.api_url}/{pdf_id}"))
        status = data.get("status", "")
        logger.debug(f"Mathpix {pdf_id} status: {status}")
        return status

    def wait_for_completion(self, pdf_id: str) -> None:
        """
        Poll until the conversion completes.

        Raises:
            ConversionError: If Mathpix reports an error
            ConversionTimeoutError: If the deadline passes first
            Cancelled: If the pipeline is cancelled while waiting
        """
        deadline = time.monotonic() + self.timeout

        while True:
            status = self.poll_status(pdf_id)
            if status == "completed":
                return
            if status == "error":
                raise ConversionError(f"Mathpix PDF processing failed for {pdf_id}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConversionTimeoutError(pdf_id, self.timeout)

            self.sleep(min(self.poll_interval, remaining))

    def fetch_markdown(self, pdf_id: str) -> str:
        """Download the converted markdown."""
        return self._request("GET", f"{self.api_url}/{pdf_id}.md").text

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ConversionError(f"Mathpix request {method} {url} failed: {e}") from e
        return response

    def _headers(self) -> dict:
        return {"app_id": self.app_id, "app_key": self.app_key}

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise ConversionError(f"Unexpected Mathpix response: {response.text[:200]}") from e
