import asyncio
import json
from pathlib import Path
from typing import Optional, Union

import aiohttp
from loguru import logger

from scam_detector_client import config
from scam_detector_client.models import (
    AnalysisResult,
    ProgressStage,
    RetryPolicy,
    ServiceStatus,
)
from scam_detector_client.progress import ProgressChannel
from scam_detector_client.retry import RetryOrchestrator
from scam_detector_client.status import StatusProbe

TEXT_POLICY = RetryPolicy(max_attempts=6, initial_delay=8.0)
DOCUMENT_POLICY = RetryPolicy(max_attempts=6, initial_delay=10.0)
EXAMPLES_POLICY = RetryPolicy(max_attempts=5, initial_delay=5.0)

Document = Union[str, Path, bytes]


class ScamDetectorClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        progress: Optional[ProgressChannel] = None,
        orchestrator: Optional[RetryOrchestrator] = None,
        text_policy: RetryPolicy = TEXT_POLICY,
        document_policy: RetryPolicy = DOCUMENT_POLICY,
        examples_policy: RetryPolicy = EXAMPLES_POLICY,
        probe: Optional[StatusProbe] = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.progress = progress or ProgressChannel()
        self.orchestrator = orchestrator or RetryOrchestrator()
        self.text_policy = text_policy
        self.document_policy = document_policy
        self.examples_policy = examples_policy
        self.probe = probe or StatusProbe(self.base_url)
        self.logger = logger

    async def check_status(self) -> ServiceStatus:
        return await self.probe.check_status(self.progress)

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        """Like raise_for_status, but keeps the server's own error message"""
        if response.status < 400:
            return

        message = response.reason
        try:
            body = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError):
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail") or message

        self.logger.error(f"HTTP error {response.status} at {response.url}: {message}")
        raise aiohttp.ClientResponseError(
            response.request_info,
            response.history,
            status=response.status,
            message=str(message or ""),
            headers=response.headers,
        )

    async def _post_for_analysis(
        self, session: aiohttp.ClientSession, path: str, **kwargs
    ) -> AnalysisResult:
        """Submits one analysis request and parses the result"""
        start_time = asyncio.get_running_loop().time()
        url = f"{self.base_url}{path}"

        async with session.post(url, **kwargs) as response:
            await self._raise_for_status(response)
            data = await response.json()

        elapsed_time = asyncio.get_running_loop().time() - start_time
        return AnalysisResult.from_response(data, elapsed_time)

    async def analyze_text(self, message: str) -> AnalysisResult:
        """Classify a message, waiting out a cold backend if needed"""
        timeout = aiohttp.ClientTimeout(total=config.TEXT_TIMEOUT)

        async with aiohttp.ClientSession(timeout=timeout) as session:

            async def submit() -> AnalysisResult:
                return await self._post_for_analysis(
                    session, "/detect", json={"message": message}
                )

            result = await self.orchestrator.execute(
                submit, self.text_policy, self.progress
            )

        self.logger.info(
            f"Text analysed as {result.prediction!r} in {result.elapsed_time:.2f}s"
        )
        return result

    async def analyze_document(
        self, document: Document, filename: Optional[str] = None
    ) -> AnalysisResult:
        """Upload a document for analysis.

        ``document`` is a path or the raw bytes; ``filename`` is required for
        bytes and defaults to the path's name otherwise.
        """
        if isinstance(document, (str, Path)):
            path = Path(document)
            content = await asyncio.get_running_loop().run_in_executor(
                None, path.read_bytes
            )
            filename = filename or path.name
        else:
            content = document
            if not filename:
                raise ValueError("filename is required when uploading raw bytes")

        timeout = aiohttp.ClientTimeout(total=config.DOCUMENT_TIMEOUT)

        async with aiohttp.ClientSession(timeout=timeout) as session:

            async def upload() -> AnalysisResult:
                # FormData cannot be replayed, so every attempt builds its own
                form = aiohttp.FormData()
                form.add_field("file", content, filename=filename)
                return await self._post_for_analysis(session, "/upload", data=form)

            result = await self.orchestrator.execute(
                upload,
                self.document_policy,
                self.progress,
                wait_stage=ProgressStage.uploading,
            )

        self.logger.info(f"Document {filename} analysed as {result.prediction!r}")
        return result

    async def get_scam_examples(self) -> list[dict]:
        url = f"{self.base_url}/examples"

        async with aiohttp.ClientSession() as session:

            async def fetch() -> list[dict]:
                async with session.get(url) as response:
                    await self._raise_for_status(response)
                    data = await response.json()
                if not isinstance(data, list):
                    raise ValueError(
                        f"Expected a list of examples, got {json.dumps(data)[:80]}"
                    )
                return data

            return await self.orchestrator.execute(
                fetch, self.examples_policy, self.progress
            )
