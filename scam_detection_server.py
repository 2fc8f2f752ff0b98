import asyncio
from typing import Optional

from aiohttp import web
from loguru import logger

SCAM_PATTERNS = {
    "registration fee": "Job offers requiring payment for registration are almost always scams",
    "bank details": "Requests for bank details over chat are a common fraud signal",
    "urgent transfer": "Urgent money transfer requests are a red flag",
    "password": "Legitimate services never ask for your password",
    "upfront payment": "Requesting upfront payment is a red flag",
}

EXAMPLES = [
    {"text": "Pay the registration fee today to secure your job offer", "label": "scam"},
    {"text": "Your interview is scheduled for Monday at 10am", "label": "legitimate"},
]


class ScamDetectionServer:
    """Stand-in analysis backend that can pretend to be asleep.

    The first ``cold_requests`` analysis requests answer ``cold_status``
    (503 by default), as a sleeping free-tier host would. ``response_delay``
    slows every request down, root probes included.
    """

    def __init__(
        self,
        cold_requests: int = 0,
        cold_status: int = 503,
        response_delay: float = 0.0,
        feature_pairs: bool = False,
    ):
        self.cold_requests = cold_requests
        self.cold_status = cold_status
        self.response_delay = response_delay
        self.feature_pairs = feature_pairs
        self.analysis_requests = 0
        self.root_requests = 0
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_post("/detect", self.handle_detect)
        self.app.router.add_post("/upload", self.handle_upload)
        self.app.router.add_get("/examples", self.handle_examples)
        self.logger = logger

    async def _delay(self):
        if self.response_delay:
            await asyncio.sleep(self.response_delay)

    def _still_cold(self) -> bool:
        self.analysis_requests += 1
        return self.analysis_requests <= self.cold_requests

    def _cold_response(self) -> web.Response:
        self.logger.info(f"Returning {self.cold_status} while waking up")
        return web.json_response(
            {"message": "Service is waking up"}, status=self.cold_status
        )

    def _classify(self, text: str) -> dict:
        lowered = text.lower()
        signals = [hint for pattern, hint in SCAM_PATTERNS.items() if pattern in lowered]
        terms = [pattern for pattern in SCAM_PATTERNS if pattern in lowered]

        if self.feature_pairs:
            features = [[term, 0.8] for term in terms]
        else:
            features = [
                {"term": term, "indicator_type": "scam", "weight": 0.8} for term in terms
            ]

        is_scam = bool(signals)
        return {
            "classification": "scam" if is_scam else "legitimate",
            "confidence": 0.85 if is_scam else 0.65,
            "high_risk_signals": signals,
            "important_features": features,
            "message_length": len(text),
        }

    async def handle_root(self, request):
        # aiohttp answers HEAD through the GET route
        self.root_requests += 1
        await self._delay()
        return web.json_response({"status": "ok"})

    async def handle_detect(self, request):
        await self._delay()
        if self._still_cold():
            return self._cold_response()

        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({"message": "Body must be JSON"}, status=400)

        message = payload.get("message") if isinstance(payload, dict) else None
        if not message:
            return web.json_response({"message": "No message provided"}, status=400)

        self.logger.info(f"Classifying message of {len(message)} characters")
        return web.json_response(self._classify(message))

    async def handle_upload(self, request):
        await self._delay()
        if self._still_cold():
            return self._cold_response()

        post = await request.post()
        upload = post.get("file")
        if not isinstance(upload, web.FileField):
            return web.json_response({"message": "No file provided"}, status=400)

        text = upload.file.read().decode("utf-8", errors="replace")
        result = self._classify(text)
        result.update(file_processed=upload.filename, file_type=upload.content_type)
        return web.json_response(result)

    async def handle_examples(self, request):
        await self._delay()
        if self._still_cold():
            return self._cold_response()
        return web.json_response(EXAMPLES)

    async def start(self, port: int = 8080) -> int:
        """Start listening and return the bound port (pass 0 for any free port)"""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", port)
        await site.start()
        port = self.runner.addresses[0][1]
        self.logger.info(f"Server started on port {port}")
        return port

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
