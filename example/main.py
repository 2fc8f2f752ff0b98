import asyncio

from scam_detection_server import ScamDetectionServer
from scam_detector_client.errors import RetryError
from scam_detector_client.keep_alive import KeepAliveScheduler
from scam_detector_client.models import RetryPolicy
from scam_detector_client.progress import ProgressChannel
from scam_detector_client.scam_detector_client import ScamDetectorClient


def show_progress(event):
    print(f"[{event.percent:3d}%] {event.stage.value}: {event.message}")


async def main():
    PORT = 8000
    server = ScamDetectionServer(cold_requests=2, response_delay=0.5)
    await server.start(port=PORT)
    base_url = f"http://127.0.0.1:{PORT}"
    print(f"Server started on {base_url}")

    keep_alive = KeepAliveScheduler(base_url, interval=30.0)
    keep_alive.start()

    progress = ProgressChannel()
    progress.subscribe(show_progress)

    policy = RetryPolicy(
        max_attempts=5, initial_delay=1.0, backoff_multiplier=1.5, max_total_wait=30.0
    )
    client = ScamDetectorClient(base_url, progress=progress, text_policy=policy)

    status = await client.check_status()
    print(f"Ready: {status.is_ready}, estimated wait: {status.cold_start_estimate_seconds}s")

    try:
        result = await client.analyze_text(
            "Congratulations! Pay the registration fee to confirm your job offer."
        )
        print(f"Prediction: {result.prediction} ({result.confidence:.0%})")
        for signal in result.high_risk_signals:
            print(f"  - {signal}")
    except RetryError as e:
        print(f"Analysis failed: {e}")
    finally:
        progress.unsubscribe()
        await keep_alive.shutdown()
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
