"""
Error taxonomy for the analysis pipeline.

Only detection failures for image/video surface as exceptions. Every other
upstream problem (extraction, OCR, reasoning, credibility) is absorbed by
the adapter that hit it and shows up as an absent or sentinel field in the
result object.
"""


class MediaAnalysisError(Exception):
    """Base class for errors the analysis pipeline lets escape."""


class DetectionUnavailableError(MediaAnalysisError):
    """
    No usable detection result exists for an image/video request.

    The message is stable and never includes upstream response bodies.
    Rate-limit vs. other failures are told apart in the detection client's
    logs only; callers treat every instance as a retryable failure.
    """

    message = "Detection service unreachable — please retry shortly."

    def __init__(self, media_category: str) -> None:
        super().__init__(self.message)
        self.media_category = media_category
