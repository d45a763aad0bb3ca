# External service clients
from clipforge.clients.transcription import TranscriptionClient
from clipforge.clients.embeddings import EmbeddingsClient
from clipforge.clients.textgen import TextGenerationClient
from clipforge.clients.youtube import YouTubeClient

__all__ = [
    "TranscriptionClient",
    "EmbeddingsClient",
    "TextGenerationClient",
    "YouTubeClient",
]
