"""Artifact key layout under ``projects/<rootId>/``."""


def artifact_key(root_id: str, *parts: str) -> str:
    return "/".join(["projects", root_id, *parts])


class ArtifactKeys:
    """Keys for every artifact one pipeline root produces."""

    def __init__(self, root_id: str):
        self.root_id = root_id

    @property
    def prefix(self) -> str:
        return artifact_key(self.root_id)

    # ingest
    @property
    def source(self) -> str:
        return artifact_key(self.root_id, "source.mp4")

    @property
    def audio(self) -> str:
        return artifact_key(self.root_id, "media", "audio.wav")

    @property
    def media_info(self) -> str:
        return artifact_key(self.root_id, "media", "info.json")

    # transcribe
    @property
    def transcript(self) -> str:
        return artifact_key(self.root_id, "transcribe", "transcript.json")

    @property
    def srt(self) -> str:
        return artifact_key(self.root_id, "transcribe", "segments.srt")

    @property
    def vtt(self) -> str:
        return artifact_key(self.root_id, "transcribe", "segments.vtt")

    # scenes / rank
    @property
    def scenes(self) -> str:
        return artifact_key(self.root_id, "scenes", "scenes.json")

    @property
    def rank(self) -> str:
        return artifact_key(self.root_id, "rank", "rank.json")

    # render
    @property
    def clips_prefix(self) -> str:
        return artifact_key(self.root_id, "clips") + "/"

    def clip_video(self, clip_id: str) -> str:
        return artifact_key(self.root_id, "clips", f"{clip_id}.mp4")

    def clip_thumbnail(self, clip_id: str) -> str:
        return artifact_key(self.root_id, "clips", f"{clip_id}.jpg")

    # texts
    def title(self, clip_id: str) -> str:
        return artifact_key(self.root_id, "texts", clip_id, "title.txt")

    def description(self, clip_id: str) -> str:
        return artifact_key(self.root_id, "texts", clip_id, "description.md")

    def hashtags(self, clip_id: str) -> str:
        return artifact_key(self.root_id, "texts", clip_id, "hashtags.txt")

    @property
    def blog(self) -> str:
        return artifact_key(self.root_id, "texts", "blog.md")

    @property
    def seo(self) -> str:
        return artifact_key(self.root_id, "texts", "seo.json")

    def texts_marker(self, idempotency_key: str) -> str:
        safe = idempotency_key.replace("/", "_")
        return artifact_key(self.root_id, "texts", "_idem", f"{safe}.txt")
