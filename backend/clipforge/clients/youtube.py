"""YouTube Data API client: token refresh, resumable upload, thumbnail, status."""
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import httpx

from clipforge.clients.http import ServiceClient, extract_error_detail, raise_for_response
from clipforge.errors import AuthorizationError, ErrorCode, RetryableError, UnrecoverableError

logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
THUMBNAIL_URL = "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"
VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"

# Resumable chunks must be multiples of 256 KiB
UPLOAD_CHUNK_BYTES = 32 * 256 * 1024

ByteProgress = Callable[[int, int], Awaitable[None]]


@dataclass
class TokenGrant:
    """Access token obtained from a refresh token."""
    access_token: str
    expires_in: int


@dataclass
class VideoMetadata:
    """Snippet and status fields for an upload."""
    title: str
    description: str
    tags: List[str]
    category_id: str = "22"
    privacy_status: str = "unlisted"
    made_for_kids: bool = False

    def to_body(self) -> dict:
        return {
            "snippet": {
                "title": self.title[:100],  # YouTube max title length
                "description": self.description[:5000],  # YouTube max description
                "tags": self.tags[:50],
                "categoryId": self.category_id,
            },
            "status": {
                "privacyStatus": self.privacy_status,
                "selfDeclaredMadeForKids": self.made_for_kids,
            },
        }


@dataclass
class ProcessingStatus:
    """Upload/processing state reported by the platform."""
    upload_status: str
    failure_reason: Optional[str] = None
    processing_status: Optional[str] = None

    @property
    def is_processed(self) -> bool:
        return self.upload_status == "processed"

    @property
    def is_failed(self) -> bool:
        return self.upload_status in ("failed", "rejected", "deleted")


class YouTubeClient(ServiceClient):
    """
    Client for uploading videos to YouTube Shorts.

    Requires OAuth client credentials; callers supply a refresh token
    per channel.
    """

    service_name = "youtube"

    def __init__(self, client_id: str, client_secret: str, timeout: float = 120.0):
        super().__init__("https://www.googleapis.com", timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret

    @classmethod
    def from_settings(cls, settings) -> "YouTubeClient":
        return cls(
            client_id=settings.youtube_client_id,
            client_secret=settings.youtube_client_secret,
            timeout=settings.http_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a fresh access token."""
        if not self.is_configured:
            raise AuthorizationError(
                "YouTube API credentials not configured", code=ErrorCode.OAUTH_NOT_CONFIGURED
            )
        if not refresh_token:
            raise AuthorizationError("No refresh token available", code=ErrorCode.NOT_CONNECTED)

        try:
            response = await self._send(
                "POST",
                OAUTH_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.TimeoutException as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_UNAVAILABLE, "Google token refresh timed out"
            ) from exc
        except httpx.RequestError as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_UNAVAILABLE, "Unable to reach Google OAuth service for token refresh"
            ) from exc

        if response.status_code in (400, 401, 403):
            detail = extract_error_detail(response)
            logger.info(f"YouTube token refresh rejected: status={response.status_code} detail={detail}")
            raise AuthorizationError(f"Failed to refresh token - re-authorization required ({detail})")
        raise_for_response(response, "google-oauth")

        try:
            token_data = response.json()
        except ValueError as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_BAD_RESPONSE, "Token refresh failed: invalid provider response"
            ) from exc

        access_token = token_data.get("access_token")
        if not access_token:
            raise RetryableError(ErrorCode.UPSTREAM_BAD_RESPONSE, "Token refresh returned no access token")
        return TokenGrant(access_token=access_token, expires_in=int(token_data.get("expires_in", 3600)))

    async def start_resumable_upload(
        self,
        access_token: str,
        metadata: VideoMetadata,
        file_size: int,
        content_type: str = "video/mp4",
    ) -> str:
        """Create an upload session and return its URL."""
        response = await self.request(
            "POST",
            f"{UPLOAD_URL}?uploadType=resumable&part=snippet,status",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "X-Upload-Content-Length": str(file_size),
                "X-Upload-Content-Type": content_type,
            },
            json=metadata.to_body(),
        )
        upload_url = response.headers.get("Location")
        if not upload_url:
            raise RetryableError(ErrorCode.UPLOAD_FAILED, "No upload URL received")
        return upload_url

    async def upload_file(
        self,
        upload_url: str,
        video_path: Path,
        progress_callback: Optional[ByteProgress] = None,
        chunk_size: int = UPLOAD_CHUNK_BYTES,
        content_type: str = "video/mp4",
    ) -> dict:
        """
        Send the file to an upload session in chunks.

        Returns:
            The created video resource
        """
        video_path = Path(video_path)
        total = video_path.stat().st_size
        offset = 0

        with open(video_path, "rb") as video_file:
            while True:
                video_file.seek(offset)
                chunk = video_file.read(chunk_size)
                end = offset + len(chunk) - 1
                try:
                    response = await self._send(
                        "PUT",
                        upload_url,
                        headers={
                            "Content-Type": content_type,
                            "Content-Length": str(len(chunk)),
                            "Content-Range": f"bytes {offset}-{end}/{total}",
                        },
                        content=chunk,
                    )
                except httpx.TimeoutException as exc:
                    raise RetryableError(ErrorCode.UPLOAD_FAILED, "Upload chunk timed out") from exc
                except httpx.RequestError as exc:
                    raise RetryableError(ErrorCode.UPLOAD_FAILED, f"Upload chunk failed: {exc}") from exc

                if response.status_code == 308:
                    # Resume Incomplete: Range tells how much the server has
                    offset = _next_offset(response.headers.get("Range"), default=end + 1)
                    if progress_callback:
                        await progress_callback(offset, total)
                    continue

                raise_for_response(response, self.service_name)
                if progress_callback:
                    await progress_callback(total, total)
                try:
                    return response.json()
                except ValueError as exc:
                    raise RetryableError(
                        ErrorCode.UPLOAD_FAILED, "Failed to upload video: invalid provider response"
                    ) from exc

    async def set_thumbnail(self, access_token: str, video_id: str, image_path: Path) -> None:
        await self.request(
            "POST",
            f"{THUMBNAIL_URL}?videoId={video_id}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "image/jpeg",
            },
            content=Path(image_path).read_bytes(),
        )

    async def get_processing_status(self, access_token: str, video_id: str) -> ProcessingStatus:
        payload = await self.request_json(
            "GET",
            VIDEOS_URL,
            params={"part": "status,processingDetails", "id": video_id},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        items = payload.get("items") or []
        if not items:
            raise UnrecoverableError(ErrorCode.PLATFORM_REJECTED, f"Video {video_id} not found on platform")
        status = items[0].get("status") or {}
        details = items[0].get("processingDetails") or {}
        return ProcessingStatus(
            upload_status=status.get("uploadStatus", "uploaded"),
            failure_reason=status.get("failureReason") or status.get("rejectionReason"),
            processing_status=details.get("processingStatus"),
        )


def _next_offset(range_header: Optional[str], default: int) -> int:
    """Parse ``bytes=0-12345`` into the next byte to send."""
    if not range_header:
        return default
    match = re.search(r"(\d+)-(\d+)", range_header)
    if not match:
        return default
    return int(match.group(2)) + 1
