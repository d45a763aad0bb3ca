"""Object store interface."""
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional


class ObjectNotFoundError(KeyError):
    """Requested object key does not exist."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)

    def __str__(self):
        return f"Object not found: {self.key}"


class ObjectStore(ABC):
    """Byte artifacts addressed by slash-separated keys."""

    @abstractmethod
    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        ...

    @abstractmethod
    async def get_bytes(self, key: str) -> bytes:
        ...

    @abstractmethod
    async def upload_file(self, key: str, path: Path, content_type: str = "application/octet-stream") -> None:
        ...

    @abstractmethod
    async def download_file(self, key: str, path: Path) -> Path:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        """Keys under ``prefix`` in lexical order."""
        ...

    @abstractmethod
    async def size(self, key: str) -> int:
        ...

    async def put_text(self, key: str, text: str, content_type: str = "text/plain") -> None:
        await self.put_bytes(key, text.encode("utf-8"), content_type)

    async def get_text(self, key: str) -> str:
        return (await self.get_bytes(key)).decode("utf-8")

    async def put_json(self, key: str, value: Any) -> None:
        await self.put_bytes(
            key,
            json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8"),
            "application/json",
        )

    async def get_json(self, key: str) -> Any:
        return json.loads(await self.get_bytes(key))
