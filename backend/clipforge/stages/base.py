"""Execution context passed to stage handlers."""
import logging
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Optional

from clipforge.models.pipeline import Stage
from clipforge.services.container import StageServices
from clipforge.storage import ArtifactKeys, ObjectNotFoundError
from clipforge.errors import MissingArtifactError
from clipforge.workers.chaining import StageChainer

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int, Optional[str]], Awaitable[None]]


class StageContext:
    """Everything a handler needs for one attempt of one job."""

    def __init__(
        self,
        job_id: str,
        root_id: str,
        stage: Stage,
        payload: dict,
        services: StageServices,
        attempt: int = 1,
        max_attempts: int = 1,
        chainer: Optional[StageChainer] = None,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.job_id = job_id
        self.root_id = root_id
        self.stage = stage
        self.payload = payload or {}
        self.services = services
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.chainer = chainer
        self._reporter = reporter
        self.keys = ArtifactKeys(root_id)

    @property
    def store(self):
        return self.services.store

    @property
    def settings(self):
        return self.services.settings

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    async def progress(self, value: float, message: Optional[str] = None):
        if self._reporter:
            await self._reporter(int(value), message)

    async def chain(self, payload: Optional[dict] = None) -> Optional[str]:
        """Hand the root to the next stage."""
        if not self.chainer:
            return None
        return await self.chainer.on_stage_complete(self.root_id, self.stage, payload)

    async def load_json(self, key: str, missing_code: str):
        try:
            return await self.store.get_json(key)
        except ObjectNotFoundError:
            raise MissingArtifactError(missing_code, key)

    async def download(self, key: str, path: Path, missing_code: str) -> Path:
        try:
            return await self.store.download_file(key, path)
        except ObjectNotFoundError:
            raise MissingArtifactError(missing_code, key)

    @contextmanager
    def workspace(self):
        """Private temp directory, removed on every exit path."""
        path = Path(self.services.work_dir) / self.root_id / f"{self.stage.value}-{uuid.uuid4().hex[:8]}"
        path.mkdir(parents=True, exist_ok=True)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"Removed workspace {path}")


StageHandler = Callable[[StageContext], Awaitable[dict]]
