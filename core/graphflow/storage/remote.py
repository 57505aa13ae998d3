"""HTTP key-value checkpoint storage.

Stores each checkpoint as an opaque JSON blob in a remote key-value service:

    PUT    {base_url}/{run_id}   body = checkpoint JSON
    GET    {base_url}/{run_id}   200 -> checkpoint JSON, 404 -> missing
    DELETE {base_url}/{run_id}   404 is treated as already deleted
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from graphflow.errors import CheckpointStorageError
from graphflow.schemas.checkpoint import Checkpoint

logger = logging.getLogger(__name__)


@dataclass
class HttpStorageConfig:
    """Connection settings for a remote checkpoint store."""

    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    key_prefix: str = ""


class HttpCheckpointStorage:
    """
    Checkpoint storage backed by a remote key-value service.

    Example:
        storage = HttpCheckpointStorage(
            HttpStorageConfig(base_url="https://kv.internal/checkpoints")
        )
        engine = graph.compile(storage=storage)
    """

    def __init__(
        self,
        config: HttpStorageConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the storage client.

        Args:
            config: Connection settings
            transport: Optional transport override (e.g. httpx.MockTransport in tests)
        """
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=config.headers,
            timeout=config.timeout,
            transport=transport,
        )

    def _key(self, run_id: str) -> str:
        if not run_id:
            raise ValueError("run_id cannot be empty")
        return "/" + quote(f"{self.config.key_prefix}{run_id}", safe="")

    async def save(self, run_id: str, checkpoint: Checkpoint) -> None:
        try:
            response = await self._client.put(
                self._key(run_id),
                content=checkpoint.model_dump_json(),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CheckpointStorageError(f"Failed to save checkpoint: {e}", run_id) from e
        logger.debug(f"Saved remote checkpoint for {run_id}")

    async def load(self, run_id: str) -> Checkpoint | None:
        try:
            response = await self._client.get(self._key(run_id))
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CheckpointStorageError(f"Failed to load checkpoint: {e}", run_id) from e

        if not response.content:
            return None
        try:
            return Checkpoint.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed remote checkpoint for {run_id}: {e}")
            return None

    async def delete(self, run_id: str) -> None:
        try:
            response = await self._client.delete(self._key(run_id))
            if response.status_code != 404:
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise CheckpointStorageError(f"Failed to delete checkpoint: {e}", run_id) from e
        logger.debug(f"Deleted remote checkpoint for {run_id}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpCheckpointStorage":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
