"""Hand the fetched secrets to the workload as a JSON file."""

import json
from pathlib import Path

from ..core.files import write_private_file
from ..core.logging import get_logger
from ..vault.models import SecretRecord

logger = get_logger(__name__)


class SecretWriter:
    """Writes ``{key: data}`` to ``path`` (mode 0600), replacing it atomically."""

    def __init__(self, path: Path | None) -> None:
        self.path = path

    async def write(self, secrets: dict[str, SecretRecord]) -> Path | None:
        if self.path is None:
            logger.debug("No output file configured; secrets not written")
            return None

        payload = json.dumps(
            {key: record.data for key, record in secrets.items()},
            indent=2,
            sort_keys=True,
        )
        await write_private_file(self.path, payload)

        logger.info("Wrote secrets", path=str(self.path), keys=sorted(secrets))
        return self.path
