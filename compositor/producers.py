"""Reference artifact producer that writes payload files to disk."""

import asyncio
import logging
from pathlib import Path

from .models import ComponentDescriptor, ProduceOutcome, ResolutionContext

logger = logging.getLogger(__name__)


class FileArtifactProducer:
    """Writes a component's payload files verbatim under a root directory.

    The payload may carry ``files`` (relative path -> text content) and
    ``dependencies`` (package name -> version). Content is not templated.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    async def produce(
        self,
        descriptor: ComponentDescriptor,
        context: ResolutionContext,
        dry_run: bool,
    ) -> ProduceOutcome:
        files = descriptor.payload.get("files", {}) or {}
        dependencies = descriptor.payload.get("dependencies", {}) or {}

        targets: list[tuple[Path, str]] = []
        for relative, content in files.items():
            target = self._target(relative)
            if target is None:
                return ProduceOutcome(
                    success=False,
                    error=f"refusing to write outside the output directory: {relative}",
                )
            targets.append((target, str(content)))

        if not dry_run:
            await asyncio.to_thread(self._write, targets)
            logger.debug("Wrote %d file(s) for %s", len(targets), descriptor.key)

        return ProduceOutcome(
            success=True,
            files_affected=[str(target.relative_to(self.root.resolve())) for target, _ in targets],
            dependencies_added=[f"{name}@{version}" for name, version in dependencies.items()],
        )

    def _target(self, relative: str) -> Path | None:
        root = self.root.resolve()
        target = (root / relative).resolve()
        if target != root and root not in target.parents:
            return None
        return target

    @staticmethod
    def _write(targets: list[tuple[Path, str]]) -> None:
        for target, content in targets:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
