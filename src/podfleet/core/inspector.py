"""Current-state inspection."""

import asyncio
import logging
from typing import Iterable

from podfleet.errors import InspectionFailed, ResourceNotFoundError, RuntimeOperationError
from podfleet.models.host import HostProfile
from podfleet.models.live import InspectionError, InspectionResult
from podfleet.runtime.base import BaseRuntime


logger = logging.getLogger(__name__)


class Inspector:
    """Reads live containers, networks and directories from a runtime. Never mutates."""

    def __init__(self, runtime: BaseRuntime, concurrency: int = 8):
        """Initialize inspector."""
        self.runtime = runtime
        self._semaphore = asyncio.Semaphore(concurrency)

    async def inspect(self, host: HostProfile, images: Iterable[str] = ()) -> InspectionResult:
        """
        Inspect the live state of ``host``.

        Per-resource failures are collected in ``InspectionResult.errors``.
        Presence of each image in ``images`` is recorded when requested.
        Failing to list containers or networks at all raises InspectionFailed,
        since no safe plan can be computed without those lists.
        """
        result = InspectionResult(host=host.name)

        try:
            names = await self.runtime.list_containers()
            networks = await self.runtime.list_networks()
        except RuntimeOperationError as e:
            raise InspectionFailed(f"Cannot list live state of host {host.name}: {e}", cause=e) from e

        result.networks = {network.name: network for network in networks}

        await asyncio.gather(
            *(self._inspect_container(result, name) for name in names),
            *(self._inspect_directory(result, directory.path) for directory in host.directories),
            *(self._inspect_image(result, image) for image in dict.fromkeys(images)),
        )

        if result.errors:
            logger.warning(
                f"[{host.name}] Inspection finished with {len(result.errors)} error(s): "
                + ", ".join(f"{e.resource_type} {e.name}" for e in result.errors)
            )
        else:
            logger.debug(
                f"[{host.name}] Inspected {len(result.containers)} containers, "
                f"{len(result.networks)} networks, {len(result.directories)} directories"
            )
        return result

    async def _inspect_container(self, result: InspectionResult, name: str) -> None:
        async with self._semaphore:
            try:
                result.containers[name] = await self.runtime.inspect_container(name)
            except ResourceNotFoundError:
                # Removed between list and inspect
                logger.debug(f"Container {name} disappeared during inspection")
            except RuntimeOperationError as e:
                result.errors.append(InspectionError("container", name, str(e)))

    async def _inspect_directory(self, result: InspectionResult, path: str) -> None:
        async with self._semaphore:
            try:
                result.directories[path] = await self.runtime.stat_directory(path)
            except RuntimeOperationError as e:
                result.errors.append(InspectionError("directory", path, str(e)))

    async def _inspect_image(self, result: InspectionResult, image: str) -> None:
        async with self._semaphore:
            try:
                result.images[image] = await self.runtime.image_exists(image)
            except RuntimeOperationError as e:
                result.errors.append(InspectionError("image", image, str(e)))
