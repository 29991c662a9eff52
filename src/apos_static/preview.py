"""Frontend build and preview server lifecycle.

The preview server runs in its own process group so the whole tree (npm plus
the server it launches) can be terminated together.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path
from types import TracebackType

from apos_static.config import PreviewConfig
from apos_static.exceptions import BuildError, ServerNotReadyError

logger = logging.getLogger(__name__)


class PreviewServer:
    """Builds the frontend and manages the preview server process.

    Empty build/serve commands mean the step is handled outside this process.

    Example:
        >>> server = PreviewServer(config.preview)
        >>> await server.build()
        >>> async with server:
        ...     await wait_for_server(client, server.url)
    """

    def __init__(self, config: PreviewConfig) -> None:
        self.config = config
        self.process: asyncio.subprocess.Process | None = None

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def cwd(self) -> Path | None:
        return Path(self.config.working_dir) if self.config.working_dir else None

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def build(self) -> None:
        """Run the build command.

        Raises:
            BuildError: If the command cannot be started or exits non-zero
        """
        command = self.config.build_command
        if not command:
            logger.debug("No build command configured, skipping build")
            return

        logger.info(f"Building frontend: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(*command, cwd=self.cwd)
        except OSError as e:
            raise BuildError(f"Could not run build command {command[0]!r}: {e}") from e

        returncode = await process.wait()
        if returncode != 0:
            raise BuildError(f"Build command exited with status {returncode}")

    async def start(self) -> None:
        """Spawn the preview server.

        Raises:
            ServerNotReadyError: If the command cannot be started
        """
        command = self.config.resolved_serve_command()
        if not command:
            logger.debug(f"Using externally managed preview server at {self.url}")
            return

        logger.info(f"Starting preview server on {self.url}")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ServerNotReadyError(
                f"Could not run preview command {command[0]!r}: {e}"
            ) from e

    def _signal(self, sig: signal.Signals) -> None:
        assert self.process is not None
        try:
            if hasattr(os, "killpg"):
                os.killpg(self.process.pid, sig)
            else:
                self.process.send_signal(sig)
        except ProcessLookupError:
            # Already gone
            pass

    async def stop(self) -> None:
        """Terminate the preview server: SIGTERM to its group, SIGKILL after the grace period."""
        if not self.is_running:
            self.process = None
            return

        assert self.process is not None
        logger.debug(f"Stopping preview server (pid {self.process.pid})")
        self._signal(signal.SIGTERM)
        try:
            async with asyncio.timeout(self.config.shutdown_grace_seconds):
                await self.process.wait()
        except TimeoutError:
            logger.warning("Preview server ignored SIGTERM, killing it")
            self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
            await self.process.wait()

        self.process = None

    async def __aenter__(self) -> "PreviewServer":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
