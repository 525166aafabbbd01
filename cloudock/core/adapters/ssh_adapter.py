"""Remote shell over the system ssh client."""

import asyncio

import structlog

from cloudock.core.domain.models import ProviderError
from cloudock.core.ports.outbound.remote_shell import IRemoteShellPort

logger = structlog.get_logger(__name__)


class SshRemoteShellAdapter(IRemoteShellPort):
    """Runs commands with ``ssh``, trusting unknown host keys."""

    def __init__(self, ssh_binary: str = "ssh", options: tuple[str, ...] = ("-o", "StrictHostKeyChecking=no")):
        self._ssh = ssh_binary
        self._options = options

    def argv(self, host: str, username: str, command: str) -> list[str]:
        return [self._ssh, *self._options, f"{username}@{host}", command]

    async def run(self, host: str, username: str, command: str) -> str:
        process = await asyncio.create_subprocess_exec(
            *self.argv(host, username, command),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise ProviderError(
                f"ssh {username}@{host} exited with {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}",
                status_code=process.returncode,
            )
        logger.debug("ssh_command_done", host=host)
        return stdout.decode(errors="replace")
