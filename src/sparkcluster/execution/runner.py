"""
Local and remote command execution.

Every interaction with a host (container runtime, device tools, SSH) goes
through CommandRunner so it can be timed out, cancelled and mocked in one
place.
"""
import asyncio
import shlex
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config.loader import SSHConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)

LOCALHOST = "localhost"


@dataclass
class CommandResult:
    """Outcome of a finished command."""
    host: str
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    def describe_failure(self) -> str:
        """Short human-readable reason for a failed command."""
        if self.timed_out:
            return "timed out"
        reason = self.stderr.strip().splitlines()
        if reason:
            return reason[-1]
        return f"exit code {self.returncode}"


class CommandRunner:
    """
    Runs commands locally or on a remote host over SSH.

    Remote commands are always non-interactive: BatchMode, a short connect
    timeout and no host key prompts.
    """

    def __init__(self, ssh_config: Optional[SSHConfig] = None):
        self.ssh_config = ssh_config or SSHConfig()
        self.logger = get_logger(__name__)

    def ssh_argv(self, host: str, remote_argv: Sequence[str]) -> List[str]:
        """Build the ssh invocation that runs remote_argv on host."""
        cfg = self.ssh_config
        argv = [cfg.executable]
        if cfg.batch_mode:
            argv += ["-o", "BatchMode=yes"]
        argv += ["-o", f"ConnectTimeout={cfg.connect_timeout}"]
        if not cfg.strict_host_key_checking:
            argv += ["-o", "StrictHostKeyChecking=no"]
        argv += [host, shlex.join(remote_argv)]
        return argv

    async def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        host: str = LOCALHOST
    ) -> CommandResult:
        """
        Run a command to completion and capture its output.

        Args:
            argv: Command and arguments
            timeout: Optional timeout in seconds
            host: Host label used in results and logs

        Returns:
            CommandResult. A missing executable yields exit code 127 and a
            timeout kills the process and sets timed_out.
        """
        argv = list(argv)
        self.logger.debug(f"[{host}] $ {shlex.join(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandResult(
                host=host,
                argv=argv,
                returncode=127,
                stderr=f"{argv[0]}: command not found",
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            return CommandResult(host=host, argv=argv, returncode=-1, timed_out=True)
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        return CommandResult(
            host=host,
            argv=argv,
            returncode=process.returncode,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
        )

    async def run_remote(
        self,
        host: str,
        remote_argv: Sequence[str],
        timeout: Optional[float] = None
    ) -> CommandResult:
        """Run a command on host over SSH."""
        return await self.run(self.ssh_argv(host, remote_argv), timeout=timeout, host=host)

    async def run_attached(self, argv: Sequence[str]) -> int:
        """
        Run a command attached to this process's terminal.

        Output is not captured. Cancellation terminates the command before
        re-raising.

        Returns:
            The command's exit code
        """
        argv = list(argv)
        self.logger.debug(f"[{LOCALHOST}] $ {shlex.join(argv)} (attached)")

        try:
            process = await asyncio.create_subprocess_exec(*argv)
        except FileNotFoundError:
            self.logger.error(f"{argv[0]}: command not found")
            return 127

        try:
            return await process.wait()
        except asyncio.CancelledError:
            await self._kill(process, graceful=True)
            raise

    async def _kill(self, process: asyncio.subprocess.Process, graceful: bool = False):
        """Stop a subprocess, giving it a moment to exit when graceful."""
        if process.returncode is not None:
            return
        try:
            if graceful:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=5)
                    return
                except asyncio.TimeoutError:
                    self.logger.warning(f"Process {process.pid} didn't terminate, force killing...")
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass
