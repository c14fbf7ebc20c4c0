"""E2B-backed sandbox executor.

Every call reconnects to the sandbox by id (``AsyncSandbox.connect``), so the
executor itself is stateless and safe to share across requests, workers and
processes.
"""

from __future__ import annotations

from e2b import AsyncSandbox, CommandExitException, NotFoundException, SandboxException, TimeoutException
from loguru import logger

from coherex.agent_runtime.errors import ExecutionError, ProvisioningError
from coherex.agent_runtime.sandbox.base import CommandResult, SandboxRef


class E2BSandboxExecutor:
    """``SandboxExecutor`` implementation on top of the e2b SDK.

    Args:
        api_key: E2B API key.  When ``None`` every ``create_sandbox`` raises
            ``ProvisioningError`` instead of reaching the network.
        template: Optional sandbox template id or alias.
        command_timeout: Default per-command timeout in seconds.
    """

    def __init__(self, api_key: str | None, *, template: str | None = None, command_timeout: int = 120) -> None:
        self._api_key = api_key
        self._template = template
        self._command_timeout = command_timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    # -- Lifecycle -------------------------------------------------------------

    async def create_sandbox(
        self,
        id: str,
        *,
        timeout_seconds: int,
        envs: dict[str, str] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SandboxRef:
        if not self._api_key:
            msg = "Sandbox service is not configured (COHEREX_E2B_API_KEY is not set)"
            raise ProvisioningError(msg)

        meta = {"coherex_id": id, **(metadata or {})}
        try:
            sandbox = await AsyncSandbox.create(
                template=self._template,
                timeout=timeout_seconds,
                metadata=meta,
                envs=envs,
                api_key=self._api_key,
            )
        except (SandboxException, TimeoutException) as exc:
            msg = f"Failed to provision sandbox for {id}: {exc}"
            raise ProvisioningError(msg) from exc

        logger.info("Provisioned sandbox {} for {} (timeout={}s)", sandbox.sandbox_id, id, timeout_seconds)
        return SandboxRef(sandbox_id=sandbox.sandbox_id)

    async def destroy_sandbox(self, ref: SandboxRef) -> None:
        if not self._api_key:
            return
        try:
            killed = await AsyncSandbox.kill(sandbox_id=ref.sandbox_id, api_key=self._api_key)
        except NotFoundException:
            killed = False
        logger.info("Destroyed sandbox {} (was_running={})", ref.sandbox_id, killed)

    # -- Operations ------------------------------------------------------------

    async def _connect(self, ref: SandboxRef) -> AsyncSandbox:
        try:
            return await AsyncSandbox.connect(ref.sandbox_id, api_key=self._api_key)
        except (SandboxException, TimeoutException) as exc:
            msg = f"Sandbox {ref.sandbox_id} is unreachable: {exc}"
            raise ExecutionError(msg) from exc

    async def run_command(
        self,
        ref: SandboxRef,
        command: str,
        *,
        timeout_seconds: int | None = None,
    ) -> CommandResult:
        sandbox = await self._connect(ref)
        timeout = timeout_seconds or self._command_timeout
        try:
            result = await sandbox.commands.run(command, timeout=timeout)
        except CommandExitException as exc:
            return CommandResult(stdout=exc.stdout, stderr=exc.stderr, exit_code=exc.exit_code, error=exc.error)
        except TimeoutException as exc:
            msg = f"Command timed out after {timeout}s in sandbox {ref.sandbox_id}"
            raise ExecutionError(msg) from exc
        except SandboxException as exc:
            msg = f"Command failed in sandbox {ref.sandbox_id}: {exc}"
            raise ExecutionError(msg) from exc
        return CommandResult(
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            error=result.error,
        )

    async def upload_file(self, ref: SandboxRef, path: str, content: str) -> None:
        sandbox = await self._connect(ref)
        try:
            await sandbox.files.write(path, content)
        except SandboxException as exc:
            msg = f"Upload of {path} to sandbox {ref.sandbox_id} failed: {exc}"
            raise ExecutionError(msg) from exc

    async def download_file(self, ref: SandboxRef, path: str) -> str | None:
        sandbox = await self._connect(ref)
        try:
            return await sandbox.files.read(path)
        except NotFoundException:
            return None
        except SandboxException as exc:
            msg = f"Download of {path} from sandbox {ref.sandbox_id} failed: {exc}"
            raise ExecutionError(msg) from exc
