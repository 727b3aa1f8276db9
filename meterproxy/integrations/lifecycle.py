import asyncio

from meterproxy.errors import EnforcementSideEffectError
from meterproxy.observability.logger import get_logger

log = get_logger("integrations.lifecycle")


class ComputeLifecycle:
    """Runs the external management script to stop the tenant's compute.

    No retries here. The pause transition re-invokes ``stop`` on every
    over-threshold request.
    """

    def __init__(self, manage_script: str, tenant_id: str, timeout_seconds: float = 30.0):
        self.manage_script = manage_script
        self.tenant_id = tenant_id
        self.timeout_seconds = timeout_seconds

    async def stop(self):
        try:
            proc = await asyncio.create_subprocess_exec(
                self.manage_script,
                "stop",
                self.tenant_id,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EnforcementSideEffectError(f"Cannot run {self.manage_script}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise EnforcementSideEffectError(
                f"{self.manage_script} stop timed out after {self.timeout_seconds}s"
            ) from e

        if proc.returncode != 0:
            raise EnforcementSideEffectError(
                f"{self.manage_script} stop exited {proc.returncode}: "
                f"{stderr.decode('utf-8', errors='replace')[:200]}"
            )
        log.info("compute_stopped", tenant=self.tenant_id)
