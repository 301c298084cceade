"""AI agent adapter for running one task through Claude Code.

Invokes the ``claude`` CLI in the project working tree with JSON output and
maps the result to an AgentResult. The runner only needs a boolean
outcome and an optional error per task.
"""

import asyncio
import json
import logging
import shutil
import subprocess
from pathlib import Path

from forge.errors import AgentError
from forge.models import AgentResult

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TOOLS = ["Read", "Write", "Edit", "Glob", "Grep"]


class ClaudeAgent:
    """Runs prompts through the local ``claude`` command line."""

    def __init__(self, executable: str = "claude") -> None:
        self.executable = executable

    def is_available(self) -> bool:
        """Check that the CLI is installed and answers ``--version``."""
        if shutil.which(self.executable) is None:
            return False
        try:
            result = subprocess.run(
                [self.executable, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    async def execute(
        self,
        prompt: str,
        working_dir: str | Path,
        timeout: int = 600,
        max_turns: int = 50,
        allowed_tools: list[str] | None = None,
        model: str | None = None,
    ) -> AgentResult:
        """Run one prompt to completion.

        Args:
            prompt: The task prompt
            working_dir: Project working tree the agent operates in
            timeout: Maximum execution time in seconds
            max_turns: Maximum conversation turns
            allowed_tools: Tools the agent may use
            model: Model override, None for the CLI default

        Returns:
            AgentResult; a non-zero exit or an ``is_error`` response is a
            failed result, not an exception

        Raises:
            AgentError: If the CLI cannot be started or its output is not JSON
        """
        tools = allowed_tools or DEFAULT_ALLOWED_TOOLS
        cmd = [
            self.executable,
            "-p",
            prompt,
            "--output-format",
            "json",
            "--permission-mode",
            "acceptEdits",
            "--max-turns",
            str(max_turns),
            "--allowedTools",
            ",".join(tools),
        ]
        if model:
            cmd.extend(["--model", model])

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(working_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AgentError(f"Failed to start {self.executable}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return AgentResult(
                success=False, error=f"Agent timed out after {timeout}s"
            )

        if process.returncode != 0 and not stdout.strip():
            return AgentResult(
                success=False,
                error=stderr.decode(errors="replace").strip()
                or f"{self.executable} exited with {process.returncode}",
            )

        return parse_agent_output(stdout.decode(errors="replace"))


def parse_agent_output(raw: str) -> AgentResult:
    """Map the CLI's JSON output to an AgentResult.

    Raises:
        AgentError: If the output is not valid JSON
    """
    try:
        output = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AgentError(f"Failed to parse agent JSON output: {e}") from e

    is_error = bool(output.get("is_error", False))
    result_text = output.get("result", "") or ""
    return AgentResult(
        success=not is_error,
        output=result_text,
        error=(result_text or "Agent reported an error") if is_error else None,
        cost_usd=output.get("total_cost_usd", 0.0),
        duration_ms=output.get("duration_ms", 0),
        session_id=output.get("session_id", ""),
    )
