"""
ACE MCP Server - Model Context Protocol surface for the playbook engine.

Exposes prompt rendering, used-bullet extraction, the learning cycle and playbook
statistics to an agent orchestration layer. Built with FastMCP.
"""

import asyncio
import threading
from typing import Any

from fastmcp import FastMCP

from ace_playbook import __version__
from ace_playbook.core.manager import CycleResult, PlaybookManager
from ace_playbook.core.render import extract_used_bullets as extract_bullet_ids
from ace_playbook.core.schema import RunContext

mcp = FastMCP("ACE Playbook Server")

_manager: PlaybookManager | None = None


def get_manager() -> PlaybookManager:
    """Shared manager, created from the global config on first use."""
    global _manager
    if _manager is None:
        _manager = PlaybookManager()
    return _manager


def set_manager(manager: PlaybookManager | None) -> None:
    global _manager
    _manager = manager


@mcp.tool()
async def status() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Status, version and whether ACE is globally enabled
    """
    return {
        "status": "ok",
        "version": __version__,
        "ace_enabled": get_manager().config.ace.enabled,
    }


@mcp.tool()
async def render_playbook(project_path: str, token_budget: int | None = None) -> dict:
    """
    Render the playbook block and usage instructions to inject before a task.

    Args:
        project_path: Project directory the task runs in
        token_budget: Token budget (default: the playbook's max_tokens)

    Returns:
        dict: {"text", "bullets_included", "token_estimate"}; text is empty when ACE is
        inactive for the project
    """
    addition = get_manager().prompt_addition(project_path, token_budget)
    if addition is None:
        return {"text": "", "bullets_included": [], "token_estimate": 0}
    return {
        "text": addition.text,
        "bullets_included": addition.bullets_included,
        "token_estimate": addition.token_estimate,
    }


@mcp.tool()
async def extract_used_bullets(response: str) -> dict:
    """
    Extract the bullet IDs an agent reported using at the end of its final answer.

    Args:
        response: The agent's final answer text

    Returns:
        dict: {"bullet_ids": [...]} (empty when no block is present)
    """
    return {"bullet_ids": extract_bullet_ids(response)}


async def run_cycle_in_thread(
    manager: PlaybookManager, project_path: str, context: RunContext, curate: bool = True
) -> CycleResult:
    """Run a cycle off the event loop; cancelling the caller stops it at the next stage."""
    cancel_event = threading.Event()
    try:
        return await asyncio.to_thread(
            manager.run_cycle, project_path, context, curate=curate, cancel_event=cancel_event
        )
    except asyncio.CancelledError:
        cancel_event.set()
        raise


@mcp.tool()
async def run_cycle(
    project_path: str,
    task: str,
    trace: str = "",
    final_answer: str = "",
    outcome: str = "unknown",
    bullets_used: list[str] | None = None,
    session_id: str = "",
    curate: bool = True,
) -> dict[str, Any]:
    """
    Learn from a finished run: reflect, record bullet feedback, curate and apply.

    Args:
        project_path: Project directory the task ran in
        task: The original task text
        trace: Reasoning trace and tool calls
        final_answer: The agent's final answer
        outcome: "success", "failure" or "unknown"
        bullets_used: Reported bullet IDs; extracted from final_answer when omitted
        session_id: Orchestration-layer session identifier
        curate: Run the Curator after recording feedback

    Returns:
        dict: Cycle status, reflection, operation counts and any rejected operations
    """
    try:
        context = RunContext(
            task=task,
            trace=trace,
            final_answer=final_answer,
            outcome=outcome,
            bullets_used=bullets_used
            if bullets_used is not None
            else extract_bullet_ids(final_answer),
            session_id=session_id,
        )
    except ValueError as e:
        return {"error": str(e)}

    result = await run_cycle_in_thread(get_manager(), project_path, context, curate=curate)
    return result.to_dict()


@mcp.tool()
async def playbook_stats(project_path: str) -> dict[str, Any]:
    """
    Get playbook statistics and refinement suggestions.

    Args:
        project_path: Project directory

    Returns:
        dict: Counts by section, feedback totals, token estimate and suggestions
    """
    manager = get_manager()
    playbook = manager.get_playbook(project_path)
    if playbook is None:
        return {"error": f"No playbook for {project_path}"}
    stats = manager.playbook_stats(playbook)
    stats["suggestions"] = manager.check_and_refine(playbook).suggestions
    return stats


@mcp.resource("playbook://{project_id}")
def get_playbook(project_id: str) -> str:
    """Get a project's full playbook as JSON."""
    playbook = get_manager().get_playbook_by_id(project_id)
    if playbook is None:
        return "{}"
    return playbook.model_dump_json(by_alias=True)


if __name__ == "__main__":
    mcp.run()
