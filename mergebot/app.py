"""HTTP service that answers GitHub webhooks by running try merges."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from .commands import CommandProcessor
from .config import Config, ConfigError
from .database import Database, TryMergeJob
from .github import GitHubClient, Repository
from .webhook import WebhookHandler

log = logging.getLogger(__name__)

EVENT_HEADER = "X-GitHub-Event"
TRY_PREFIX = "automation/bot/try"
TRY_MERGE_PREFIX = "automation/bot/try-merge"
CI_WAIT_SECONDS = 5.0

_PR_ACTIONS = frozenset({"opened", "synchronize", "reopened"})


@dataclass
class AppState:
    """Everything the request handlers share."""

    config: Config
    db: Database
    github: GitHubClient
    webhook_handler: WebhookHandler
    command_processor: CommandProcessor = field(default_factory=CommandProcessor)
    active_jobs: dict[str, TryMergeJob] = field(default_factory=dict)
    ci_wait: float = CI_WAIT_SECONDS
    command_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    jobs_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    background_tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)


def _lookup(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _as_str(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _as_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def repository_from_payload(payload: Any) -> Repository:
    """Build a repository from the ``repository`` object of a webhook payload."""
    repo_id = _as_int(_lookup(payload, "repository", "id"))
    return Repository(
        id=0 if repo_id is None else repo_id,
        name=_as_str(_lookup(payload, "repository", "name"), ""),
        full_name=_as_str(_lookup(payload, "repository", "full_name"), ""),
        owner=_as_str(_lookup(payload, "repository", "owner", "login"), ""),
        default_branch=_as_str(_lookup(payload, "repository", "default_branch"), "main"),
    )


async def process_webhook_event(state: AppState, event_type: str, payload: Any) -> None:
    """Act on one webhook delivery."""
    if event_type == "issue_comment":
        comment_body = _lookup(payload, "comment", "body")
        pr_number = _as_int(_lookup(payload, "issue", "number"))
        if isinstance(comment_body, str) and pr_number is not None:
            repo = repository_from_payload(payload)
            await process_comment_command(state, repo, pr_number, comment_body)
    elif event_type == "pull_request":
        action = _lookup(payload, "action")
        if isinstance(action, str) and action in _PR_ACTIONS:
            number = _lookup(payload, "pull_request", "number")
            log.info("PR %s %s", json.dumps(number), action)
    else:
        log.info("Unhandled webhook event: %s", event_type)


async def process_comment_command(
    state: AppState, repo: Repository, pr_number: int, comment_body: str
) -> None:
    """Run the command addressed to the bot in a comment, if there is one."""
    async with state.command_lock:
        command = state.command_processor.parse_command(comment_body)
        if command is None:
            return
        log.info("Processing command: %r for PR %s", command, pr_number)
        if command == "try":
            await execute_try_merge(state, repo, pr_number, TRY_PREFIX)
        elif command == "try-merge":
            await execute_try_merge(state, repo, pr_number, TRY_MERGE_PREFIX)
        else:
            log.warning("Unknown command: %s", command)


async def execute_try_merge(
    state: AppState, repo: Repository, pr_number: int, branch_prefix: str
) -> None:
    """Record a try-merge job, run it and store its outcome."""
    job_key = f"{repo.full_name}#{pr_number}"

    async with state.jobs_lock:
        if job_key in state.active_jobs:
            log.info("Job already running for %s", job_key)
            return

    now = datetime.now(timezone.utc)
    job = TryMergeJob(
        repository_id=repo.id,
        pr_number=pr_number,
        branch_name=f"{branch_prefix}/{pr_number}",
        status="running",
        created_at=now,
        updated_at=now,
    )

    async with state.jobs_lock:
        state.active_jobs[job_key] = job

    await state.db.create_try_merge_job(job)

    try:
        await perform_try_merge(state, repo, pr_number, job.branch_name)
    except Exception as exc:
        updated = replace(job, status="failed", error_message=str(exc))
        log.error("Try merge failed for %s: %s", job_key, exc)
    else:
        updated = replace(job, status="completed")
        log.info("Try merge completed successfully for %s", job_key)

    updated.updated_at = datetime.now(timezone.utc)
    await state.db.update_try_merge_job(updated)

    async with state.jobs_lock:
        state.active_jobs.pop(job_key, None)


async def perform_try_merge(
    state: AppState, repo: Repository, pr_number: int, branch_name: str
) -> None:
    """Build the try branch, wait for CI and raise unless it succeeded."""
    pr = await state.github.get_pull_request(repo.full_name, pr_number)
    await state.github.create_try_branch(
        repo.full_name, pr.head_branch, repo.default_branch, branch_name
    )
    await asyncio.sleep(state.ci_wait)
    status = await state.github.get_branch_status(repo.full_name, branch_name)
    if status != "success":
        raise RuntimeError(f"Try merge failed with status: {status}")
    log.info("Try merge successful for %s/%s", repo.full_name, pr_number)


async def _process_logged(state: AppState, event_type: str, payload: Any) -> None:
    try:
        await process_webhook_event(state, event_type, payload)
    except Exception as exc:
        log.error("Error processing webhook: %s", exc)


def create_app(state: AppState) -> web.Application:
    """Return the web application serving ``/webhook`` and ``/health``."""

    async def handle_webhook(request: web.Request) -> web.Response:
        event_type = request.headers.get(EVENT_HEADER)
        if event_type is None:
            return web.Response(status=400)
        raw = await request.read()
        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError:
            return web.Response(status=400)
        if not state.webhook_handler.verify_signature(request.headers, body):
            log.warning("Invalid webhook signature")
            return web.Response(status=401)
        try:
            payload = json.loads(body)
        except ValueError:
            return web.Response(status=400)

        task = asyncio.create_task(_process_logged(state, event_type, payload))
        state.background_tasks.add(task)
        task.add_done_callback(state.background_tasks.discard)
        return web.Response(status=200)

    async def health_check(request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
        )

    app = web.Application()
    app.router.add_post("/webhook", handle_webhook)
    app.router.add_get("/health", health_check)
    return app


def _split_bind_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid bind address: {address}")
    return host.strip("[]"), int(port)


async def _serve(config: Config) -> None:
    host, port = _split_bind_address(config.bind_address)
    db = await Database.connect(config.database_url)
    github = GitHubClient(config.github_token)
    try:
        await db.migrate()
        state = AppState(
            config=config,
            db=db,
            github=github,
            webhook_handler=WebhookHandler(config.webhook_secret),
        )
        runner = web.AppRunner(create_app(state))
        await runner.setup()
        try:
            await web.TCPSite(runner, host, port).start()
            log.info("Server starting on %s", config.bind_address)
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
    finally:
        await github.close()
        await db.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the webhook server configured from the environment."""
    parser = argparse.ArgumentParser(
        prog="mergebot",
        description="Serve GitHub webhooks and run try merges on request.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        config = Config.load()
        asyncio.run(_serve(config))
    except (ConfigError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
    return 0