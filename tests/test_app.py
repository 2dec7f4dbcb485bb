import asyncio
import hashlib
import hmac
import json
from dataclasses import replace

import pytest
from aiohttp.test_utils import TestClient, TestServer

from mergebot.app import (
    AppState,
    create_app,
    execute_try_merge,
    main,
    perform_try_merge,
    process_comment_command,
    process_webhook_event,
    repository_from_payload,
)
from mergebot.config import Config
from mergebot.database import Database, TryMergeJob
from mergebot.github import GitHubError, PullRequest, Repository
from mergebot.webhook import WebhookHandler

REPO = Repository(
    id=42,
    name="widgets",
    full_name="acme/widgets",
    owner="acme",
    default_branch="main",
)


class FakeGitHub:
    def __init__(self, status="success", error=None):
        self.status = status
        self.error = error
        self.calls = []

    async def get_pull_request(self, repo, pr_number):
        self.calls.append(("get_pull_request", repo, pr_number))
        if self.error is not None:
            raise self.error
        return PullRequest(
            id=1,
            number=pr_number,
            title="Add feature",
            head_branch="feature",
            base_branch="main",
            repository=REPO,
            state="open",
            mergeable=True,
        )

    async def create_try_branch(self, repo, head_branch, base_branch, try_branch):
        self.calls.append(("create_try_branch", repo, head_branch, base_branch, try_branch))

    async def get_branch_status(self, repo, branch):
        self.calls.append(("get_branch_status", repo, branch))
        return self.status


class FakeDatabase:
    def __init__(self):
        self.created = []
        self.updated = []

    async def create_try_merge_job(self, job):
        self.created.append(replace(job))

    async def update_try_merge_job(self, job):
        self.updated.append(replace(job))


def make_state(github=None, db=None):
    return AppState(
        config=Config(github_token="token", webhook_secret="secret"),
        db=db if db is not None else FakeDatabase(),
        github=github if github is not None else FakeGitHub(),
        webhook_handler=WebhookHandler("secret"),
        ci_wait=0,
    )


def sign(body: bytes) -> str:
    return "sha256=" + hmac.new(b"secret", body, hashlib.sha256).hexdigest()


def comment_payload(body, number=7):
    return {
        "comment": {"body": body},
        "issue": {"number": number},
        "repository": {
            "id": 42,
            "name": "widgets",
            "full_name": "acme/widgets",
            "owner": {"login": "acme"},
            "default_branch": "main",
        },
    }


def test_repository_from_payload_reads_fields():
    repo = repository_from_payload(comment_payload("hi"))
    assert repo == REPO


def test_repository_from_payload_defaults():
    repo = repository_from_payload({})
    assert repo == Repository(id=0, name="", full_name="", owner="", default_branch="main")


@pytest.mark.asyncio
async def test_try_command_runs_merge_and_completes():
    github = FakeGitHub()
    db = FakeDatabase()
    state = make_state(github, db)

    await process_comment_command(state, REPO, 7, "please @bot try")

    assert ("create_try_branch", "acme/widgets", "feature", "main", "automation/bot/try/7") in github.calls
    assert db.created[0].status == "running"
    assert db.created[0].branch_name == "automation/bot/try/7"
    assert db.updated[0].status == "completed"
    assert db.updated[0].error_message is None
    assert db.updated[0].id == db.created[0].id
    assert state.active_jobs == {}


@pytest.mark.asyncio
async def test_hyphenated_command_is_cut_at_word_boundary():
    github = FakeGitHub()
    state = make_state(github)

    await process_comment_command(state, REPO, 7, "@bot try-merge")

    branches = [call[4] for call in github.calls if call[0] == "create_try_branch"]
    assert branches == ["automation/bot/try/7"]


@pytest.mark.asyncio
async def test_execute_try_merge_uses_prefix():
    github = FakeGitHub()
    db = FakeDatabase()
    state = make_state(github, db)

    await execute_try_merge(state, REPO, 9, "automation/bot/try-merge")

    assert db.created[0].branch_name == "automation/bot/try-merge/9"
    assert db.created[0].repository_id == 42
    assert db.created[0].pr_number == 9


@pytest.mark.asyncio
async def test_unknown_command_does_nothing():
    github = FakeGitHub()
    db = FakeDatabase()
    state = make_state(github, db)

    await process_comment_command(state, REPO, 7, "@bot dance")

    assert github.calls == []
    assert db.created == []


@pytest.mark.asyncio
async def test_comment_without_mention_does_nothing():
    github = FakeGitHub()
    state = make_state(github)

    await process_comment_command(state, REPO, 7, "looks good to me")

    assert github.calls == []


@pytest.mark.asyncio
async def test_failed_status_marks_job_failed():
    db = FakeDatabase()
    state = make_state(FakeGitHub(status="failure"), db)

    await execute_try_merge(state, REPO, 7, "automation/bot/try")

    assert db.updated[0].status == "failed"
    assert db.updated[0].error_message == "Try merge failed with status: failure"
    assert state.active_jobs == {}


@pytest.mark.asyncio
async def test_github_error_marks_job_failed():
    db = FakeDatabase()
    state = make_state(FakeGitHub(error=GitHubError("Failed to get PR: 404 Not Found")), db)

    await execute_try_merge(state, REPO, 7, "automation/bot/try")

    assert db.updated[0].status == "failed"
    assert db.updated[0].error_message == "Failed to get PR: 404 Not Found"


@pytest.mark.asyncio
async def test_running_job_is_not_started_twice():
    github = FakeGitHub()
    db = FakeDatabase()
    state = make_state(github, db)
    state.active_jobs["acme/widgets#7"] = TryMergeJob(
        repository_id=42, pr_number=7, branch_name="automation/bot/try/7"
    )

    await execute_try_merge(state, REPO, 7, "automation/bot/try")

    assert github.calls == []
    assert db.created == []
    assert list(state.active_jobs) == ["acme/widgets#7"]


@pytest.mark.asyncio
async def test_perform_try_merge_raises_on_pending():
    state = make_state(FakeGitHub(status="pending"))
    with pytest.raises(RuntimeError, match="status: pending"):
        await perform_try_merge(state, REPO, 7, "automation/bot/try/7")


@pytest.mark.asyncio
async def test_perform_try_merge_checks_try_branch_status():
    github = FakeGitHub()
    state = make_state(github)

    await perform_try_merge(state, REPO, 7, "automation/bot/try/7")

    assert github.calls[-1] == ("get_branch_status", "acme/widgets", "automation/bot/try/7")


@pytest.mark.asyncio
async def test_issue_comment_event_triggers_merge():
    github = FakeGitHub()
    state = make_state(github)

    await process_webhook_event(state, "issue_comment", comment_payload("@bot TRY"))

    assert github.calls[0] == ("get_pull_request", "acme/widgets", 7)


@pytest.mark.asyncio
async def test_issue_comment_without_number_is_ignored():
    github = FakeGitHub()
    state = make_state(github)
    payload = comment_payload("@bot try")
    payload["issue"]["number"] = "7"

    await process_webhook_event(state, "issue_comment", payload)

    assert github.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("event", ["pull_request", "push"])
async def test_other_events_do_not_merge(event):
    github = FakeGitHub()
    state = make_state(github)

    await process_webhook_event(state, event, {"action": "opened", "pull_request": {"number": 7}})

    assert github.calls == []


@pytest.mark.asyncio
async def test_job_stored_in_database_is_no_longer_active():
    db = await Database.connect(":memory:")
    try:
        await db.migrate()
        state = make_state(FakeGitHub(), db)
        await execute_try_merge(state, REPO, 7, "automation/bot/try")
        assert await db.get_active_jobs(42) == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_health_endpoint():
    async with TestClient(TestServer(create_app(make_state()))) as client:
        response = await client.get("/health")
        assert response.status == 200
        data = await response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data


@pytest.mark.asyncio
async def test_webhook_requires_event_header():
    body = b"{}"
    async with TestClient(TestServer(create_app(make_state()))) as client:
        response = await client.post(
            "/webhook", data=body, headers={"X-Hub-Signature-256": sign(body)}
        )
        assert response.status == 400


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature():
    body = b"{}"
    async with TestClient(TestServer(create_app(make_state()))) as client:
        response = await client.post(
            "/webhook",
            data=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign(b"other")},
        )
        assert response.status == 401


@pytest.mark.asyncio
async def test_webhook_rejects_invalid_json():
    body = b"not json"
    async with TestClient(TestServer(create_app(make_state()))) as client:
        response = await client.post(
            "/webhook",
            data=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign(body)},
        )
        assert response.status == 400


@pytest.mark.asyncio
async def test_webhook_accepts_and_processes_comment():
    github = FakeGitHub()
    state = make_state(github)
    body = json.dumps(comment_payload("@bot try")).encode()
    async with TestClient(TestServer(create_app(state))) as client:
        response = await client.post(
            "/webhook",
            data=body,
            headers={"X-GitHub-Event": "issue_comment", "X-Hub-Signature-256": sign(body)},
        )
        assert response.status == 200
        await asyncio.gather(*state.background_tasks)

    assert ("create_try_branch", "acme/widgets", "feature", "main", "automation/bot/try/7") in github.calls


def test_main_fails_without_token(monkeypatch, capsys):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    assert main([]) == 1
    assert "GITHUB_TOKEN not set" in capsys.readouterr().err


def test_main_rejects_bad_bind_address(monkeypatch, capsys):
    monkeypatch.setenv("GITHUB_TOKEN", "token")
    monkeypatch.setenv("WEBHOOK_SECRET", "secret")
    monkeypatch.setenv("BIND_ADDRESS", "nowhere")
    assert main([]) == 1
    assert "invalid bind address: nowhere" in capsys.readouterr().err