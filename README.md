# mergebot

A small webhook service for GitHub. When someone comments on a pull request
with a bot command, the service does a *try merge*. It builds a branch from the
repository's default branch and merges the pull request's head into it. It
waits a few seconds and then reads the combined commit status of that branch.
The outcome of each job goes into an SQLite database.

## Commands

Comment on a pull request with one of these:

- `@bot try`: the merge goes to `automation/bot/try/<pr-number>`
- `@bot try-merge`: the merge goes to `automation/bot/try-merge/<pr-number>`

Only the first `@bot <word>` in a comment counts. The word matches without
regard to case. Other words are logged and ignored. One job runs at a time for
each pull request. While a job runs, any further command for the same pull
request is ignored.

A job is recorded as `completed` when the branch status is `success`.
Otherwise it is recorded as `failed` with an error message. This covers a
status of `pending`, `failure` or `unknown`, and any API error.

## Installation

```
pip install .
```

## Configuration

The settings come from the environment (`mergebot.config.Config.load`):

| Variable         | Required | Default                              |
|------------------|----------|--------------------------------------|
| `GITHUB_TOKEN`   | yes      |                                      |
| `WEBHOOK_SECRET` | yes      |                                      |
| `DATABASE_URL`   | in practice | `postgresql://localhost/github_bot` |
| `BIND_ADDRESS`   | no       | `0.0.0.0:3000`                       |
| `BOT_NAME`       | no       | `bot`                                |

`DATABASE_URL` must name an SQLite database. It can be `sqlite:///relative.db`,
`sqlite:////absolute/path.db`, `sqlite://` (in memory), `sqlite:path.db` or a
plain file path. The default PostgreSQL URL is not supported, so the server
exits with an error unless you set this variable.

`BOT_NAME` is read into the configuration, but the command parser always
looks for `@bot`.

A missing required variable raises `mergebot.config.ConfigError`.

## Running

```
export GITHUB_TOKEN=token
export WEBHOOK_SECRET=secret
export DATABASE_URL=sqlite:///mergebot.db
mergebot
```

The `mergebot` command takes no options other than `--help`. It creates the
database tables if they do not exist and then serves on `BIND_ADDRESS`. It
exits with status 1 and prints `Error: ...` in these cases: a setting is
missing, the bind address is invalid, the database URL is unsupported, or the
address cannot be bound.

The server has two endpoints:

- `POST /webhook` receives GitHub events.
  - The `X-GitHub-Event` header is required. Without it, or with a body that
    is not UTF-8, the response is `400`.
  - The `X-Hub-Signature-256` header must be valid for `WEBHOOK_SECRET`.
    Otherwise the response is `401`.
  - A body that is not JSON gives `400`.
  - Accepted deliveries get `200`. They are then processed in the background.
  - `issue_comment` events are checked for commands.
  - `pull_request` events with the actions `opened`, `synchronize` and
    `reopened` are only logged.
- `GET /health` returns `{"status": "healthy", "timestamp": "<ISO 8601 UTC>"}`.

Set up the GitHub webhook to send *Issue comments* and *Pull requests*
events to `/webhook`.

## Library use

Each part can be used on its own:

```python
from mergebot.commands import CommandProcessor
from mergebot.webhook import WebhookHandler

CommandProcessor().parse_command("Looks good, @bot TRY")   # "try"
WebhookHandler("secret").verify_signature(headers, body)   # True / False
```

- `mergebot.webhook.WebhookHandler.verify_signature` accepts any mapping of
  headers. It looks up the header name without regard to case, and the body
  may be `str` or `bytes`.
- `mergebot.github.GitHubClient(token, api_url=..., session=...)` wraps these
  REST calls:
  - `get_pull_request`
  - `create_try_branch`
  - `get_branch_status`
  - `comment_on_pr`

  Failures raise `GitHubError`. The client is an async context manager.
- `mergebot.database.Database.connect(url)` opens the job store. It provides
  `migrate`, `create_try_merge_job`, `update_try_merge_job` and
  `get_active_jobs`. The last returns pending and running jobs, newest first.
  Jobs are `TryMergeJob` dataclasses.
- `mergebot.app.create_app(state)` returns the `aiohttp` application, built
  from an `AppState`. `AppState.ci_wait` sets the wait before the status check.
  It defaults to 5 seconds.

## What it does not do

- Storage is SQLite only. PostgreSQL is not supported.
- The bot never posts comments on pull requests. `comment_on_pr` exists but
  the server does not call it.
- The `repositories` table is created but nothing is written to it.
- Job state kept in memory is lost on restart. There is no retry, and the
  branch status is checked only once after the fixed wait.

## Development

```
pip install -e .[test]
pytest
```