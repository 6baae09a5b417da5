import asyncio
import os
import sys
from typing import Dict, List, Tuple

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from aiti_chat.config import CONFIG, load_envs
from aiti_chat.logger import configure_logging, log

# Load environment variables
load_envs()


def _parse_cli_args(extra_args: List[str]) -> Tuple[Dict[str, object], List[str]]:
    """Parse CLI-style ``--key value`` pairs and return remaining positional args."""

    consumed_indexes: set[int] = set()
    cli_params: Dict[str, object] = {}

    i = 0
    while i < len(extra_args):
        token = extra_args[i]
        if token.startswith("--") and len(token) > 2:
            key = token[2:].strip().replace("-", "_")
            if not key:
                i += 1
                continue
            consumed_indexes.add(i)
            value: object = True
            if i + 1 < len(extra_args) and not extra_args[i + 1].startswith("--"):
                value = extra_args[i + 1]
                consumed_indexes.add(i + 1)
                i += 2
            else:
                i += 1
            cli_params[key] = value
        else:
            i += 1

    residual = [token for idx, token in enumerate(extra_args) if idx not in consumed_indexes]
    return cli_params, residual


def _print_usage() -> None:
    usage = (
        "Usage:\n"
        "  python run.py serve [--host 0.0.0.0] [--port 8000] [--reload]\n"
        "  python run.py ping --user-id <user_id> [--agent-id <agent_id>]\n"
    )
    print(usage.strip())


def _serve(params: Dict[str, object]) -> int:
    import uvicorn

    host = str(params.get("host") or "0.0.0.0")
    try:
        port = int(str(params.get("port") or 8000))
    except ValueError:
        print("[run error] --port must be an integer.", file=sys.stderr)
        return 1
    uvicorn.run(
        "aiti_chat.api.main:app",
        host=host,
        port=port,
        reload=bool(params.get("reload")),
        log_level=CONFIG.log_level.lower(),
    )
    return 0


def _ping(params: Dict[str, object]) -> int:
    from aiti_chat.db import get_database_client
    from aiti_chat.db.settings import SettingsProvider
    from aiti_chat.services.webhook import DispatchError, resolve_webhook_target, test_webhook

    user_id = params.get("user_id")
    if not user_id or isinstance(user_id, bool):
        print("[run error] --user-id requires a value.", file=sys.stderr)
        return 1

    db = get_database_client()
    user = db.get_auth_user(str(user_id))
    if user is None:
        print(f"[run error] no profile found for user {user_id}.", file=sys.stderr)
        return 1

    agent = None
    agent_id = params.get("agent_id")
    if agent_id and not isinstance(agent_id, bool):
        agent = user.get_agent(str(agent_id))
        if agent is None:
            print(f"[run error] user {user_id} has no agent {agent_id}.", file=sys.stderr)
            return 1

    try:
        target = resolve_webhook_target(agent, SettingsProvider(user.id, db=db).current())
        reply = asyncio.run(test_webhook(target, agent))
    except DispatchError as exc:
        print(f"[run error] {exc}", file=sys.stderr)
        return 1

    log(f"[run] {target.url} replied: {reply}")
    return 0


def main(argv: list[str] | None = None):
    args = argv if argv is not None else sys.argv[1:]
    if not args:
        _print_usage()
        return 1

    configure_logging(CONFIG.log_level)
    command, extra_args = args[0], args[1:]
    cli_params, residual_args = _parse_cli_args(extra_args)
    if residual_args:
        print(f"[run error] unexpected arguments: {' '.join(residual_args)}", file=sys.stderr)
        return 1

    if command == "serve":
        return _serve(cli_params)
    if command == "ping":
        return _ping(cli_params)

    _print_usage()
    return 1


if __name__ == "__main__":
    sys.exit(main())
