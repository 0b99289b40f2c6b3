from __future__ import annotations

import argparse
import json
from typing import Optional, Sequence

from .config import settings
from .db import init_db
from .errors import AppError
from .gateway import PersistenceGateway
from .lobby_coordinator import LobbyCoordinator
from .lobby_service import LobbyService
from .logging_utils import configure_logging
from .session_store import FileStorage, SessionContext


def _session(args: argparse.Namespace) -> SessionContext:
    return SessionContext(FileStorage(args.session_file))


def _print_identity(identity) -> None:
    print(f"Lobby code: {identity.lobby_code}")
    print(f"Lobby id:   {identity.lobby_id}")
    print(f"Player id:  {identity.player_id}")


def cmd_init_db(args: argparse.Namespace) -> int:
    init_db()
    print("Database tables are ready.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("movienight.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_game(args: argparse.Namespace) -> int:
    init_db()
    identity = LobbyService(PersistenceGateway()).create_game(args.name, args.mode)
    _session(args).save(identity)
    _print_identity(identity)
    return 0


def cmd_join_game(args: argparse.Namespace) -> int:
    init_db()
    identity = LobbyService(PersistenceGateway()).join_game(args.code, args.name)
    _session(args).save(identity)
    _print_identity(identity)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    with LobbyCoordinator(PersistenceGateway(), session=_session(args)) as coordinator:
        coordinator.resume()
        print(json.dumps(coordinator.snapshot(), indent=2))
    return 0


def cmd_start(args: argparse.Namespace) -> int:
    with LobbyCoordinator(PersistenceGateway(), session=_session(args)) as coordinator:
        coordinator.resume()
        lobby = coordinator.start_game()
        print(f"Game {lobby.code} started at {lobby.started_at.isoformat() if lobby.started_at else '-'}")
    return 0


def cmd_leave(args: argparse.Namespace) -> int:
    _session(args).clear()
    print("Session cleared.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="movienight", description="Movie Night Party backend tools")
    parser.add_argument("--session-file", default=settings.session_file, help="Where the CLI keeps its session ids")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables").set_defaults(handler=cmd_init_db)

    serve = commands.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=settings.port)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(handler=cmd_serve)

    create = commands.add_parser("create-game", help="Create a lobby and join it as host")
    create.add_argument("name")
    create.add_argument("--mode", choices=["trivia", "predictions"], default=None)
    create.set_defaults(handler=cmd_create_game)

    join = commands.add_parser("join-game", help="Join a lobby by code")
    join.add_argument("code")
    join.add_argument("name")
    join.set_defaults(handler=cmd_join_game)

    commands.add_parser("status", help="Show the saved lobby").set_defaults(handler=cmd_status)
    commands.add_parser("start", help="Start the saved lobby (host only)").set_defaults(handler=cmd_start)
    commands.add_parser("leave", help="Forget the saved session").set_defaults(handler=cmd_leave)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except AppError as exc:
        print(f"Error: {exc.message}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
