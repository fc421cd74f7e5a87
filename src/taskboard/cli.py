from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .constants import STATE_DIR_NAME
from .server.api import build_engine, create_app
from .task_engine.engine import TaskEngine
from .task_engine.errors import TaskEngineError


def _resolve_state_dir(state_dir: Optional[str]) -> Path:
    return Path(state_dir).expanduser().resolve() if state_dir else (Path.cwd() / STATE_DIR_NAME).resolve()


def _engine(args: argparse.Namespace) -> TaskEngine:
    return build_engine(_resolve_state_dir(args.state_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _user_create(args: argparse.Namespace) -> int:
    user = _engine(args).register_user(args.name, email=args.email, user_id=args.user_id)
    return _emit({'user': user.to_dict()})


def _project_create(args: argparse.Namespace) -> int:
    project = _engine(args).register_project(args.name, members=args.member, project_id=args.project_id)
    return _emit({'project': project.to_dict()})


def _project_add_member(args: argparse.Namespace) -> int:
    project = _engine(args).add_project_member(args.project_id, args.user_id)
    return _emit({'project': project.to_dict()})


def _task_create(args: argparse.Namespace) -> int:
    fields: dict[str, Any] = {'title': args.title, 'priority': args.priority, 'status': args.status}
    if args.description:
        fields['description'] = args.description
    if args.assign:
        fields['assigned_to'] = args.assign
    if args.parent:
        fields['parent_task_id'] = args.parent
    task = _engine(args).create_task(args.project_id, fields, actor=args.actor)
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args).list_by_project(
        args.project_id,
        status=args.status,
        order_by=args.order_by,
        direction=args.direction,
    )
    return _emit({'tasks': [task.to_dict() for task in tasks]})


def _task_move(args: argparse.Namespace) -> int:
    move = _engine(args).change_status(args.task_id, args.status, args.position, actor=args.actor)
    return _emit(move.to_dict())


def _task_delete(args: argparse.Namespace) -> int:
    _engine(args).delete_task(args.task_id, actor=args.actor)
    return _emit({'deleted': args.task_id})


def _board(args: argparse.Namespace) -> int:
    columns = _engine(args).get_board(args.project_id)
    return _emit({'columns': {status: [t.to_dict() for t in tasks] for status, tasks in columns.items()}})


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskboard[server]'\n")
        return 1

    app = create_app(state_dir=_resolve_state_dir(args.state_dir))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Task board: task hierarchy and Kanban ordering')
    parser.add_argument('--state-dir', default=None, help=f'Board state directory (default: ./{STATE_DIR_NAME})')
    parser.add_argument('--actor', default=None, help='User id recorded in task history')
    subparsers = parser.add_subparsers(dest='command')

    server = subparsers.add_parser('server', help='Start the HTTP server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.set_defaults(func=_server)

    user = subparsers.add_parser('user', help='Manage users')
    user_sub = user.add_subparsers(dest='user_cmd', required=True)
    ucreate = user_sub.add_parser('create', help='Register a user')
    ucreate.add_argument('name')
    ucreate.add_argument('--email', default=None)
    ucreate.add_argument('--user-id', default=None)
    ucreate.set_defaults(func=_user_create)

    project = subparsers.add_parser('project', help='Manage projects')
    project_sub = project.add_subparsers(dest='project_cmd', required=True)
    pcreate = project_sub.add_parser('create', help='Register a project')
    pcreate.add_argument('name')
    pcreate.add_argument('--project-id', default=None)
    pcreate.add_argument('--member', action='append', default=[], help='Member user id (repeatable)')
    pcreate.set_defaults(func=_project_create)
    pmember = project_sub.add_parser('add-member', help='Add a member to a project')
    pmember.add_argument('project_id')
    pmember.add_argument('user_id')
    pmember.set_defaults(func=_project_add_member)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('project_id')
    tcreate.add_argument('title')
    tcreate.add_argument('--description', default='')
    tcreate.add_argument('--priority', default='medium', choices=['low', 'medium', 'high'])
    tcreate.add_argument('--status', default='pending', choices=['pending', 'in_progress', 'completed'])
    tcreate.add_argument('--assign', default=None)
    tcreate.add_argument('--parent', default=None)
    tcreate.set_defaults(func=_task_create)

    tlist = task_sub.add_parser('list', help='List tasks in a project')
    tlist.add_argument('project_id')
    tlist.add_argument('--status', default=None)
    tlist.add_argument('--order-by', default='created_at')
    tlist.add_argument('--direction', default='desc', choices=['asc', 'desc'])
    tlist.set_defaults(func=_task_list)

    tmove = task_sub.add_parser('move', help='Change status and column position')
    tmove.add_argument('task_id')
    tmove.add_argument('status')
    tmove.add_argument('--position', default=None, type=int)
    tmove.set_defaults(func=_task_move)

    tdelete = task_sub.add_parser('delete', help='Delete a childless task')
    tdelete.add_argument('task_id')
    tdelete.set_defaults(func=_task_delete)

    board = subparsers.add_parser('board', help='Show a project board')
    board.add_argument('project_id')
    board.set_defaults(func=_board)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except TaskEngineError as exc:
        sys.stderr.write(json.dumps(exc.to_dict()) + '\n')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
