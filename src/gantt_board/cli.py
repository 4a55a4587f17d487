from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .config import load_board_config, resolve_config
from .constants import SECONDS_PER_DAY, STATE_DIR_NAME
from .logging_utils import configure_logging
from .server import create_app
from .task_engine.engine import GanttEngine
from .task_engine.grouping import WORKLOAD_STYLES


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(project_dir: Optional[str]) -> GanttEngine:
    state_dir = _resolve_project_dir(project_dir) / STATE_DIR_NAME
    raw, err = load_board_config(state_dir)
    if err:
        sys.stderr.write(f"Ignoring config: {err}\n")
    return GanttEngine(state_dir, config=resolve_config(raw))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _fail(message: str) -> int:
    sys.stderr.write(message + '\n')
    return 1


def _project_create(args: argparse.Namespace) -> int:
    project = _engine(args.project_dir).create_project(args.name)
    return _emit({'project': project.to_dict()})


def _project_list(args: argparse.Namespace) -> int:
    projects = _engine(args.project_dir).list_projects()
    return _emit({'projects': [p.to_dict() for p in projects]})


def _user_create(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    user = engine.create_user(args.username, args.name or '')
    for project_id in args.member_of or []:
        if not engine.add_member(project_id, user.id):
            return _fail(f"Project {project_id} not found")
    return _emit({'user': user.to_dict()})


def _category_create(args: argparse.Namespace) -> int:
    category = _engine(args.project_dir).create_category(args.project_id, args.name, args.color or '')
    if category is None:
        return _fail(f"Project {args.project_id} not found")
    return _emit({'category': category.to_dict()})


def _task_create(args: argparse.Namespace) -> int:
    payload: dict[str, Any] = {
        'text': args.title,
        'description': args.description or '',
        'priority': args.priority,
        'task_type': args.task_type,
    }
    for key in ('start_date', 'end_date', 'owner_id', 'category_id', 'sprint_id'):
        value = getattr(args, key)
        if value is not None:
            payload[key] = value
    try:
        task = _engine(args.project_dir).create_task(args.project_id, payload)
    except ValueError as exc:
        return _fail(str(exc))
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args.project_dir).list_tasks(args.project_id)
    return _emit({'tasks': [t.to_dict() for t in tasks]})


def _task_shift(args: argparse.Namespace) -> int:
    delta = int(round(args.days * SECONDS_PER_DAY))
    try:
        moved = _engine(args.project_dir).shift_task(args.project_id, args.task_id, delta)
    except ValueError as exc:
        return _fail(str(exc))
    if moved is None:
        return _fail(f"Task {args.task_id} not found")
    return _emit({'moved': moved})


def _link_add(args: argparse.Namespace) -> int:
    try:
        link = _engine(args.project_dir).add_link(args.project_id, args.source, args.target, args.kind)
    except ValueError as exc:
        return _fail(str(exc))
    return _emit({'link': link.to_dict()})


def _link_remove(args: argparse.Namespace) -> int:
    try:
        removed = _engine(args.project_dir).remove_link(args.project_id, args.link_id)
    except ValueError as exc:
        return _fail(str(exc))
    return _emit({'removed': removed, 'link_id': args.link_id})


def _snapshot(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    if engine.get_project(args.project_id) is None:
        return _fail(f"Project {args.project_id} not found")
    return _emit(engine.snapshot(args.project_id, group_by=args.group_by, sorting=args.sorting, search=args.search))


def _workload(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    if engine.get_project(args.project_id) is None:
        return _fail(f"Project {args.project_id} not found")
    rows = engine.snapshot(args.project_id)["workload"]
    if args.json:
        return _emit({'workload': rows})

    table = Table(title=f"Workload: project {args.project_id}", show_header=True)
    table.add_column("Assignee", style="cyan")
    table.add_column("Tasks", justify="right")
    table.add_column("Status", style="bold")
    for row in rows:
        style = WORKLOAD_STYLES.get(row["status"], "")
        status = f"[{style}]{row['status']}[/{style}]" if style else row["status"]
        table.add_row(row["name"], str(row["task_count"]), status)
    Console().print(table)
    return 0


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        return _fail("Install server extras: pip install 'gantt-board[server]'")

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload, log_level=args.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Gantt board CLI')
    parser.add_argument('--project-dir', default=None, help='Board directory (default: current working directory)')
    parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the web server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    project = subparsers.add_parser('project', help='Manage projects')
    project_sub = project.add_subparsers(dest='project_cmd', required=True)
    pcreate = project_sub.add_parser('create', help='Create a project with the default columns')
    pcreate.add_argument('name')
    pcreate.set_defaults(func=_project_create)
    plist = project_sub.add_parser('list', help='List projects')
    plist.set_defaults(func=_project_list)

    user = subparsers.add_parser('user', help='Manage users')
    user_sub = user.add_subparsers(dest='user_cmd', required=True)
    ucreate = user_sub.add_parser('create', help='Create a user')
    ucreate.add_argument('username')
    ucreate.add_argument('--name', default='')
    ucreate.add_argument('--member-of', type=int, action='append', help='Project id to join (repeatable)')
    ucreate.set_defaults(func=_user_create)

    category = subparsers.add_parser('category', help='Manage categories')
    category_sub = category.add_subparsers(dest='category_cmd', required=True)
    ccreate = category_sub.add_parser('create', help='Create a category')
    ccreate.add_argument('project_id', type=int)
    ccreate.add_argument('name')
    ccreate.add_argument('--color', default='')
    ccreate.set_defaults(func=_category_create)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('project_id', type=int)
    tcreate.add_argument('title')
    tcreate.add_argument('--description', default='')
    tcreate.add_argument('--priority', default='normal', choices=['low', 'normal', 'medium', 'high'])
    tcreate.add_argument('--task-type', default='task', choices=['task', 'milestone', 'sprint'])
    tcreate.add_argument('--start-date', default=None, help='YYYY-MM-DD HH:MM')
    tcreate.add_argument('--end-date', default=None, help='YYYY-MM-DD HH:MM')
    tcreate.add_argument('--owner-id', type=int, default=None)
    tcreate.add_argument('--category-id', type=int, default=None)
    tcreate.add_argument('--sprint-id', type=int, default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks')
    tlist.add_argument('project_id', type=int)
    tlist.set_defaults(func=_task_list)
    tshift = task_sub.add_parser('shift', help='Move a task (and its successors, if enabled) by N days')
    tshift.add_argument('project_id', type=int)
    tshift.add_argument('task_id', type=int)
    tshift.add_argument('days', type=float)
    tshift.set_defaults(func=_task_shift)

    link = subparsers.add_parser('link', help='Manage task links')
    link_sub = link.add_subparsers(dest='link_cmd', required=True)
    ladd = link_sub.add_parser('add', help='Link two tasks')
    ladd.add_argument('project_id', type=int)
    ladd.add_argument('source', type=int)
    ladd.add_argument('target', type=int)
    ladd.add_argument('--kind', default='blocks', choices=['blocks', 'child'])
    ladd.set_defaults(func=_link_add)
    lremove = link_sub.add_parser('remove', help='Remove a link by ID')
    lremove.add_argument('project_id', type=int)
    lremove.add_argument('link_id', type=int)
    lremove.set_defaults(func=_link_remove)

    snapshot = subparsers.add_parser('snapshot', help='Print the chart payload for a project')
    snapshot.add_argument('project_id', type=int)
    snapshot.add_argument('--group-by', default=None, choices=['none', 'assignee', 'category', 'sprint'])
    snapshot.add_argument('--sorting', default=None, choices=['board', 'date'])
    snapshot.add_argument('--search', default='')
    snapshot.set_defaults(func=_snapshot)

    workload = subparsers.add_parser('workload', help='Show open tasks per assignee')
    workload.add_argument('project_id', type=int)
    workload.add_argument('--json', action='store_true', help='Print JSON instead of a table')
    workload.set_defaults(func=_workload)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == '__main__':
    raise SystemExit(main())
