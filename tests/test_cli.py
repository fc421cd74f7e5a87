from __future__ import annotations

import json
from pathlib import Path

from taskboard.cli import main


def _run(state_dir: Path, capsys, *argv: str) -> tuple[int, dict]:
    rc = main(['--state-dir', str(state_dir), *argv])
    out = capsys.readouterr().out
    return rc, (json.loads(out) if out.strip() else {})


def test_seed_create_move_and_board(tmp_path: Path, capsys) -> None:
    state = tmp_path / '.taskboard'
    assert _run(state, capsys, 'user', 'create', 'Alice', '--user-id', 'alice')[0] == 0
    assert _run(state, capsys, 'project', 'create', 'Website', '--project-id', 'web', '--member', 'alice')[0] == 0

    rc, first = _run(state, capsys, 'task', 'create', 'web', 'First', '--assign', 'alice')
    assert rc == 0
    rc, second = _run(state, capsys, 'task', 'create', 'web', 'Second', '--priority', 'high')
    assert rc == 0
    assert second['task']['position'] == 1

    rc, move = _run(state, capsys, 'task', 'move', second['task']['id'], 'pending', '--position', '0')
    assert rc == 0
    assert [t['title'] for t in move['column']] == ['Second', 'First']

    rc, board = _run(state, capsys, 'board', 'web')
    assert rc == 0
    assert [t['position'] for t in board['columns']['pending']] == [0, 1]

    rc, listing = _run(state, capsys, 'task', 'list', 'web', '--order-by', 'priority')
    assert rc == 0
    assert listing['tasks'][0]['title'] == 'Second'


def test_engine_errors_exit_nonzero(tmp_path: Path, capsys) -> None:
    state = tmp_path / '.taskboard'
    rc = main(['--state-dir', str(state), 'task', 'create', 'missing', 'Orphan'])
    assert rc == 1
    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err['error'] == 'not_found'


def test_delete_refuses_parent(tmp_path: Path, capsys) -> None:
    state = tmp_path / '.taskboard'
    _run(state, capsys, 'project', 'create', 'Website', '--project-id', 'web')
    _, parent = _run(state, capsys, 'task', 'create', 'web', 'Parent')
    _run(state, capsys, 'task', 'create', 'web', 'Child', '--parent', parent['task']['id'])

    rc = main(['--state-dir', str(state), 'task', 'delete', parent['task']['id']])
    assert rc == 1
    assert 'has_children' in capsys.readouterr().err


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1


def test_duplicate_project_id_reports_error(tmp_path: Path, capsys) -> None:
    state = tmp_path / '.taskboard'
    assert _run(state, capsys, 'project', 'create', 'Board', '--project-id', 'p1')[0] == 0

    rc = main(['--state-dir', str(state), 'project', 'create', 'Board', '--project-id', 'p1'])
    assert rc == 1
    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err['error'] == 'validation_error'
    assert err['field'] == 'id'
