"""
Tests for the command line interface
"""
from unittest.mock import patch

import pytest

from credvault.errors import PersistenceError
from credvault.main import build_parser, main
from credvault.manager import CredentialsManager
from conftest import SECRET_A


@pytest.fixture
def run(data_file):
    def _run(*args):
        return main(['--data-file', data_file, *args])
    return _run


def load(data_file):
    return CredentialsManager(data_file, save_delay=0).open()


class TestCommands:
    """Tests for the individual commands"""

    def test_add_and_list(self, run, capsys):
        assert run('add', 'a@example.com', 'pw', '--totp', SECRET_A, '--extra', 'note') == 0
        assert "position 1" in capsys.readouterr().out

        assert run('list') == 0
        out = capsys.readouterr().out
        assert "a@example.com" in out
        assert "note" in out

    def test_move_by_position(self, run, data_file):
        for name in ('a', 'b', 'c'):
            run('add', f'{name}@example.com', 'pw')
        assert run('move', '3', '1') == 0
        assert [a.email for a in load(data_file).list_accounts()] == [
            'c@example.com', 'a@example.com', 'b@example.com',
        ]

    def test_delete(self, run, data_file):
        run('add', 'a@example.com', 'pw')
        assert run('delete', '1') == 0
        assert len(load(data_file).store) == 0

    def test_import_and_export(self, run, data_file, tmp_path, capsys):
        source = tmp_path / "in.txt"
        source.write_text("a@example.com:pw:\nbroken\nb@example.com:pw:", encoding="utf-8")
        assert run('import', str(source)) == 0
        captured = capsys.readouterr()
        assert "2 new" in captured.out
        assert "line 2" in captured.err

        target = tmp_path / "out.txt"
        assert run('export', '-o', str(target), '--fields', 'email') == 0
        assert target.read_text(encoding="utf-8") == "a@example.com\nb@example.com"

    def test_codes(self, run, capsys):
        run('add', 'a@example.com', 'pw', '--totp', SECRET_A)
        capsys.readouterr()
        assert run('codes') == 0
        out = capsys.readouterr().out
        assert "a@example.com" in out
        assert "valid for" in out


class TestErrors:
    """Tests for error reporting"""

    def test_invalid_input_returns_error(self, run, capsys):
        assert run('add', 'not-an-email', 'pw') == 1
        assert "Error: Invalid email" in capsys.readouterr().err

    def test_unknown_account(self, run, capsys):
        assert run('delete', 'missing-id') == 1
        assert "Account not found" in capsys.readouterr().err

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--version'])
        assert "credvault 1.0" in capsys.readouterr().out

    def test_import_summary_printed_when_save_fails(self, run, tmp_path, capsys):
        source = tmp_path / "in.txt"
        source.write_text("a@example.com|pw|", encoding="utf-8")
        with patch('credvault.storage.StorageManager._write',
                   side_effect=PersistenceError("Cannot write data file")):
            assert run('import', str(source)) == 1
        captured = capsys.readouterr()
        assert "1 new" in captured.out
        assert "Error: Cannot write data file" in captured.err
