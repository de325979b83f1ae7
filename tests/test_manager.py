"""
Tests for the CredentialsManager facade
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from credvault import config
from credvault.errors import PersistenceError, ValidationError
from credvault.importer import BackupImportResult
from credvault.manager import CredentialsManager, TextImportResult
from credvault.store import AccountQuery
from conftest import RFC_SECRET, SECRET_A, SECRET_B


def reopen(data_file):
    return CredentialsManager(data_file, save_delay=0).open()


class TestPersistence:
    """Tests for saving mutations and reloading them"""

    def test_mutations_survive_reload(self, manager, data_file):
        tag = manager.create_tag("Work")
        account = manager.add_account("a@example.com", "pw", SECRET_A, ["x"], [tag.id])
        manager.add_account("b@example.com", "pw")
        manager.reorder_account(account.id, 1)
        manager.toggle_favorite(account.id)

        restored = reopen(data_file)
        emails = [a.email for a in restored.list_accounts()]
        assert emails == ["b@example.com", "a@example.com"]
        reloaded = restored.get_account(account.id)
        assert reloaded.favorite is True
        assert reloaded.tags == [tag.id]
        assert reloaded.totp_secret == SECRET_A

    def test_data_file_format(self, manager, data_file):
        manager.add_account("a@example.com", "pw", SECRET_A)
        with open(data_file, encoding="utf-8") as f:
            data = json.load(f)
        assert set(data) == {'accounts', 'tags', 'settings'}
        assert data['accounts'][0]['totpSecret'] == SECRET_A

    def test_failed_save_keeps_mutation(self, manager):
        with patch.object(manager.storage, '_write', side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                manager.add_account("a@example.com", "pw")
        assert len(manager.store) == 1

    def test_debounced_writes_flushed_on_close(self, data_file):
        with CredentialsManager(data_file, save_delay=60) as manager:
            manager.add_account("a@example.com", "pw")
            assert manager.storage.has_pending()
        assert len(reopen(data_file).store) == 1

    def test_open_corrupt_file(self, data_file):
        with open(data_file, 'w', encoding='utf-8') as f:
            f.write("{broken")
        with pytest.raises(PersistenceError):
            CredentialsManager(data_file, save_delay=0).open()

    def test_unchanged_reorder_does_not_save(self, manager):
        account = manager.add_account("a@example.com", "pw")
        with patch.object(manager.storage, 'schedule_save') as schedule:
            assert manager.reorder_account(account.id, 0) is False
        schedule.assert_not_called()

    def test_clear_all_data(self, manager, data_file):
        manager.add_account("a@example.com", "pw")
        manager.create_tag("Work")
        manager.clear_all_data()
        restored = reopen(data_file)
        assert len(restored.store) == 0
        assert restored.get_tags() == []

    def test_settings_persist(self, manager, data_file):
        manager.update_settings(theme='light')
        assert reopen(data_file).get_settings()['theme'] == 'light'


class TestCodes:
    """Tests for OTP access through the manager"""

    def test_get_code(self, manager):
        account = manager.add_account("a@example.com", "pw", RFC_SECRET)
        assert manager.get_code(account.id, now=59) == "287082"

    def test_account_without_totp(self, manager):
        account = manager.add_account("a@example.com", "pw")
        assert manager.get_code(account.id) == config.UNAVAILABLE_CODE
        assert manager.get_code("missing") == config.UNAVAILABLE_CODE

    def test_get_codes(self, manager):
        a = manager.add_account("a@example.com", "pw", RFC_SECRET)
        b = manager.add_account("b@example.com", "pw", RFC_SECRET)
        manager.add_account("c@example.com", "pw")
        assert manager.get_codes(now=59) == {a.id: "287082", b.id: "287082"}

    def test_seconds_remaining_uses_clock(self, manager, clock):
        clock.now = 95
        assert manager.seconds_remaining() == 25

    def test_start_code_refresh(self, manager):
        callback = MagicMock()
        scheduler = manager.start_code_refresh(callback)
        try:
            callback.assert_called_once()
            assert scheduler.is_running
        finally:
            scheduler.stop()


class TestImport:
    """Tests for text and backup import through the manager"""

    def test_detects_delimiter(self, manager):
        result = manager.import_text(f"a@example.com;pw;{SECRET_A}\nb@example.com;pw;")
        assert isinstance(result, TextImportResult)
        assert result.delimiter == ';'
        assert result.stats.added == 2

    def test_falls_back_to_default_delimiter(self, manager):
        manager.update_settings(defaultDelimiter=':')
        result = manager.import_text("a@example.com:pw")
        assert result.delimiter == ':'
        assert result.stats.added == 1

    def test_errors_merged_and_sorted(self, manager):
        content = "\n".join([
            "a@example.com|pw|" + SECRET_A,
            "broken",
            "a@example.com|pw|" + SECRET_B,
        ])
        result = manager.import_text(content, delimiter='|')
        assert (result.stats.added, len(result.stats.errors)) == (2, 1)
        assert result.stats.errors[0]['line'] == 2

    def test_import_persists(self, manager, data_file):
        manager.import_text("a@example.com|pw", delimiter='|')
        assert len(reopen(data_file).store) == 1

    def test_import_file_routes_by_extension(self, manager, tmp_path):
        text_file = tmp_path / "accounts.txt"
        text_file.write_text("a@example.com|pw|", encoding="utf-8")
        backup_file = tmp_path / "backup.JSON"
        backup_file.write_text(json.dumps({'accounts': [{'email': 'b@example.com', 'password': 'pw'}]}),
                               encoding="utf-8")

        assert isinstance(manager.import_file(str(text_file)), TextImportResult)
        assert isinstance(manager.import_file(str(backup_file)), BackupImportResult)
        assert len(manager.store) == 2

    def test_failed_save_keeps_import_result(self, manager):
        with patch.object(manager.storage, '_write', side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError) as exc:
                manager.import_text("a@example.com|pw\nbroken", delimiter='|')
        result = exc.value.result
        assert isinstance(result, TextImportResult)
        assert result.stats.added == 1
        assert result.stats.errors[0]['line'] == 2
        assert len(manager.store) == 1

    def test_failed_save_keeps_backup_result(self, manager):
        text = json.dumps({'accounts': [{'email': 'a@example.com', 'password': 'pw'}]})
        with patch.object(manager.storage, '_write', side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError) as exc:
                manager.import_backup(text)
        assert exc.value.result.stats.added == 1

    def test_invalid_backup(self, manager):
        with pytest.raises(ValidationError):
            manager.import_backup("{}")


class TestExport:
    """Tests for export through the manager"""

    def test_export_to_file(self, manager, tmp_path):
        manager.add_account("a@example.com", "pw")
        b = manager.add_account("b@example.com", "pw")
        manager.toggle_favorite(b.id)

        path = tmp_path / "export.txt"
        assert manager.export_to_file(str(path), 'txt', scope='favorite') == 1
        assert path.read_text(encoding="utf-8") == "b@example.com|pw|"

    def test_json_backup_restores_into_empty_store(self, manager, tmp_path):
        tag = manager.create_tag("Work")
        manager.add_account("a@example.com", "pw", SECRET_A, tags=[tag.id])
        path = tmp_path / "backup.json"
        manager.export_to_file(str(path), 'json')

        other = CredentialsManager(str(tmp_path / "other.json"), save_delay=0).open()
        result = other.import_file(str(path))
        assert result.stats.added == 1
        account = other.list_accounts(AccountQuery(text="work"))[0]
        assert account.totp_secret == SECRET_A
