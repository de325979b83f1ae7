"""
Command line entry point for the CredVault credentials manager.
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional

from credvault.errors import CredVaultError, PersistenceError
from credvault.manager import CredentialsManager, TextImportResult, default_data_path
from credvault.store import AccountQuery
from . import config

logger = logging.getLogger(__name__)


class CredVaultApp:
    """Main application class for the command line interface."""

    def __init__(self, args: argparse.Namespace):
        """Initialize the application."""
        self.args = args
        # Every command exits right after running, so write synchronously.
        self.manager = CredentialsManager(args.data_file, save_delay=0)

    def run(self) -> int:
        """Run the selected command."""
        self.manager.open()
        handler = getattr(self, f"cmd_{self.args.command}")
        return handler() or 0

    def cleanup(self):
        """Clean up resources."""
        self.manager.close()

    def _resolve(self, ref: str) -> str:
        """Accept an account id or a 1-based display position."""
        if ref.isdigit():
            accounts = self.manager.list_accounts()
            index = int(ref) - 1
            if 0 <= index < len(accounts):
                return accounts[index].id
        return ref

    def cmd_list(self):
        query = AccountQuery(text=self.args.search or '', status=self.args.status,
                             untagged=self.args.untagged)
        if self.args.tag:
            tag = self.manager.store.find_tag_by_name(self.args.tag)
            query.tag_ids = [tag.id] if tag else ['']
        for position, account in enumerate(self.manager.list_accounts(query), start=1):
            flags = ('*' if account.favorite else ' ') + ('x' if account.completed else ' ')
            code = self.manager.get_code(account.id) if account.totp_secret else ''
            extras = ', '.join(account.extras)
            print(f"{position:>4} {flags} {account.email:<40} {code:>6}  {extras}")

    def cmd_add(self):
        account = self.manager.add_account(self.args.email, self.args.password,
                                           self.args.totp or '', self.args.extra or [])
        print(f"Added {account.email} at position {account.order + 1}")

    def cmd_delete(self):
        account = self.manager.delete_account(self._resolve(self.args.account))
        print(f"Deleted {account.email}")

    def cmd_move(self):
        account_id = self._resolve(self.args.account)
        self.manager.reorder_account(account_id, self.args.position - 1)
        print(f"Moved to position {self.manager.get_account(account_id).order + 1}")

    def cmd_import(self):
        try:
            result = self.manager.import_file(self.args.file, self.args.delimiter,
                                              has_totp=not self.args.no_totp)
        except PersistenceError as e:
            if e.result is not None:
                self._print_import(e.result)
            raise
        self._print_import(result)

    def _print_import(self, result):
        stats = result.stats
        summary = f"Imported: {stats.added} new, {stats.updated} updated, {stats.skipped} skipped"
        if isinstance(result, TextImportResult):
            summary += f" (delimiter {result.delimiter!r})"
        else:
            summary += f" | Tags: {result.tags_created} created, {result.tags_reused} reused"
        print(summary)
        for error in stats.errors:
            print(f"  line {error['line']}: {error['reason']}", file=sys.stderr)

    def cmd_export(self):
        fields = None
        if self.args.fields:
            chosen = set(self.args.fields.split(','))
            fields = {name: name in chosen for name in config.EXPORT_DEFAULT_FIELDS}
        path = self.args.output or self.manager.exporter.default_filename(self.args.format)
        count = self.manager.export_to_file(path, self.args.format, scope=self.args.scope,
                                            delimiter=self.args.delimiter, fields=fields)
        print(f"Exported {count} accounts to {path}")

    def _print_codes(self):
        accounts = [a for a in self.manager.list_accounts() if a.totp_secret]
        codes = self.manager.get_codes(accounts)
        remaining = int(self.manager.seconds_remaining())
        for account in accounts:
            print(f"{codes[account.id]}  {account.email}")
        print(f"-- valid for {remaining}s")

    def cmd_codes(self):
        self._print_codes()

    def cmd_watch(self):
        scheduler = self.manager.start_code_refresh(self._print_codes)
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='credvault', description=config.APP_NAME,
                                     epilog=config.APP_DISCLAIMER)
    parser.add_argument('--data-file', default=default_data_path(),
                        help='Path to the data file (default: %(default)s)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {config.APP_VERSION}')
    commands = parser.add_subparsers(dest='command', required=True)

    list_cmd = commands.add_parser('list', help='List accounts with their current codes')
    list_cmd.add_argument('--search', help='Filter by email, extras or tag name')
    list_cmd.add_argument('--tag', help='Only accounts with this tag')
    list_cmd.add_argument('--untagged', action='store_true', help='Only accounts without tags')
    list_cmd.add_argument('--status', choices=config.STATUS_FILTERS, default='all')

    add_cmd = commands.add_parser('add', help='Add an account')
    add_cmd.add_argument('email')
    add_cmd.add_argument('password')
    add_cmd.add_argument('--totp', help='32 character TOTP secret')
    add_cmd.add_argument('--extra', action='append', help='Extra information (repeatable)')

    delete_cmd = commands.add_parser('delete', help='Delete an account')
    delete_cmd.add_argument('account', help='Account id or list position')

    move_cmd = commands.add_parser('move', help='Move an account to another list position')
    move_cmd.add_argument('account', help='Account id or list position')
    move_cmd.add_argument('position', type=int, help='New 1-based position')

    import_cmd = commands.add_parser('import', help='Import a text file or a JSON backup')
    import_cmd.add_argument('file')
    import_cmd.add_argument('--delimiter', help='Field delimiter (detected when omitted)')
    import_cmd.add_argument('--no-totp', action='store_true',
                            help='Treat the third field as extra information')

    export_cmd = commands.add_parser('export', help='Export accounts')
    export_cmd.add_argument('-o', '--output', help='Output file')
    export_cmd.add_argument('--format', choices=('txt', 'json'), default='txt')
    export_cmd.add_argument('--scope', choices=config.EXPORT_SCOPES, default='all')
    export_cmd.add_argument('--delimiter', default='|')
    export_cmd.add_argument('--fields', help='Comma separated subset of email,password,totp,extras')

    commands.add_parser('codes', help='Print current TOTP codes')
    commands.add_parser('watch', help='Print TOTP codes at every 30 second window')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    app = CredVaultApp(args)
    try:
        return app.run()
    except CredVaultError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        app.cleanup()


if __name__ == "__main__":
    sys.exit(main())
