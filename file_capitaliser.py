#!/usr/bin/env python3
"""
File Capitaliser - Keep markdown note names in sentence case or title case.

Watches a notes directory ("vault") and renames files whose base name is not
in the configured capitalisation:
- New files are renamed after a delay, so an editor can finish creating them
- Modified files are renamed straight away
- On demand: every file in sentence case, every file in title case, or a single
  file in title case

Only the base name changes. The extension and parent directory are kept, and a
file is never renamed when its name is already correct.

Settings live in a small ini file:
    [settings]
    delayMs = 5000
    capitalisationMode = sentence

Version: 1.0.0
"""
__version__ = "1.0.0"

import os
import sys
import time
import logging
import argparse
import threading
import traceback
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from colorama import init, Fore, Style
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from capitalise import CasingMode, compute_renamed_name, preview

# Initialize colorama for cross-platform color support
init()


def get_debug_level() -> str:
    """
    Get the debug level from environment. Returns one of:
    - 'detail': Show every file looked at (CAPITALISE_DEBUG=detail)
    - 'normal': Show renames, failures and settings warnings (CAPITALISE_DEBUG=1 or running tests)
    - 'off': No debug output (default)
    """
    debug_env = os.environ.get('CAPITALISE_DEBUG')
    if debug_env == 'detail':
        return 'detail'
    if 'unittest' in sys.modules or '--debug' in sys.argv or debug_env:
        return 'normal'
    return 'off'


_debug_level = get_debug_level()


def set_debug_level(level: str) -> None:
    global _debug_level
    _debug_level = level


def debug_print(*args, level='normal', **kwargs):
    """Print debug message if level matches current debug level

    Args:
        level: Required debug level ('normal' or 'detail')
    """
    if _debug_level == 'off':
        return
    if level == 'detail' and _debug_level != 'detail':
        return
    print(*args, **kwargs)


def notify_console(message: str, error: bool = False) -> None:
    """Transient user notification: one coloured line on the console."""
    color = Fore.RED if error else Fore.GREEN
    print(f"{color}{message}{Style.RESET_ALL}")


class RenameError(Exception):
    """The host refused a rename (target exists, file gone, permission denied)."""

    def __init__(self, path: str, new_path: str, reason: str):
        super().__init__(f"Cannot rename '{path}' to '{new_path}': {reason}")
        self.path = path
        self.new_path = new_path
        self.reason = reason


class FileGoneError(RenameError):
    """The file was renamed or deleted before the rename reached it."""


class FileRef(NamedTuple):
    """A file as the host sees it. basename has no extension; extension has no dot."""
    path: str
    basename: str
    extension: str
    parent_path: str

    @classmethod
    def from_path(cls, path) -> 'FileRef':
        path = Path(os.fsdecode(path))
        extension = path.suffix[1:]
        basename = path.stem if extension else path.name
        return cls(str(path), basename, extension, str(path.parent))

    def with_basename(self, basename: str) -> str:
        """Path of this file renamed to basename, in the same directory."""
        name = f"{basename}.{self.extension}" if self.extension else basename
        return str(Path(self.parent_path) / name)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class CapitaliseSettings(NamedTuple):
    """Immutable settings value; replace it wholesale with _replace()."""
    delay_ms: int = 5000
    capitalisation_mode: CasingMode = CasingMode.SENTENCE


DEFAULT_SETTINGS = CapitaliseSettings()

SETTINGS_SECTION = 'settings'
SETTINGS_FILENAME = 'capitalise.ini'


def _parse_delay(value: str) -> int:
    delay = int(value)
    if delay < 0:
        raise ValueError(f"delay must not be negative: {delay}")
    return delay


def _parse_mode(value: str) -> CasingMode:
    return CasingMode(value.strip().lower())


# Persisted key -> (settings field, parser)
SETTINGS_KEYS = {
    'delayMs': ('delay_ms', _parse_delay),
    'capitalisationMode': ('capitalisation_mode', _parse_mode),
}


def _home_settings_file() -> str:
    home_dir = os.path.expanduser('~')
    return os.path.join(home_dir, '.config', 'file_capitaliser', 'settings.ini')


def find_settings_file(settings_path: Optional[str] = None) -> Optional[str]:
    """Find the settings file in standard locations.

    Args:
        settings_path: Optional path to settings file

    Returns:
        Path to settings file if found, None otherwise
    """
    # Check locations in order of priority
    locations = []

    # 1. Command-line specified path
    if settings_path:
        locations.append(settings_path)

    # 2. Current directory
    locations.append(os.path.join(os.getcwd(), SETTINGS_FILENAME))

    # 3. User's home directory
    locations.append(_home_settings_file())

    for location in locations:
        if os.path.isfile(location):
            return location

    return None


def load_settings(settings_path: Optional[str] = None) -> CapitaliseSettings:
    """Load settings from the settings file, falling back to defaults.

    The merge is shallow: every key found in the file overrides its default,
    missing, unknown or invalid keys keep the default.

    Args:
        settings_path: Optional path to settings file. If None, will search in standard locations.

    Returns:
        CapitaliseSettings
    """
    settings_file = find_settings_file(settings_path)
    if not settings_file:
        debug_print("No settings file found, using defaults", level='normal')
        return DEFAULT_SETTINGS

    overrides = {}
    try:
        current_section = None
        with open(settings_file, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                # Remove comments and strip whitespace
                line = line.split('#', 1)[0].strip()

                if not line:
                    continue

                if line.startswith('[') and line.endswith(']'):
                    section_name = line[1:-1].strip().lower()
                    if section_name == SETTINGS_SECTION:
                        current_section = section_name
                    else:
                        debug_print(f"Warning: Unknown section '{section_name}' at line {line_num}", level='normal')
                        current_section = None
                    continue

                if not current_section:
                    debug_print(f"Warning: Entry '{line}' at line {line_num} not in any section", level='normal')
                    continue

                key, sep, value = line.partition('=')
                key = key.strip()
                if not sep or key not in SETTINGS_KEYS:
                    debug_print(f"Warning: Unknown setting '{key}' at line {line_num}", level='normal')
                    continue

                field, parse = SETTINGS_KEYS[key]
                try:
                    overrides[field] = parse(value.strip())
                except ValueError:
                    debug_print(f"Warning: Invalid value '{value.strip()}' for {key} at line {line_num}", level='normal')
    except OSError as e:
        debug_print(f"Error reading settings file: {e}", level='normal')
        return DEFAULT_SETTINGS

    debug_print(f"Loaded settings from {settings_file}: {overrides}", level='normal')
    return DEFAULT_SETTINGS._replace(**overrides)


def save_settings(settings: CapitaliseSettings, settings_path: Optional[str] = None) -> str:
    """Write settings to settings_path, the file they were found in, or the home location.

    Returns:
        Path of the file written
    """
    target = settings_path or find_settings_file() or _home_settings_file()
    os.makedirs(os.path.dirname(os.path.abspath(target)), exist_ok=True)
    with open(target, 'w', encoding='utf-8') as f:
        f.write("# File Capitaliser settings\n")
        f.write(f"[{SETTINGS_SECTION}]\n")
        f.write(f"delayMs = {settings.delay_ms}\n")
        f.write(f"capitalisationMode = {settings.capitalisation_mode.value}\n")
    debug_print(f"Saved settings to {target}", level='normal')
    return target


# ---------------------------------------------------------------------------
# Host: a directory of markdown files
# ---------------------------------------------------------------------------

class VaultEventHandler(FileSystemEventHandler):
    """Forward create/modify events for markdown files as FileRefs."""

    def __init__(self, vault: 'DirectoryVault',
                 on_create: Callable[[FileRef], None],
                 on_modify: Callable[[FileRef], None]):
        super().__init__()
        self.vault = vault
        self.on_create = on_create
        self.on_modify = on_modify

    def _file_ref(self, event: FileSystemEvent) -> Optional[FileRef]:
        if event.is_directory:
            return None
        path = os.fsdecode(event.src_path)
        if not self.vault.is_tracked(path):
            return None
        return FileRef.from_path(path)

    def on_created(self, event: FileSystemEvent) -> None:
        file_ref = self._file_ref(event)
        if file_ref:
            debug_print(f"File created: {file_ref.path!r}", level='detail')
            self.on_create(file_ref)

    def on_modified(self, event: FileSystemEvent) -> None:
        file_ref = self._file_ref(event)
        if file_ref:
            debug_print(f"File modified: {file_ref.path!r}", level='detail')
            self.on_modify(file_ref)


class SettingsFileHandler(FileSystemEventHandler):
    """Call on_change whenever one settings file is written or replaced."""

    def __init__(self, settings_file: str, on_change: Callable[[str], None]):
        super().__init__()
        self.settings_file = os.path.abspath(settings_file)
        self.on_change = on_change

    def _is_settings_file(self, path) -> bool:
        return bool(path) and os.path.abspath(os.fsdecode(path)) == self.settings_file

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ('created', 'modified', 'moved'):
            return
        # Editors often save by writing a temporary file and moving it into place
        if self._is_settings_file(event.src_path) or self._is_settings_file(getattr(event, 'dest_path', '')):
            debug_print(f"Settings file changed: {self.settings_file!r}", level='detail')
            self.on_change(self.settings_file)


class DirectoryVault:
    """Lists, renames and watches the markdown files under one directory.

    Directories whose name starts with a period (.git, .obsidian, ...) are skipped.
    """

    MARKDOWN_EXTENSIONS = {'md'}

    def __init__(self, directory: str = '.'):
        self.directory = Path(directory)
        self._observer = None

    def is_tracked(self, path) -> bool:
        path = Path(path)
        if path.suffix[1:].lower() not in self.MARKDOWN_EXTENSIONS:
            return False
        try:
            relative = path.resolve().relative_to(self.directory.resolve())
        except ValueError:
            return False
        return not any(part.startswith('.') for part in relative.parts[:-1])

    def list_markdown_files(self) -> List[FileRef]:
        files = []
        for path in sorted(self.directory.rglob('*')):
            if path.is_file() and self.is_tracked(path):
                files.append(FileRef.from_path(path))
        debug_print(f"Found {len(files)} markdown files in {self.directory}", level='detail')
        return files

    @staticmethod
    def _same_file(source: Path, target: Path) -> bool:
        # Case-only renames on case-insensitive filesystems see the target as existing
        try:
            return os.path.samefile(source, target)
        except OSError:
            return False

    def rename_file(self, file_ref: FileRef, new_path: str) -> None:
        """Rename file_ref to new_path.

        Raises:
            FileGoneError: if the file no longer exists
            RenameError: if the target exists or the OS refuses
        """
        source = Path(file_ref.path)
        target = Path(new_path)
        if not source.exists():
            raise FileGoneError(file_ref.path, new_path, 'file no longer exists')
        if target.exists() and not self._same_file(source, target):
            raise RenameError(file_ref.path, new_path, 'target already exists')
        try:
            os.rename(source, target)
        except OSError as e:
            raise RenameError(file_ref.path, new_path, e.strerror or str(e)) from e

    def watch(self, on_create: Callable[[FileRef], None], on_modify: Callable[[FileRef], None]) -> None:
        """Start delivering create/modify events from a background observer thread."""
        if self._observer:
            raise RuntimeError("Vault is already being watched")
        handler = VaultEventHandler(self, on_create, on_modify)
        self._observer = Observer()
        self._observer.schedule(handler, str(self.directory), recursive=True)
        self._observer.start()
        debug_print(f"Watching {self.directory}", level='normal')

    def watch_settings(self, settings_file: str, on_change: Callable[[str], None]) -> None:
        """Also report changes to settings_file, on the observer started by watch()."""
        if not self._observer:
            raise RuntimeError("Call watch() before watch_settings()")
        directory = os.path.dirname(os.path.abspath(settings_file))
        os.makedirs(directory, exist_ok=True)
        self._observer.schedule(SettingsFileHandler(settings_file, on_change), directory, recursive=False)
        debug_print(f"Watching settings file {settings_file}", level='normal')

    def stop(self) -> None:
        if not self._observer:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class RenameReport:
    """Outcome of a bulk rename. Failures are collected, never raised."""

    def __init__(self):
        self.renamed: List[Tuple[str, str]] = []
        self.failures: List[RenameError] = []
        self.unchanged = 0

    def __repr__(self):
        return (f"RenameReport(renamed={len(self.renamed)}, "
                f"failures={len(self.failures)}, unchanged={self.unchanged})")


class RenameCoordinator:
    """Decide when to rename files and with which capitalisation.

    - create events: rename after settings.delay_ms, cancellable, one pending rename per path
    - modify events: rename immediately with the configured mode
    - commands: all files (sentence / title) or the current file (title)
    """

    def __init__(self, vault, settings: CapitaliseSettings = DEFAULT_SETTINGS,
                 notify: Optional[Callable[..., None]] = None, dry_run: bool = False):
        """
        Args:
            vault: Host exposing list_markdown_files() and rename_file(file_ref, new_path)
            settings: Initial settings
            notify: Called with a message (and error=True for failures) when a command finishes
            dry_run: If True, compute new names but never rename
        """
        self.vault = vault
        self.settings = settings
        self.notify = notify or notify_console
        self.dry_run = dry_run
        self._pending: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False

    def update_settings(self, settings: CapitaliseSettings) -> None:
        self.settings = settings

    def reload_settings(self, settings_file: str) -> CapitaliseSettings:
        """Read settings_file again and use it from the next rename on."""
        settings = load_settings(settings_file)
        if settings != self.settings:
            self.update_settings(settings)
            self.notify(f"Settings reloaded: {settings.capitalisation_mode.value} case, "
                        f"{settings.delay_ms} ms delay for new files.")
        return settings

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def capitalise_file(self, file_ref: FileRef, mode) -> Optional[str]:
        """Rename one file to the given capitalisation.

        Returns:
            The new path, or None if the name is already correct

        Raises:
            RenameError: if the host refuses the rename
        """
        new_basename = compute_renamed_name(file_ref.basename, mode)
        if new_basename == file_ref.basename:
            debug_print(f"Unchanged: {file_ref.path!r}", level='detail')
            return None

        new_path = file_ref.with_basename(new_basename)
        if self.dry_run:
            debug_print(f"Would rename: {file_ref.path!r} -> {new_path!r}", level='normal')
            return new_path

        self.vault.rename_file(file_ref, new_path)
        debug_print(f"Renamed: {file_ref.path!r} -> {new_path!r}", level='normal')
        # A delayed rename of the old path has nothing left to do
        self._drop_pending(file_ref.path)
        return new_path

    def capitalise_all_file_names(self, mode) -> RenameReport:
        """Rename every markdown file, one after the other.

        A failed rename is recorded in the report and the next file is tried.
        """
        report = RenameReport()
        for file_ref in self.vault.list_markdown_files():
            try:
                new_path = self.capitalise_file(file_ref, mode)
            except RenameError as e:
                debug_print(f"Warning: {e}", level='normal')
                report.failures.append(e)
                continue
            if new_path is None:
                report.unchanged += 1
            else:
                report.renamed.append((file_ref.path, new_path))
        return report

    def capitalise_current_file(self, file_ref: FileRef) -> Optional[str]:
        return self.capitalise_file(file_ref, CasingMode.TITLE)

    # Commands

    def _finish_bulk(self, report: RenameReport, message: str) -> RenameReport:
        for failure in report.failures:
            self.notify(str(failure), error=True)
        self.notify(message)
        return report

    def rename_all_sentence(self) -> RenameReport:
        report = self.capitalise_all_file_names(CasingMode.SENTENCE)
        return self._finish_bulk(report, 'All file names capitalised (Sentence case).')

    def rename_all_title(self) -> RenameReport:
        report = self.capitalise_all_file_names(CasingMode.TITLE)
        return self._finish_bulk(report, 'All file names capitalised (Title Case).')

    def rename_current_title(self, file_ref: FileRef) -> Optional[str]:
        new_path = self.capitalise_current_file(file_ref)
        self.notify('Current file name capitalised (Title Case).')
        return new_path

    # Host events

    def _report_failure(self, error: RenameError) -> None:
        debug_print(f"Warning: {error}", level='normal')
        self.notify(str(error), error=True)

    def _rename_reporting_errors(self, file_ref: FileRef) -> Optional[str]:
        try:
            return self.capitalise_file(file_ref, self.settings.capitalisation_mode)
        except RenameError as e:
            self._report_failure(e)
            return None

    def handle_file_modify(self, file_ref: FileRef) -> Optional[str]:
        if self._closed:
            return None
        return self._rename_reporting_errors(file_ref)

    def handle_file_create(self, file_ref: FileRef) -> None:
        """Schedule a rename of a new file after settings.delay_ms.

        A second create for the same path restarts the delay.
        """
        with self._lock:
            if self._closed:
                return
            previous = self._pending.pop(file_ref.path, None)
            if previous:
                previous.cancel()
            timer = threading.Timer(self.settings.delay_ms / 1000.0, self._run_pending, args=(file_ref,))
            timer.daemon = True
            self._pending[file_ref.path] = timer
            timer.start()
        debug_print(f"Scheduled rename of {file_ref.path!r} in {self.settings.delay_ms} ms", level='detail')

    def _run_pending(self, file_ref: FileRef) -> None:
        with self._lock:
            # Replaced or cancelled while waiting
            if self._closed or self._pending.get(file_ref.path) is not threading.current_thread():
                return
            del self._pending[file_ref.path]
        try:
            self.capitalise_file(file_ref, self.settings.capitalisation_mode)
        except FileGoneError:
            debug_print(f"Skipped {file_ref.path!r}: renamed or deleted while waiting", level='normal')
        except RenameError as e:
            self._report_failure(e)

    def _drop_pending(self, path: str) -> None:
        with self._lock:
            timer = self._pending.pop(path, None)
        if timer:
            timer.cancel()

    def close(self) -> None:
        """Cancel every pending rename; later events are ignored."""
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for timer in pending:
            timer.cancel()
        if pending:
            debug_print(f"Cancelled {len(pending)} pending renames", level='normal')


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _print_changes(renamed: List[Tuple[str, str]], dry_run: bool) -> None:
    if not renamed:
        print("\nNo files need to be renamed.")
        return
    if dry_run:
        print(f"\n{Fore.YELLOW}Proposed changes (dry run):{Style.RESET_ALL}\n")
    else:
        print("\nExecuted changes:\n")
    for old, new in renamed:
        print(f"   {old}\n-> {Fore.CYAN}{new}{Style.RESET_ALL}\n")


def _resolve_file(directory: Path, name: str) -> Path:
    path = Path(name)
    if not path.is_absolute() and not path.exists():
        path = directory / path
    return path


def _watch(vault: DirectoryVault, coordinator: RenameCoordinator, settings_file: str) -> None:
    vault.watch(coordinator.handle_file_create, coordinator.handle_file_modify)
    vault.watch_settings(settings_file, coordinator.reload_settings)
    print(f"Watching {vault.directory} ({coordinator.settings.capitalisation_mode.value} case, "
          f"{coordinator.settings.delay_ms} ms delay for new files). Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping.")
    finally:
        coordinator.close()
        vault.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Capitalise markdown file names."""
    parser = argparse.ArgumentParser(
        description='Rename markdown files to sentence case or title case',
        add_help=True,  # This adds -h/--help by default
    )
    parser.add_argument('directory', nargs='?', default='.',
                      help='Directory containing the markdown files')
    parser.add_argument('--rename-all', choices=[m.value for m in CasingMode],
                      help='Capitalise all file names in the given case')
    parser.add_argument('--rename-current', metavar='FILE',
                      help='Capitalise one file name in title case')
    parser.add_argument('--watch', action='store_true',
                      help='Rename new and modified files until interrupted')
    parser.add_argument('--mode', choices=[m.value for m in CasingMode],
                      help='Capitalisation used for new and modified files')
    parser.add_argument('--delay-ms', type=int,
                      help='Wait time before renaming a newly created file')
    parser.add_argument('--save-settings', action='store_true',
                      help='Store --mode and --delay-ms in the settings file')
    parser.add_argument('--dry-run', action='store_true',
                      help='Show what would be renamed without making changes')
    parser.add_argument('--debug', action='store_true',
                      help='Enable debug output')
    parser.add_argument('--settings', dest='settings_path',
                      help='Path to custom settings file')

    # Add a custom -? help option
    parser.add_argument('-?', action='help',
                      help='Show this help message and exit')

    args = parser.parse_args(argv)

    if args.debug:
        set_debug_level('detail')

    if args.delay_ms is not None and args.delay_ms < 0:
        parser.error('--delay-ms must not be negative')

    settings = load_settings(args.settings_path)
    if args.mode:
        settings = settings._replace(capitalisation_mode=CasingMode(args.mode))
    if args.delay_ms is not None:
        settings = settings._replace(delay_ms=args.delay_ms)

    if args.mode or args.delay_ms is not None or args.save_settings:
        print(preview(settings.capitalisation_mode))
        if args.save_settings:
            saved_to = save_settings(settings, args.settings_path)
            notify_console(f"Settings saved to {saved_to}")

    if not (args.rename_all or args.rename_current or args.watch):
        if not (args.mode or args.delay_ms is not None or args.save_settings):
            parser.print_help()
        return 0

    # Check if user is trying to run in the program's directory
    directory_path = Path(args.directory).resolve()
    program_dir = Path(__file__).parent.resolve()

    if directory_path == program_dir:
        print("WARNING: You are attempting to run this program on its own directory.")
        print("Please specify a different directory to process.")
        print("Example: python file_capitaliser.py ~/Notes --rename-all title --dry-run")
        return 1

    if not directory_path.exists():
        print(f"Error: Directory '{directory_path}' does not exist.")
        return 1
    elif not directory_path.is_dir():
        print(f"Error: '{directory_path}' is not a directory.")
        return 1

    vault = DirectoryVault(str(directory_path))
    coordinator = RenameCoordinator(vault, settings, dry_run=args.dry_run)

    if args.rename_current:
        path = _resolve_file(directory_path, args.rename_current)
        if not path.is_file():
            print(f"Error: '{path}' is not a file.")
            return 1
        try:
            new_path = coordinator.rename_current_title(FileRef.from_path(path))
        except RenameError as e:
            notify_console(str(e), error=True)
            return 1
        _print_changes([(str(path), new_path)] if new_path else [], args.dry_run)
        return 0

    if args.rename_all:
        if args.rename_all == CasingMode.TITLE.value:
            report = coordinator.rename_all_title()
        else:
            report = coordinator.rename_all_sentence()
        _print_changes(report.renamed, args.dry_run)
        return 1 if report.failures else 0

    _watch(vault, coordinator, args.settings_path or find_settings_file() or _home_settings_file())
    return 0


# Define a custom exception handler that will only be installed when this file is run directly (not when run with pytest)
def global_exception_handler(exc_type, exc_value, exc_traceback):
    # Get the most recent frame from the traceback for location information
    tb_frame = traceback.extract_tb(exc_traceback)[-1] if exc_traceback else None
    file_info = f" in {tb_frame.filename}:{tb_frame.lineno} (function: {tb_frame.name})" if tb_frame else ""

    sys.stderr.write("\n==== GLOBAL EXCEPTION HANDLER ====\n")
    sys.stderr.write(f"Unhandled exception: {exc_type.__name__}: {exc_value}{file_info}\n")
    sys.stderr.write("\nDetailed traceback:\n")
    sys.stderr.write(''.join(traceback.format_exception(exc_type, exc_value, exc_traceback)))
    sys.stderr.write("\nPlease report this error with the above information.\n")
    sys.stderr.write("==== END EXCEPTION HANDLER ====\n")
    sys.stderr.flush()


if __name__ == '__main__':
    # Only install the exception handler when running this file directly
    # This prevents it from interfering with pytest's exception handling
    sys.excepthook = global_exception_handler

    logging.basicConfig(level=logging.WARNING)
    sys.exit(main())
