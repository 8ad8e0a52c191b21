# /replica_sync.py
"""
Replica Sync
- One-way periodic reconciliation: makes a replica folder match a source folder.
- Each cycle scans both trees, copies new/changed files, deletes files and
  empty folders that no longer exist in the source, and mirrors folders.
- Change detection: mtime with a 2 second tolerance, optional content hash.
- Crash-safe copies: bytes go to "<target>.tmp_copy" first and are renamed
  over the target, so the replica never holds a half-written file.
- Optional gitignore-style excludes (excluded source paths count as absent).
- Remembers last settings across restarts via ~/.replica_sync/config.json
- Optional --watch wakes the next cycle early when the source changes.
- Styled console output:
  - new green, update cyan
  - del file / del folder orange
  - errors red
- Log file is always plain (no color codes) and append-only.

Usage
  pip install watchdog pathspec colorama
  python replica_sync.py --source "/src" --replica "/dst" --interval 30 --log sync.log
  python replica_sync.py --source "/src" --replica "/dst" --interval 30 --log sync.log --hash --watch
"""

from __future__ import annotations

import argparse
import datetime as dt
import enum
import hashlib
import json
import logging
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from pathspec import PathSpec
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

try:
    from colorama import init as colorama_init  # type: ignore
except Exception:  # pragma: no cover
    colorama_init = None

APP_DIR = Path.home() / ".replica_sync"
CONFIG_PATH = APP_DIR / "config.json"

LOGGER_NAME = "replica_sync"

# Policy constants. run_once/classify accept overrides.
MTIME_TOLERANCE_SEC = 2.0
HASH_ALGORITHM = "md5"
HASH_CHUNK_SIZE = 1024 * 1024
COPY_CHUNK_SIZE = 1024 * 1024
# Fixed per target, so a real source file "<name>.tmp_copy" shares it with "<name>";
# run_once copies such files after their base file.
TEMP_SUFFIX = ".tmp_copy"

# Windows and macOS filesystems are case-insensitive by default. Keys are folded
# only there: on Linux "A.txt" and "a.txt" are two files and must stay two keys.
CASE_INSENSITIVE_PATHS = sys.platform in ("win32", "darwin")

ACTION_NEW = "new"
ACTION_UPDATE = "update"
ACTION_DEL_FILE = "del file"
ACTION_DEL_FOLDER = "del folder"
ACTION_MKDIR = "mkdir"


# -------------------------
# Errors
# -------------------------

class SyncError(Exception):
    pass


class ConfigurationError(SyncError):
    """Invalid or missing settings; fatal before any cycle runs."""


class SyncCancelled(SyncError):
    """Raised inside a cycle when the stop event is observed."""


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    CYAN = "\x1b[36m"
    ORANGE = "\x1b[38;5;208m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    ACTION_NEW: Ansi.GREEN,
    ACTION_UPDATE: Ansi.CYAN,
    ACTION_DEL_FILE: Ansi.ORANGE,
    ACTION_DEL_FOLDER: Ansi.ORANGE,
    ACTION_MKDIR: Ansi.LIGHT_BROWN,
}

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action:
            tag = f"[{action}]"
            color = ACTION_COLORS.get(action, "")
            if color and tag in base:
                base = base.replace(tag, f"{color}{tag}{Ansi.RESET}", 1)
        return base


def setup_logger(log_file: Path) -> logging.Logger:
    """Console + append-only file logger. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    log_file.parent.mkdir(parents=True, exist_ok=True)

    if colorama_init:
        colorama_init()

    fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_file)
    return logger


def teardown_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def log_action(
    logger: logging.Logger,
    action: str,
    rel_path: str,
    level: int = logging.INFO,
    error: Optional[BaseException] = None,
) -> None:
    message = f"[{action}] {rel_path}"
    if error is not None:
        message = f"{message} | {error}"
    logger.log(level, message, extra={"action": action, "path_text": rel_path})


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class SyncConfig:
    source: Path
    replica: Path
    interval_sec: float
    log_file: Path
    use_hash: bool = False
    exclude: tuple[str, ...] = ()
    watch: bool = False
    once: bool = False


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Keep a replica folder identical to a source folder.")
    p.add_argument("--source", type=str, default=None, help="Folder to mirror (read only).")
    p.add_argument("--replica", type=str, default=None, help="Folder kept in sync with the source.")
    p.add_argument("--interval", type=float, default=None, help="Seconds between sync cycles.")
    p.add_argument("--log", type=str, default=None, help="Log file path (appended to).")
    p.add_argument("--hash", action=argparse.BooleanOptionalAction, default=None, help="Compare file contents when timestamps match.")
    p.add_argument("--exclude", action="append", default=None, metavar="PATTERN",
                   help="Gitignore-style pattern to leave out of the replica (repeatable).")
    p.add_argument("--watch", action="store_true", help="Start the next cycle early when the source changes.")
    p.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH), help="Saved settings file.")
    p.add_argument("--no-save", action="store_true", help="Do not remember these settings.")
    return p.parse_args(argv)


def load_config_file(path: Path = CONFIG_PATH) -> dict:
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def save_config_file(cfg: SyncConfig, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "source": str(cfg.source),
        "replica": str(cfg.replica),
        "interval_sec": cfg.interval_sec,
        "log_file": str(cfg.log_file),
        "use_hash": cfg.use_hash,
        "exclude": list(cfg.exclude),
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def build_effective_config(args: argparse.Namespace) -> SyncConfig:
    saved = load_config_file(Path(args.config))

    source = args.source or saved.get("source")
    replica = args.replica or saved.get("replica")
    log_file = args.log or saved.get("log_file")
    interval = args.interval if args.interval is not None else saved.get("interval_sec")
    use_hash = args.hash if args.hash is not None else bool(saved.get("use_hash", False))
    exclude = args.exclude if args.exclude is not None else saved.get("exclude", [])

    if not source:
        raise ConfigurationError("--source is required")
    if not replica:
        raise ConfigurationError("--replica is required")
    if interval is None:
        raise ConfigurationError("--interval is required")
    if not log_file:
        raise ConfigurationError("--log is required")

    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise ConfigurationError(f"--interval must be a number, got {interval!r}") from None
    if interval <= 0:
        raise ConfigurationError("--interval must be a positive number")

    return SyncConfig(
        source=Path(source),
        replica=Path(replica),
        interval_sec=interval,
        log_file=Path(log_file).expanduser().resolve(),
        use_hash=use_hash,
        exclude=tuple(exclude),
        watch=bool(args.watch),
        once=bool(args.once),
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def _same_path(a: Path, b: Path) -> bool:
    return os.path.normcase(str(a)) == os.path.normcase(str(b))


def validate_paths(source: Path, replica: Path) -> tuple[Path, Path]:
    source = source.expanduser().resolve()
    replica = replica.expanduser().resolve()

    if not source.exists() or not source.is_dir():
        raise ConfigurationError(f"Source folder does not exist or is not a folder: {source}")
    if _same_path(source, replica):
        raise ConfigurationError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ConfigurationError("Replica folder must NOT be inside the source folder.")
    if _is_subpath(source, replica):
        raise ConfigurationError("Source folder must NOT be inside the replica folder.")

    try:
        replica.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create replica folder {replica}: {e}") from e
    return source, replica


# -------------------------
# Context
# -------------------------

class SyncContext:
    """Logger plus stop/wake events shared by the driver, signal handlers and cycles."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.stop_event = threading.Event()
        self.wake_event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        self.stop_event.set()
        self.wake_event.set()

    def check_cancelled(self) -> None:
        if self.stop_event.is_set():
            raise SyncCancelled("stop requested")

    def wait(self, timeout: float) -> None:
        self.wake_event.wait(timeout)
        self.wake_event.clear()


# -------------------------
# Exclusion
# -------------------------

class IgnoreMatcher:
    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = [p for p in patterns if p and p.strip()]
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if not self.patterns:
            return False
        rel_posix = rel_path
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)


# -------------------------
# Metadata scanner
# -------------------------

@dataclass(frozen=True)
class FileMeta:
    rel_path: str
    full_path: Path
    size: int
    mtime: float

    @property
    def last_write_utc(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.mtime, tz=dt.timezone.utc)


def path_key(rel_path: str, fold_case: Optional[bool] = None) -> str:
    if fold_case is None:
        fold_case = CASE_INSENSITIVE_PATHS
    # A backslash is an ordinary filename character on POSIX.
    if os.altsep:
        rel_path = rel_path.replace(os.sep, "/")
    key = PurePosixPath(rel_path).as_posix()
    return key.casefold() if fold_case else key


def _raise(err: OSError) -> None:
    raise err


def _walk(root: Path, ignore: Optional[IgnoreMatcher]):
    """os.walk that raises on unreadable folders and prunes excluded ones."""
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        if ignore:
            dirnames[:] = [
                d for d in dirnames
                if not ignore.is_ignored(f"{rel_dir}/{d}" if rel_dir else d, is_dir=True)
            ]
        yield dirpath, rel_dir, dirnames, filenames


def _join_rel(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


def scan(root: Path, ignore: Optional[IgnoreMatcher] = None) -> dict[str, FileMeta]:
    """
    Map every regular file under root to its metadata, keyed by path_key().
    Files that vanish between listing and stat are skipped; an unreadable
    folder raises OSError.
    """
    root = Path(root)
    snapshot: dict[str, FileMeta] = {}
    for dirpath, rel_dir, _dirnames, filenames in _walk(root, ignore):
        for name in filenames:
            rel = _join_rel(rel_dir, name)
            if ignore and ignore.is_ignored(rel):
                continue
            full = Path(dirpath, name)
            try:
                st = full.stat()
            except FileNotFoundError:
                continue
            snapshot[path_key(rel)] = FileMeta(rel_path=rel, full_path=full, size=st.st_size, mtime=st.st_mtime)
    return snapshot


def list_dirs(root: Path, ignore: Optional[IgnoreMatcher] = None) -> list[str]:
    root = Path(root)
    found: list[str] = []
    for _dirpath, rel_dir, dirnames, _filenames in _walk(root, ignore):
        found.extend(_join_rel(rel_dir, d) for d in dirnames)
    return found


# -------------------------
# Change classifier
# -------------------------

class Change(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"


def file_digest(path: Path, algorithm: str = HASH_ALGORITHM, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    h = hashlib.new(algorithm)
    with Path(path).open("rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


def classify(
    src: FileMeta,
    dst: Optional[FileMeta],
    use_hash: bool = False,
    tolerance: float = MTIME_TOLERANCE_SEC,
    algorithm: str = HASH_ALGORITHM,
) -> Change:
    if dst is None:
        return Change.CREATE
    if abs(src.mtime - dst.mtime) > tolerance:
        return Change.UPDATE
    if not use_hash:
        return Change.UNCHANGED
    if file_digest(src.full_path, algorithm) == file_digest(dst.full_path, algorithm):
        return Change.UNCHANGED
    return Change.UPDATE


# -------------------------
# Atomic file transfer
# -------------------------

def temp_path_for(target: Path) -> Path:
    return target.with_name(target.name + TEMP_SUFFIX)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_copy(source: Path, target: Path, cancel: Optional[threading.Event] = None) -> bool:
    """
    Copy source over target through a sibling temp file and an atomic rename.

    Returns False without touching the replica when the source is a folder or
    no longer exists. On failure the temp file is removed and the original
    error is re-raised; the target keeps its previous content.
    """
    source = Path(source)
    target = Path(target)
    if source.is_dir() or not source.exists():
        return False

    tmp = temp_path_for(target)
    try:
        ensure_parent(target)
        with source.open("rb") as fin, tmp.open("wb") as fout:
            while True:
                if cancel is not None and cancel.is_set():
                    raise SyncCancelled(f"copy of {source} interrupted")
                chunk = fin.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                fout.write(chunk)
            fout.flush()
            os.fsync(fout.fileno())
        st = source.stat()
        os.utime(tmp, ns=(st.st_atime_ns, st.st_mtime_ns))
        os.replace(tmp, target)
    except Exception as e:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        if isinstance(e, FileNotFoundError) and not source.exists():
            return False
        raise
    return True


# -------------------------
# Tree reconciler
# -------------------------

@dataclass(frozen=True)
class ItemResult:
    action: str
    rel_path: str
    error: Optional[OSError] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)
    created_dirs: list[str] = field(default_factory=list)
    deleted_dirs: list[str] = field(default_factory=list)
    failures: list[ItemResult] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def changes(self) -> int:
        return (
            len(self.created)
            + len(self.updated)
            + len(self.deleted_files)
            + len(self.created_dirs)
            + len(self.deleted_dirs)
        )

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    def record(self, result: ItemResult, logger: logging.Logger) -> None:
        if result.skipped:
            return
        if not result.ok:
            self.failures.append(result)
            log_action(logger, result.action, result.rel_path, level=logging.ERROR, error=result.error)
            return

        bucket = {
            ACTION_NEW: self.created,
            ACTION_UPDATE: self.updated,
            ACTION_DEL_FILE: self.deleted_files,
            ACTION_MKDIR: self.created_dirs,
            ACTION_DEL_FOLDER: self.deleted_dirs,
        }[result.action]
        bucket.append(result.rel_path)
        log_action(logger, result.action, result.rel_path)


def copy_item(action: str, src: FileMeta, target: Path, ctx: SyncContext) -> ItemResult:
    try:
        copied = atomic_copy(src.full_path, target, cancel=ctx.stop_event)
    except OSError as e:
        return ItemResult(action, src.rel_path, error=e)
    return ItemResult(action, src.rel_path, skipped=not copied)


def delete_file(meta: FileMeta) -> ItemResult:
    try:
        meta.full_path.unlink()
    except FileNotFoundError:
        # Already gone, e.g. a stale temp file consumed by this cycle's copy.
        return ItemResult(ACTION_DEL_FILE, meta.rel_path, skipped=True)
    except OSError as e:
        return ItemResult(ACTION_DEL_FILE, meta.rel_path, error=e)
    return ItemResult(ACTION_DEL_FILE, meta.rel_path)


def make_dir(replica: Path, rel_dir: str) -> ItemResult:
    target = replica / rel_dir
    if target.is_dir():
        return ItemResult(ACTION_MKDIR, rel_dir, skipped=True)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return ItemResult(ACTION_MKDIR, rel_dir, error=e)
    return ItemResult(ACTION_MKDIR, rel_dir)


def delete_dir_if_orphan(source: Path, replica: Path, rel_dir: str, ignore: Optional[IgnoreMatcher]) -> ItemResult:
    excluded = bool(ignore) and ignore.is_ignored(rel_dir, is_dir=True)
    if (source / rel_dir).is_dir() and not excluded:
        return ItemResult(ACTION_DEL_FOLDER, rel_dir, skipped=True)

    target = replica / rel_dir
    try:
        if any(target.iterdir()):
            return ItemResult(ACTION_DEL_FOLDER, rel_dir, skipped=True)
        target.rmdir()
    except OSError as e:
        return ItemResult(ACTION_DEL_FOLDER, rel_dir, error=e)
    return ItemResult(ACTION_DEL_FOLDER, rel_dir)


def depth(rel_path: str) -> int:
    return len(PurePosixPath(rel_path).parts)


def run_once(
    source: Path,
    replica: Path,
    use_hash: bool = False,
    *,
    ctx: Optional[SyncContext] = None,
    ignore: Optional[IgnoreMatcher] = None,
    tolerance: float = MTIME_TOLERANCE_SEC,
    algorithm: str = HASH_ALGORITHM,
) -> CycleReport:
    """
    One reconciliation cycle: copy new/changed files, delete orphan files,
    mirror source folders, then delete empty orphan folders deepest first.

    Per-item failures are recorded in the report and logged; an unreadable
    source or replica root raises OSError.
    """
    ctx = ctx or SyncContext()
    source = Path(source)
    replica = Path(replica)
    report = CycleReport()
    started = time.monotonic()

    try:
        replica.mkdir(parents=True, exist_ok=True)
        src_tree = scan(source, ignore=ignore)
        dst_tree = scan(replica)

        attempted: set[str] = set()
        # Names ending in TEMP_SUFFIX go last: copying their base file may consume them.
        for key, src_meta in sorted(src_tree.items(), key=lambda kv: kv[0].endswith(TEMP_SUFFIX)):
            ctx.check_cancelled()
            dst_meta = dst_tree.get(key)
            if (
                dst_meta is not None
                and key.endswith(TEMP_SUFFIX)
                and key[: -len(TEMP_SUFFIX)] in attempted
                and not dst_meta.full_path.exists()
            ):
                dst_meta = None
            try:
                change = classify(src_meta, dst_meta, use_hash, tolerance, algorithm)
            except OSError as e:
                report.record(ItemResult(ACTION_UPDATE, src_meta.rel_path, error=e), ctx.logger)
                continue

            if change is Change.UNCHANGED:
                continue
            action = ACTION_NEW if change is Change.CREATE else ACTION_UPDATE
            target = dst_meta.full_path if dst_meta is not None else replica / src_meta.rel_path
            attempted.add(key)
            report.record(copy_item(action, src_meta, target, ctx), ctx.logger)

        for key in dst_tree.keys() - src_tree.keys():
            ctx.check_cancelled()
            report.record(delete_file(dst_tree[key]), ctx.logger)

        for rel_dir in list_dirs(source, ignore=ignore):
            ctx.check_cancelled()
            report.record(make_dir(replica, rel_dir), ctx.logger)

        for rel_dir in sorted(list_dirs(replica), key=depth, reverse=True):
            ctx.check_cancelled()
            report.record(delete_dir_if_orphan(source, replica, rel_dir, ignore), ctx.logger)
    except SyncCancelled:
        report.cancelled = True
    finally:
        report.duration = time.monotonic() - started

    return report


# -------------------------
# Source watcher
# -------------------------

# Reading the source while copying produces these; they must not wake the loop.
PASSIVE_EVENTS = {"opened", "closed_no_write"}


class SourceChangeHandler(FileSystemEventHandler):
    def __init__(self, source: Path, ctx: SyncContext, ignore: Optional[IgnoreMatcher] = None):
        self.source = source
        self.ctx = ctx
        self.ignore = ignore

    def _is_relevant(self, event) -> bool:
        if event.event_type in PASSIVE_EVENTS:
            return False
        if not self.ignore:
            return True
        try:
            rel = Path(os.fsdecode(event.src_path)).relative_to(self.source).as_posix()
        except ValueError:
            return True
        return not self.ignore.is_ignored(rel, is_dir=bool(event.is_directory))

    def on_any_event(self, event):
        if self._is_relevant(event):
            self.ctx.wake_event.set()


def start_watcher(source: Path, ctx: SyncContext, ignore: Optional[IgnoreMatcher] = None) -> Observer:
    observer = Observer()
    observer.schedule(SourceChangeHandler(source, ctx, ignore), str(source), recursive=True)
    observer.start()
    return observer


# -------------------------
# Driver
# -------------------------

def run_forever(cfg: SyncConfig, ctx: SyncContext) -> None:
    ignore = IgnoreMatcher(cfg.exclude)
    logger = ctx.logger

    while not ctx.cancelled:
        try:
            report = run_once(cfg.source, cfg.replica, cfg.use_hash, ctx=ctx, ignore=ignore)
            if report.cancelled:
                logger.info("-- interrupted after %.3fs --", report.duration)
            else:
                logger.info(
                    "-- completed in %.3fs (%d changes, %d failures) --",
                    report.duration,
                    report.changes,
                    len(report.failures),
                )
        except Exception as e:
            logger.error("Sync cycle failed: %s", e)
            logger.debug("Sync cycle traceback", exc_info=True)

        if cfg.once:
            break
        ctx.wait(cfg.interval_sec)


def install_signal_handlers(ctx: SyncContext) -> None:
    def _handle(signum, _frame):
        ctx.logger.info("stopping...")
        ctx.cancel()

    signal.signal(signal.SIGINT, _handle)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle)


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        cfg = build_effective_config(args)
    except ConfigurationError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    logger = setup_logger(cfg.log_file)

    try:
        source, replica = validate_paths(cfg.source, cfg.replica)
    except ConfigurationError as e:
        logger.error("Config error: %s", e)
        return 2

    cfg = SyncConfig(
        source=source,
        replica=replica,
        interval_sec=cfg.interval_sec,
        log_file=cfg.log_file,
        use_hash=cfg.use_hash,
        exclude=cfg.exclude,
        watch=cfg.watch,
        once=cfg.once,
    )
    logger.info(
        "Starting: source='%s', replica='%s', interval=%ss, hashCompare=%s",
        cfg.source,
        cfg.replica,
        cfg.interval_sec,
        cfg.use_hash,
    )

    if not args.no_save:
        config_path = Path(args.config)
        try:
            save_config_file(cfg, config_path)
            logger.info("Saved config: %s", config_path)
        except OSError as e:
            logger.error("Could not save config: %s", e)

    ctx = SyncContext(logger)
    install_signal_handlers(ctx)

    observer = None
    if cfg.watch and not cfg.once:
        observer = start_watcher(cfg.source, ctx, IgnoreMatcher(cfg.exclude))
        logger.info("Watching source for changes")

    try:
        run_forever(cfg, ctx)
    finally:
        if observer is not None:
            observer.stop()
            observer.join(timeout=10)
        logger.info("stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
