"""Backup engine configuration and defaults."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "config.json"

# Backup root, relative to the project being protected
DEFAULT_BACKUP_DIR = ".migration-backups"

# Metadata index lives inside the backup root
INDEX_DB_NAME = "index.db"

# Environment captures are kept beside, not inside, each backup's file tree
ENVIRONMENT_DIR_NAME = "environment"

DEFAULT_INCLUDE_PATTERNS = [
    "app/**/*",
    "components/**/*",
    "lib/**/*",
    "public/**/*",
    "styles/**/*",
    "types/**/*",
    "utils/**/*",
    "config/**/*",
    "hooks/**/*",
    "contexts/**/*",
    "middleware/**/*",
    "messages/**/*",
    "i18n/**/*",
    "package.json",
    "package-lock.json",
    "next.config.mjs",
    "tailwind.config.ts",
    "tsconfig.json",
    "postcss.config.mjs",
    ".eslintrc.json",
    "playwright.config.ts",
    "jest.config.js",
    "vitest.config.ts",
    "i18n.ts",
    "instrumentation.ts",
    "middleware.ts",
]

DEFAULT_IGNORE_PATTERNS = [
    "node_modules/**",
    ".next/**",
    ".git/**",
    "coverage/**",
    "dist/**",
]

DEFAULT_ENVIRONMENT_FILES = [
    ".env",
    ".env.local",
    ".env.development",
    ".env.production",
    ".env.test",
]

BACKUP_TYPE_FULL = "full"
BACKUP_TYPE_INCREMENTAL = "incremental"
SNAPSHOT_ID_PREFIX = "snapshot"


@dataclass
class BackupSettings:
    """Resolved settings for one protected project."""
    project_root: Path
    backup_dir: Path
    include_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    ignore_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    environment_files: list[str] = field(default_factory=lambda: list(DEFAULT_ENVIRONMENT_FILES))
    capture_environment: bool = True
    copy_workers: int = 1
    verify_before_restore: bool = False

    @property
    def index_db_path(self) -> Path:
        return self.backup_dir / INDEX_DB_NAME

    @property
    def environment_root(self) -> Path:
        return self.backup_dir / ENVIRONMENT_DIR_NAME

    def effective_ignore_patterns(self) -> list[str]:
        """Ignore patterns plus the backup root itself when it sits in the tree."""
        patterns = list(self.ignore_patterns)
        try:
            rel = self.backup_dir.resolve().relative_to(self.project_root.resolve())
        except ValueError:
            return patterns
        if rel.parts:
            patterns.append(f"{rel.as_posix()}/**")
        return patterns

    @classmethod
    def for_project(cls, project_root: str | os.PathLike, backup_dir: str | None = None,
                    **overrides) -> "BackupSettings":
        root = _resolve_path(str(project_root))
        return cls(
            project_root=root,
            backup_dir=_resolve_backup_dir(root, backup_dir or DEFAULT_BACKUP_DIR),
            **overrides,
        )


def _resolve_path(path_str: str) -> Path:
    return Path(os.path.expanduser(os.path.expandvars(path_str))).resolve()


def _resolve_backup_dir(project_root: Path, backup_dir: str) -> Path:
    path = Path(os.path.expanduser(os.path.expandvars(backup_dir)))
    if not path.is_absolute():
        path = project_root / path
    return path.resolve()


def load_config(config_path: str) -> dict:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(path) as f:
        return json.load(f)


def load_backup_settings(config_path: str | None = None) -> BackupSettings:
    """Build BackupSettings from the ``backup`` section of config.json.

    An explicit ``config_path`` must exist. Without one, the default
    config file is used when present, otherwise built-in defaults apply.
    """
    if config_path is not None:
        config = load_config(config_path)
    elif DEFAULT_CONFIG.exists():
        config = load_config(str(DEFAULT_CONFIG))
    else:
        config = {}

    cfg = config.get("backup", {})
    project_root = _resolve_path(cfg.get("project_root", "."))
    return BackupSettings(
        project_root=project_root,
        backup_dir=_resolve_backup_dir(project_root, cfg.get("backup_dir", DEFAULT_BACKUP_DIR)),
        include_patterns=list(cfg.get("include_patterns", DEFAULT_INCLUDE_PATTERNS)),
        ignore_patterns=list(cfg.get("ignore_patterns", DEFAULT_IGNORE_PATTERNS)),
        environment_files=list(cfg.get("environment_files", DEFAULT_ENVIRONMENT_FILES)),
        capture_environment=bool(cfg.get("capture_environment", True)),
        copy_workers=max(1, int(cfg.get("copy_workers", 1))),
        verify_before_restore=bool(cfg.get("verify_before_restore", False)),
    )
