"""
Source discovery for C/C++ trees.

Walks a root directory, keeps files with a supported extension and drops
anything matching the default ignore patterns or the root's .gitignore.
Incremental mode asks git for the working-tree changes instead.
"""

import fnmatch
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from scan_engine.config import ScanEngineConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class CodeScanner:
    """
    File discovery for one source root.

    Usage:
        scanner = CodeScanner("/path/to/project")
        files = scanner.scan_all()
        changed = scanner.scan_incremental()
    """

    GIT_TIMEOUT_SECONDS = 30

    def __init__(self, base_path: str, config: ScanEngineConfig = None,
                 use_gitignore: Optional[bool] = None):
        self.config = config or DEFAULT_CONFIG
        self.base_path = Path(base_path).resolve()
        self.extensions = {ext.lower() for ext in self.config.source_extensions}
        self.ignore_patterns: List[str] = list(self.config.ignore_patterns)
        self.use_gitignore = self.config.use_gitignore if use_gitignore is None else use_gitignore

        self._stats: Dict[str, int] = {"files_found": 0, "files_ignored": 0}

        if self.use_gitignore:
            self._load_gitignore_patterns()

        logger.info(f"CodeScanner initialized for: {self.base_path}")

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #

    def scan(self, incremental: bool = False) -> List[Path]:
        """Full or incremental discovery depending on the flag."""
        return self.scan_incremental() if incremental else self.scan_all()

    def scan_all(self) -> List[Path]:
        """Walk the whole tree. A single file path is returned as-is when supported."""
        if not self.base_path.exists():
            raise FileNotFoundError(f"Path does not exist: {self.base_path}")

        if self.base_path.is_file():
            return [self.base_path] if self._is_supported(self.base_path) else []

        logger.info(f"Starting filesystem scan of: {self.base_path}")
        files: List[Path] = []
        ignored = 0

        for root, dirs, filenames in os.walk(self.base_path):
            root_path = Path(root)
            kept_dirs = []
            for d in dirs:
                if self._should_ignore(root_path / d):
                    logger.debug(f"Ignoring directory: {root_path / d}")
                    ignored += 1
                else:
                    kept_dirs.append(d)
            dirs[:] = sorted(kept_dirs)

            for filename in sorted(filenames):
                file_path = root_path / filename
                if not self._is_supported(file_path):
                    continue
                if self._should_ignore(file_path):
                    ignored += 1
                    continue
                files.append(file_path)

        self._stats = {"files_found": len(files), "files_ignored": ignored}
        logger.info(f"Found {len(files)} C/C++ files")
        return files

    def scan_incremental(self) -> List[Path]:
        """
        Files changed in the git working tree (unstaged, staged and
        untracked). Falls back to a full scan outside a repository or when
        git fails.
        """
        logger.info(f"Starting incremental scan of: {self.base_path}")
        if not (self.base_path / ".git").exists():
            logger.warning("Not a git repository, falling back to full scan")
            return self.scan_all()

        try:
            changed = self._git_changed_files()
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to get git changes, falling back to full scan: {e}")
            return self.scan_all()

        files = sorted(
            p for p in changed
            if self._is_supported(p) and not self._should_ignore(p)
        )
        self._stats = {"files_found": len(files), "files_ignored": len(changed) - len(files)}
        logger.info(f"Found {len(files)} changed C/C++ files")
        return files

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "base_path": str(self.base_path),
            "extensions": sorted(self.extensions),
            "ignore_patterns": len(self.ignore_patterns),
            **self._stats,
        }

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _is_supported(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def _should_ignore(self, path: Path) -> bool:
        """Match ignore patterns against the relative path, each of its parts and the name."""
        try:
            rel = path.relative_to(self.base_path).as_posix()
        except ValueError:
            return True

        parts = rel.split("/")
        for pattern in self.ignore_patterns:
            pat = pattern.rstrip("/")
            if fnmatch.fnmatch(rel, pat) or fnmatch.fnmatch(path.name, pat):
                return True
            if any(fnmatch.fnmatch(part, pat) for part in parts):
                return True
        return False

    def _load_gitignore_patterns(self) -> None:
        gitignore = self.base_path / ".gitignore"
        if not gitignore.is_file():
            logger.debug("No .gitignore file found")
            return
        try:
            lines = gitignore.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            logger.warning(f"Failed to load .gitignore: {e}")
            return

        added = 0
        for line in lines:
            line = line.strip()
            # negations are not supported
            if not line or line.startswith("#") or line.startswith("!"):
                continue
            self.ignore_patterns.append(line.lstrip("/"))
            added += 1
        logger.info(f"Loaded {added} patterns from .gitignore")

    def _git_changed_files(self) -> Set[Path]:
        commands = (
            ["git", "diff", "--name-only"],
            ["git", "diff", "--cached", "--name-only"],
            ["git", "ls-files", "--others", "--exclude-standard"],
        )
        changed: Set[Path] = set()
        for cmd in commands:
            result = subprocess.run(
                cmd,
                cwd=self.base_path,
                capture_output=True,
                text=True,
                timeout=self.GIT_TIMEOUT_SECONDS,
            )
            if result.returncode != 0:
                raise subprocess.SubprocessError(
                    f"{' '.join(cmd)} exited with {result.returncode}: {result.stderr.strip()}"
                )
            for line in result.stdout.splitlines():
                line = line.strip()
                if not line:
                    continue
                candidate = self.base_path / line
                if candidate.exists():
                    changed.add(candidate)
        return changed
