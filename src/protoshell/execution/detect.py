"""Predicates deciding whether a name should run as a system program."""

from __future__ import annotations

import re
import shutil
from collections.abc import Iterable
from typing import Protocol

EXECUTABLE_SUFFIXES = (".exe", ".sh", ".bat", ".cmd", ".ps1")
SAFE_PATH_TOKEN_RE = re.compile(r"^[A-Za-z0-9._~/\\:-]+$")
MAX_PATH_TOKEN_LENGTH = 240

WINDOWS_COMMANDS = frozenset(
    {
        "ipconfig", "ping", "netstat", "tracert", "nslookup", "route", "arp", "getmac",
        "systeminfo", "tasklist", "taskkill", "dir", "type", "copy", "move", "del",
        "mkdir", "rmdir", "cls", "date", "time", "ver", "hostname", "whoami", "net",
        "sc", "reg", "wmic", "powershell", "cmd",
    }
)  # fmt: skip

UNIX_COMMANDS = frozenset(
    {
        "ifconfig", "ip", "ping", "netstat", "traceroute", "nslookup", "dig", "arp",
        "route", "ss", "nc", "telnet", "curl", "wget", "ls", "cat", "grep", "find",
        "sed", "awk", "sort", "uniq", "head", "tail", "wc", "diff", "chmod", "chown",
        "ln", "cp", "mv", "rm", "mkdir", "rmdir", "touch", "ps", "top", "killall",
        "pkill", "df", "du", "mount", "umount", "fdisk", "tar", "gzip", "gunzip", "zip",
        "unzip", "ssh", "scp", "sftp", "rsync", "ftp", "git", "svn", "hg", "node", "npm",
        "yarn", "pnpm", "python", "python3", "pip", "pip3", "java", "javac", "mvn",
        "gradle", "gcc", "g++", "make", "cmake", "docker", "kubectl", "helm", "systemctl",
        "service", "journalctl", "uname", "id", "groups", "cal", "uptime", "w", "who",
        "last", "man", "which", "whereis", "whatis", "apropos", "true", "false", "tr",
        "tee", "xargs", "env", "printf", "mysql", "psql", "mongo", "redis-cli", "vim",
        "vi", "nano", "emacs", "less", "more", "htop", "watch", "irb", "php", "lua",
    }
)  # fmt: skip

INTERACTIVE_COMMANDS = frozenset(
    {
        "ssh", "telnet", "ftp", "sftp", "mysql", "psql", "mongo", "redis-cli", "vim", "vi",
        "nano", "emacs", "less", "more", "top", "htop", "watch",
    }
)  # fmt: skip

# Interpreters only need a session when started as a REPL.
INTERACTIVE_WHEN_BARE = frozenset({"python", "python3", "node", "irb", "php", "lua"})


class CommandPredicate(Protocol):
    """Decides whether a command name qualifies."""

    def __call__(self, name: str) -> bool: ...


class InteractivePredicate(Protocol):
    def __call__(self, name: str, args: list[str]) -> bool: ...


def is_path_like(token: str) -> bool:
    if not token or len(token) > MAX_PATH_TOKEN_LENGTH:
        return False
    if "://" in token:
        return False
    if SAFE_PATH_TOKEN_RE.fullmatch(token) is None:
        return False
    return "/" in token or "\\" in token


def has_executable_suffix(token: str) -> bool:
    return token.lower().endswith(EXECUTABLE_SUFFIXES)


class AllowListPredicate:
    """Accepts names from a static allow-list, paths, and executable files."""

    def __init__(self, extra: Iterable[str] = (), *, search_path: bool = False) -> None:
        self._names = set(WINDOWS_COMMANDS | UNIX_COMMANDS)
        self._names.update(name.lower() for name in extra)
        self._search_path = search_path

    def add(self, name: str) -> None:
        self._names.add(name.lower())

    def __call__(self, name: str) -> bool:
        if not name:
            return False
        if name.lower() in self._names:
            return True
        if is_path_like(name) or has_executable_suffix(name):
            return True
        return self._search_path and shutil.which(name) is not None


def requires_interactive_mode(name: str, args: list[str]) -> bool:
    lowered = name.lower()
    if lowered in INTERACTIVE_COMMANDS:
        return True
    return lowered in INTERACTIVE_WHEN_BARE and not args
