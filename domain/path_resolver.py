"""Lexical path jailing for user supplied paths."""

import os
import posixpath

from .identity import Identity


def jail(root: str, user_path: str) -> str:
    """
    Joins user_path onto root so that the result never escapes root.

    user_path is anchored at "/" and cleaned lexically, so any number of
    ".." segments collapse at the virtual root before the join. The
    filesystem is never consulted; symlinks inside root are not resolved.
    """
    cleaned = posixpath.normpath(posixpath.join("/", user_path))
    # normpath keeps a leading "//" on POSIX
    relative = cleaned.lstrip("/")
    root = posixpath.normpath(os.fspath(root))
    if not relative:
        return root
    return posixpath.join(root, relative)


def is_contained(root: str, path: str) -> bool:
    """True if path is root itself or lexically below it."""
    root = posixpath.normpath(os.fspath(root))
    path = posixpath.normpath(os.fspath(path))
    if path == root:
        return True
    prefix = root if root.endswith("/") else root + "/"
    return path.startswith(prefix)


def home_directory(identity: Identity) -> str:
    """
    Logical home of a user: /<first letter>/<username>.
    Example: /o/ourense
    """
    return jail("/", f"{identity.first_letter}/{identity.username}")


def storage_path(data_dir: str, identity: Identity, logical_path: str) -> str:
    """Physical location of logical_path inside the identity's home under data_dir."""
    return jail(data_dir, jail(home_directory(identity), logical_path))
