"""Utility functions for notevault."""
import os
from typing import Iterable


def unique_filename(existing_names: Iterable[str], desired_name: str) -> str:
    """Pick a file name that does not collide with any existing name.

    Returns ``desired_name`` when it is free, otherwise ``base_N.ext`` with
    the smallest N >= 1 that is not taken. Names without an extension get
    ``base_N``.

    Examples:
        unique_filename([], "cat.png") -> "cat.png"
        unique_filename(["cat.png"], "cat.png") -> "cat_1.png"
        unique_filename(["cat.png", "cat_1.png"], "cat.png") -> "cat_2.png"
        unique_filename(["README"], "README") -> "README_1"

    Args:
        existing_names: Names already present in the target directory.
        desired_name: The name the caller would like to use.

    Returns:
        A name not contained in ``existing_names``.
    """
    taken = set(existing_names)
    if desired_name not in taken:
        return desired_name

    base, dot, ext = desired_name.rpartition(".")
    if not dot or not base:
        # No extension (or a dotfile such as ".env")
        base, ext = desired_name, ""

    counter = 1
    while True:
        candidate = f"{base}_{counter}.{ext}" if ext else f"{base}_{counter}"
        if candidate not in taken:
            return candidate
        counter += 1


def list_names(directory: str) -> list:
    """List entry names in ``directory``, or an empty list if it is missing."""
    try:
        return os.listdir(directory)
    except FileNotFoundError:
        return []


def is_under(path: str, root: str) -> bool:
    """Return True if ``path`` equals ``root`` or lies beneath it.

    Compares whole path components, so ``/notes-old`` is not under ``/notes``.
    """
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    if path == root:
        return True
    return path.startswith(root.rstrip(os.sep) + os.sep)


def replace_path_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap the leading ``old_prefix`` component(s) of ``path`` for ``new_prefix``.

    ``path`` must satisfy ``is_under(path, old_prefix)``.
    """
    return new_prefix + path[len(old_prefix):]
