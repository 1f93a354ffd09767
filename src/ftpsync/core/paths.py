"""Mapping of local paths under registered roots onto the remote tree."""

import os
import posixpath
from typing import Iterable, List, Optional

from .errors import RootMissingError


def to_remote(path: str) -> str:
    """Convert a local relative path to forward-slash form."""
    return path.replace(os.sep, "/")


class RootMapper:
    """Registered roots and the local → remote path mapping.

    With one root its content lands directly in the remote base directory.
    With several roots each root keeps its own directory name below the
    remote base, so ``/a/site`` and ``/b/assets`` map to
    ``<remote>/site`` and ``<remote>/assets``. A path belongs to the longest
    registered root it lies under.
    """

    def __init__(self, remote_base: str = "/", roots: Optional[Iterable[str]] = None):
        self.remote_base = remote_base.rstrip("/") or "/"
        self.roots: List[str] = []
        for root in roots or []:
            self.add_root(root)

    def add_root(self, root: str) -> str:
        root = os.path.normpath(root)
        if not os.path.exists(root):
            raise RootMissingError(root)
        if root not in self.roots:
            self.roots.append(root)
        return root

    def validate_roots(self) -> None:
        for root in self.roots:
            if not os.path.exists(root):
                raise RootMissingError(root)

    @staticmethod
    def is_under(path: str, root: str) -> bool:
        path = os.path.normcase(path)
        root = os.path.normcase(root)
        if path == root:
            return True
        return path.startswith(root if root.endswith(os.sep) else root + os.sep)

    def get_main_dir(self, path: str) -> Optional[str]:
        """Return the registered root ``path`` belongs to."""
        best = None
        for root in self.roots:
            if self.is_under(path, root) and (best is None or len(root) > len(best)):
                best = root
        return best

    def get_base_dir(self, path: str) -> Optional[str]:
        """Return the local directory that maps onto the remote base."""
        main_dir = self.get_main_dir(path)
        if main_dir is None or len(self.roots) == 1:
            return main_dir
        return os.path.dirname(main_dir)

    def remote_dir_for(self, local_dir: str) -> str:
        base_dir = self.get_base_dir(local_dir)
        if base_dir is None:
            raise ValueError(f"Path is not under a registered root: {local_dir}")
        relative = os.path.relpath(local_dir, base_dir)
        if relative == os.curdir:
            return self.remote_base
        return posixpath.join(self.remote_base, to_remote(relative))

    def remote_path_for(self, local_path: str) -> str:
        directory, name = os.path.split(local_path)
        return posixpath.join(self.remote_dir_for(directory), name)

    def local_path_for(self, root: str, remote_path: str) -> str:
        """Inverse of ``remote_path_for`` for paths below ``root``'s remote dir."""
        remote_root = self.remote_dir_for(root)
        relative = posixpath.relpath(remote_path, remote_root)
        if relative == posixpath.curdir:
            return root
        return os.path.join(root, *relative.split("/"))
