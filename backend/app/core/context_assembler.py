"""Snapshot of the persistency-layer folder of a branch."""

import logging
import posixpath
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional

from app.config import PersistencyConfig
from app.core.bitbucket_client import BitbucketClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextFile:
    """One remote document as fetched at snapshot time."""
    path: str
    content: str
    truncated: bool = False

    def to_dict(self) -> dict:
        return {"path": self.path, "content": self.content, "truncated": self.truncated}


@dataclass
class ContextBundle:
    """Normalized result of a folder walk."""
    exists: bool
    files: List[ContextFile] = field(default_factory=list)
    truncated: bool = False
    bootstrap_file: str = PersistencyConfig.BOOTSTRAP_FILE
    bootstrap_present: Optional[bool] = None

    @property
    def has_bootstrap(self) -> bool:
        if self.bootstrap_present is not None:
            return self.bootstrap_present
        return any(is_bootstrap_path(f.path, self.bootstrap_file) for f in self.files)


def is_bootstrap_path(path: str, bootstrap_file: Optional[str] = None) -> bool:
    bootstrap_file = bootstrap_file or PersistencyConfig.BOOTSTRAP_FILE
    return posixpath.basename(path).lower() == bootstrap_file.lower()


def gate_on_bootstrap(bundle: ContextBundle) -> ContextBundle:
    """Without the bootstrap file none of the collected files are surfaced."""
    has_bootstrap = bundle.has_bootstrap
    if has_bootstrap:
        return replace(bundle, bootstrap_present=True)
    return replace(bundle, files=[], bootstrap_present=False)


class ContextAssembler:
    """
    Breadth-first walk of the persistency folder.

    Eligible files are collected in traversal order up to ``max_files``;
    seeing one more marks the bundle truncated and ends the walk. Files are
    then fetched one at a time, non-text bodies and vanished files skipped,
    and the result sorted by path.
    """

    def __init__(
        self,
        client: BitbucketClient,
        root_dir: Optional[str] = None,
        extensions: Optional[Iterable[str]] = None,
        max_files: Optional[int] = None,
        max_bytes_per_file: Optional[int] = None,
        bootstrap_file: Optional[str] = None,
    ):
        self.client = client
        self.root_dir = (root_dir or PersistencyConfig.ROOT_DIR).strip("/")
        self.extensions = tuple(e.lower() for e in (extensions or PersistencyConfig.EXTENSIONS))
        self.max_files = PersistencyConfig.MAX_FILES if max_files is None else max_files
        self.max_bytes_per_file = max_bytes_per_file or PersistencyConfig.MAX_BYTES_PER_FILE
        self.bootstrap_file = bootstrap_file or PersistencyConfig.BOOTSTRAP_FILE

    def _is_eligible(self, path: str) -> bool:
        return path.lower().endswith(self.extensions)

    async def _collect_paths(self, token: str, workspace: str, repo: str, branch: str):
        """Return (root exists, eligible paths in traversal order, truncated)."""
        queue = deque([self.root_dir])
        visited = set()
        collected: List[str] = []
        root_listed = False

        while queue:
            directory = queue.popleft()
            if directory in visited:
                continue
            visited.add(directory)

            entries = await self.client.list_directory(token, workspace, repo, branch, directory)
            if entries is None:
                if directory == self.root_dir:
                    return False, [], False
                logger.info(f"Directory {directory} vanished while walking {workspace}/{repo}@{branch}")
                continue
            root_listed = True

            for entry in entries:
                if entry.is_directory:
                    queue.append(entry.path.strip("/"))
                elif entry.is_file and self._is_eligible(entry.path):
                    if len(collected) >= self.max_files:
                        return root_listed, collected, True
                    collected.append(entry.path)

        return root_listed, collected, False

    async def assemble(self, token: str, workspace: str, repo: str, branch: str) -> ContextBundle:
        """
        Snapshot ``{root_dir}/`` on ``branch``.

        Raises:
            BitbucketUnauthorizedError: the token was rejected
            BitbucketAPIError: a listing or fetch failed
        """
        exists, paths, truncated = await self._collect_paths(token, workspace, repo, branch)
        if not exists:
            logger.info(f"No {self.root_dir}/ folder in {workspace}/{repo}@{branch}")
            return ContextBundle(exists=False, bootstrap_file=self.bootstrap_file)

        files: List[ContextFile] = []
        for path in paths:
            remote = await self.client.fetch_file(token, workspace, repo, branch, path, self.max_bytes_per_file)
            if remote is None:
                continue
            files.append(ContextFile(path=path, content=remote.content, truncated=remote.truncated))

        files.sort(key=lambda f: f.path)
        logger.info(
            f"Assembled {len(files)} context files from {workspace}/{repo}@{branch}"
            f"{' (truncated)' if truncated else ''}"
        )
        return ContextBundle(exists=True, files=files, truncated=truncated, bootstrap_file=self.bootstrap_file)
