"""
Cgroup v2 tree discovery over a remote executor.

The tree is found by listing directories under the control filesystem:
top-level `*.slice` entries become roots and each slice's own `*.slice`
subdirectories become its children.
"""

import logging
import shlex
from typing import Iterable, Iterator, List, Optional, Sequence

from ..core.errors import CommandError, FormatError
from ..core.models import CgroupNode
from .executor import CommandExecutor
from .parsers import parse_cpu_stat, parse_io_stat, parse_memory_value, parse_slice_listing


logger = logging.getLogger(__name__)


DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup"
DEFAULT_MAX_DEPTH = 8


def list_slices_command(path: str) -> str:
    return f"find {shlex.quote(path)} -mindepth 1 -maxdepth 1 -type d -name '*.slice'"


class CgroupTreeBuilder:
    """
    Builds the cgroup slice tree of a remote host.

    A node's stats are read before its children are listed. If anything
    about a node cannot be read, that node and its subtree are dropped and
    its siblings are still collected.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        root: str = DEFAULT_CGROUP_ROOT,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.executor = executor
        self.root = root.rstrip("/") or "/"
        self.max_depth = max_depth

    async def _read(self, path: str, filename: str) -> str:
        return await self.executor.run(f"cat {shlex.quote(path + '/' + filename)}")

    async def list_slices(self, path: str) -> List[str]:
        """One-level listing of `*.slice` directories under `path`."""
        output = await self.executor.run(list_slices_command(path))
        return sorted(parse_slice_listing(output))

    async def build(self) -> List[CgroupNode]:
        """Discover and populate every root slice. Raises if the root itself cannot be listed."""
        roots = []
        for path in await self.list_slices(self.root):
            node = await self._build_subtree(path, parent_path=None, depth=1)
            if node is not None:
                roots.append(node)
        logger.debug(f"Collected {sum(1 for _ in walk(roots))} cgroups under {self.root}")
        return roots

    async def _build_subtree(self, path: str, parent_path: Optional[str], depth: int) -> Optional[CgroupNode]:
        try:
            return await self._build_node(path, parent_path, depth)
        except (CommandError, FormatError) as e:
            logger.warning(f"Dropping cgroup subtree {path}: {e}")
            return None

    async def _build_node(self, path: str, parent_path: Optional[str], depth: int) -> CgroupNode:
        cpu_seconds = parse_cpu_stat(await self._read(path, "cpu.stat"))
        memory_current = parse_memory_value(await self._read(path, "memory.current"))
        memory_limit = parse_memory_value(await self._read(path, "memory.max"))
        io_read, io_write = parse_io_stat(await self._read(path, "io.stat"))

        children: List[CgroupNode] = []
        if depth >= self.max_depth:
            logger.debug(f"Not descending below {path}: depth limit {self.max_depth} reached")
        else:
            for child_path in await self.list_slices(path):
                child = await self._build_subtree(child_path, parent_path=path, depth=depth + 1)
                if child is not None:
                    children.append(child)

        return CgroupNode(
            path=path,
            cpu_seconds=cpu_seconds,
            memory_current_bytes=memory_current,
            memory_limit_bytes=memory_limit,
            io_read_bytes=io_read,
            io_write_bytes=io_write,
            parent_path=parent_path,
            children=tuple(children),
        )


def walk(roots: Iterable[CgroupNode]) -> Iterator[CgroupNode]:
    """Every node of the forest, depth first."""
    for root in roots:
        yield from root.walk()


def find_cgroup(roots: Sequence[CgroupNode], path: str) -> Optional[CgroupNode]:
    path = path.rstrip("/")
    for node in walk(roots):
        if node.path == path:
            return node
    return None


def parent_of(roots: Sequence[CgroupNode], node: CgroupNode) -> Optional[CgroupNode]:
    """Resolve a node's parent through the tree; None for roots."""
    if node.parent_path is None:
        return None
    return find_cgroup(roots, node.parent_path)
