"""A small dependency graph executed on a thread pool.

Nodes declare two kinds of edges:
- `needs`: the dependency must succeed, otherwise the node is skipped;
- `after`: the dependency only has to finish, whatever its outcome.

Nodes must be added after their dependencies, which keeps the graph acyclic.
Independent nodes run concurrently; a failed node never cancels its siblings.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Literal

from imagepub.core.result import Err, Result
from imagepub.services.publish.errors import PublishError

NodeStatus = Literal["succeeded", "failed", "skipped"]
Outcomes = Mapping[str, "NodeOutcome"]
NodeFn = Callable[[Outcomes], Result[object, PublishError]]


@dataclass(frozen=True, slots=True)
class NodeOutcome:
    name: str
    status: NodeStatus
    value: object = None
    error: PublishError | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True, slots=True)
class _Node:
    name: str
    fn: NodeFn
    needs: tuple[str, ...]
    after: tuple[str, ...]

    @property
    def deps(self) -> tuple[str, ...]:
        return self.needs + self.after


class TaskGraph:
    def __init__(self) -> None:
        self._nodes: dict[str, _Node] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def add(
        self,
        name: str,
        fn: NodeFn,
        *,
        needs: tuple[str, ...] = (),
        after: tuple[str, ...] = (),
    ) -> None:
        if name in self._nodes:
            raise ValueError(f"duplicate graph node: {name}")
        unknown = [d for d in needs + after if d not in self._nodes]
        if unknown:
            raise ValueError(f"{name} depends on unknown nodes: {', '.join(unknown)}")
        self._nodes[name] = _Node(name=name, fn=fn, needs=needs, after=after)

    def run(self, *, max_workers: int = 8) -> dict[str, NodeOutcome]:
        """Run every node once its dependencies are done; return outcomes by name.

        Exceptions raised by a node are programming errors and propagate.
        """
        outcomes: dict[str, NodeOutcome] = {}
        running: dict[Future[Result[object, PublishError]], str] = {}
        pending = dict(self._nodes)

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            while pending or running:
                for node in [n for n in pending.values() if _ready(n, outcomes)]:
                    del pending[node.name]
                    blocked = [d for d in node.needs if not outcomes[d].succeeded]
                    if blocked:
                        outcomes[node.name] = NodeOutcome(
                            name=node.name,
                            status="skipped",
                            reason=", ".join(f"{d} {outcomes[d].status}" for d in blocked),
                        )
                        continue
                    snapshot = dict(outcomes)
                    running[executor.submit(node.fn, snapshot)] = node.name

                if not running:
                    # Skips can unblock further nodes without anything running.
                    continue

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    result = future.result()
                    if isinstance(result, Err):
                        outcomes[name] = NodeOutcome(name=name, status="failed", error=result.error)
                    else:
                        outcomes[name] = NodeOutcome(
                            name=name, status="succeeded", value=result.value
                        )

        return {name: outcomes[name] for name in self._nodes}


def _ready(node: _Node, outcomes: Outcomes) -> bool:
    return all(d in outcomes for d in node.deps)
