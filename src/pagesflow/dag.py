# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Set, Tuple

from .model import Job


def build_graph(jobs: List[Job]) -> Tuple[Dict[str, Job], Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job graph.

    Returns (by_name, adj, indeg) where adj maps a job to the jobs that need it
    and indeg counts the unresolved needs of each job.
    """
    by_name: Dict[str, Job] = {}
    for j in jobs:
        if j.name in by_name:
            raise ValueError(f"Duplicate job name: {j.name}")
        by_name[j.name] = j

    adj: Dict[str, Set[str]] = {name: set() for name in by_name}   # dep -> dependents
    indeg: Dict[str, int] = {name: 0 for name in by_name}

    for j in jobs:
        for d in j.needs:
            if d not in by_name:
                raise ValueError(
                    f"Job '{j.name}' needs missing job '{d}'. Known jobs: {sorted(by_name)}"
                )
            if j.name not in adj[d]:
                adj[d].add(j.name)
                indeg[j.name] += 1

    return by_name, adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the graph into topological levels.
    Jobs within a level do not depend on each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"Job graph has a cycle. Stuck jobs: {remaining}")

    return levels


def topo_order(jobs: List[Job]) -> List[str]:
    _by_name, adj, indeg = build_graph(jobs)
    return [name for level in topo_levels(adj, indeg) for name in level]
