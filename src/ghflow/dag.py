# dag.py
from __future__ import annotations

from typing import Dict, List, Set, Tuple

from .model import Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.id: str (unique)
      - job.needs: iterable[str] (ids of jobs that must finish BEFORE this job)

    Jobs without `needs` have in-degree 0 and are independent of each other.
    """
    ids = [j.id for j in jobs]
    if len(set(ids)) != len(ids):
        dupes = sorted({n for n in ids if ids.count(n) > 1})
        raise ValueError(f"Duplicate job ids found: {dupes}")

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {n: set() for n in id_set}
    indeg: Dict[str, int] = {n: 0 for n in id_set}

    for job in jobs:
        for dep in job.needs or []:
            if dep not in id_set:
                raise ValueError(
                    f"Job '{job.id}' needs missing job '{dep}'. "
                    f"Known jobs: {sorted(id_set)}"
                )
            # Edge dep -> job.id (dep must run before job)
            if job.id not in adj[dep]:
                adj[dep].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def _peel(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> Tuple[List[List[str]], List[str]]:
    """
    Remove ready nodes one wave at a time.

    Returns the waves (each sorted) and the nodes left over, which sit on
    or behind a cycle.
    """
    indeg = dict(indeg)
    wave = sorted(n for n, d in indeg.items() if d == 0)
    waves: List[List[str]] = []
    while wave:
        waves.append(wave)
        nxt: List[str] = []
        for node in wave:
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)
        wave = sorted(nxt)
    placed = {n for w in waves for n in w}
    return waves, sorted(n for n in indeg if n not in placed)


def stuck_nodes(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[str]:
    """Nodes that can never become ready."""
    return _peel(adj, indeg)[1]


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """Stages of nodes; everything in one stage can run in parallel."""
    waves, stuck = _peel(adj, indeg)
    if stuck:
        raise ValueError(f"`needs` graph has a cycle. Stuck jobs: {stuck}")
    return waves


def stages(jobs: List[Job]) -> List[List[str]]:
    """Stages of job ids, each stage sorted, in declaration-independent order."""
    adj, indeg = build_dag(jobs)
    return topo_levels(adj, indeg)
