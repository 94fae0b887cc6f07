"""Build stage DAG with static validation and cascade blocking.

The graph enforces, before anything runs:
- every stage name is unique and every input names a known stage;
- the graph is acyclic;
- kind contracts hold: a test gate consumes an application stage, an
  assembly consumes a test gate, and assembly copy sources are dependency
  or application stages upstream of the assembly.

At run time it answers which stages are ready and which must be blocked
when an upstream stage fails.
"""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Iterable

from layerforge.core.errors import CycleDetectedError, InvalidStageGraphError
from layerforge.models.stages import (
    COPYABLE_KINDS,
    AssemblyStage,
    BuildStage,
    StageKind,
    StageStatus,
)


class BuildGraph:
    """Directed acyclic graph of build stages.

    Declaration order is the tie-breaker for topological ordering, so the
    same definitions always produce the same execution order.
    """

    def __init__(self, stages: Iterable[BuildStage]) -> None:
        stage_list = list(stages)
        duplicates = [n for n, c in Counter(s.name for s in stage_list).items() if c > 1]
        if duplicates:
            raise InvalidStageGraphError(f"Duplicate stage names: {sorted(duplicates)}")

        self._stages: dict[str, BuildStage] = {s.name: s for s in stage_list}
        self._ordinal: dict[str, int] = {s.name: i for i, s in enumerate(stage_list)}
        # Forward edges: stage -> its inputs
        self._inputs: dict[str, list[str]] = {s.name: list(s.inputs) for s in stage_list}
        # Reverse edges: stage -> stages consuming it
        self._dependents: dict[str, list[str]] = {s.name: [] for s in stage_list}

        for stage in stage_list:
            for upstream in stage.inputs:
                if upstream not in self._stages:
                    raise InvalidStageGraphError(
                        f"Stage {stage.name!r} consumes unknown stage {upstream!r}"
                    )
                if upstream == stage.name:
                    raise CycleDetectedError(
                        f"Stage {stage.name!r} consumes itself", [stage.name]
                    )
                self._dependents[upstream].append(stage.name)

        self._order = self._topological_sort()
        self._validate_kinds()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm; raises ``CycleDetectedError`` on leftovers."""
        in_degree = {name: len(inputs) for name, inputs in self._inputs.items()}
        queue = deque(
            sorted((n for n, d in in_degree.items() if d == 0), key=self._ordinal.__getitem__)
        )
        order: list[str] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            for dep in sorted(self._dependents[node], key=self._ordinal.__getitem__):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if len(order) != len(self._stages):
            cyclic = sorted(n for n, d in in_degree.items() if d > 0)
            raise CycleDetectedError(
                f"Stage graph has a cycle through: {', '.join(cyclic)}", cyclic
            )
        return order

    def _validate_kinds(self) -> None:
        for stage in self._stages.values():
            kinds = {self._stages[i].kind for i in stage.inputs}
            if stage.kind == StageKind.TEST_GATE and StageKind.APPLICATION not in kinds:
                raise InvalidStageGraphError(
                    f"Test gate {stage.name!r} must consume an application stage"
                )
            if stage.kind == StageKind.ASSEMBLY:
                self._validate_assembly(stage)

    def _validate_assembly(self, stage: AssemblyStage) -> None:
        direct_gates = [
            i for i in stage.inputs if self._stages[i].kind == StageKind.TEST_GATE
        ]
        if not direct_gates:
            raise InvalidStageGraphError(
                f"Assembly {stage.name!r} must consume a test gate stage"
            )
        if not stage.copy_set:
            raise InvalidStageGraphError(f"Assembly {stage.name!r} declares no copy set")

        upstream = set(self.get_upstream(stage.name))
        for spec in stage.copy_set:
            source = self._stages.get(spec.from_stage)
            if source is None or spec.from_stage not in upstream:
                raise InvalidStageGraphError(
                    f"Assembly {stage.name!r} copies from {spec.from_stage!r}, "
                    "which is not an upstream stage"
                )
            if source.kind not in COPYABLE_KINDS:
                raise InvalidStageGraphError(
                    f"Assembly {stage.name!r} may not copy from {source.kind.value} "
                    f"stage {spec.from_stage!r}"
                )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __len__(self) -> int:
        return len(self._stages)

    @property
    def topological_order(self) -> list[str]:
        """All stage names, every stage after all of its inputs."""
        return list(self._order)

    def get_stage(self, name: str) -> BuildStage:
        return self._stages[name]

    def stages(self) -> list[BuildStage]:
        """Stage definitions in topological order."""
        return [self._stages[n] for n in self._order]

    def get_prerequisites(self, name: str) -> list[str]:
        """Direct inputs of a stage."""
        return list(self._inputs.get(name, []))

    def get_upstream(self, name: str) -> list[str]:
        """All transitive inputs of a stage (BFS)."""
        return self._walk(name, self._inputs)

    def get_dependents(self, name: str) -> list[str]:
        """All transitive consumers of a stage (BFS)."""
        return self._walk(name, self._dependents)

    @staticmethod
    def _walk(start: str, edges: dict[str, list[str]]) -> list[str]:
        result: list[str] = []
        queue = deque(edges.get(start, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(edges.get(node, []))
        return result

    def stages_of_kind(self, kind: StageKind) -> list[str]:
        return [n for n in self._order if self._stages[n].kind == kind]

    # ------------------------------------------------------------------
    # Run-time helpers
    # ------------------------------------------------------------------

    def is_ready(self, name: str, statuses: dict[str, StageStatus]) -> bool:
        """True if every input of *name* has succeeded."""
        return all(
            statuses.get(i) in (StageStatus.CACHED, StageStatus.EXECUTED)
            for i in self._inputs.get(name, [])
        )

    def cascade_block(
        self,
        failed: str,
        statuses: dict[str, StageStatus],
        status: StageStatus = StageStatus.BLOCKED,
    ) -> list[str]:
        """Mark every not-yet-run transitive dependent of *failed* as *status*.

        Returns the newly blocked stage names in topological order.
        """
        blocked: list[str] = []
        for name in self.get_dependents(failed):
            if name not in statuses:
                statuses[name] = status
                blocked.append(name)
        return sorted(blocked, key=self._order.index)
