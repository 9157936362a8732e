"""
Pipeline graph model, construction and structural validation.

A pipeline is an ordered list of top-level stages. Each stage body is exactly
one of a leaf action, a sequence of child stages or a parallel group of child
stages.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

from controller.src.engine.errors import StructuralError

PATH_SEPARATOR = "/"
PIPELINE_OWNER = "<pipeline>"
DEFAULT_ACTION_TIMEOUT = 600


class HookKind(str, Enum):
    RUN = "run"
    STAGE = "stage"
    NOTIFY = "notify"
    PUBLISH = "publish"


class HookTrigger(str, Enum):
    ALWAYS = "always"
    SUCCESS = "success"
    FAILURE = "failure"


class Hook(BaseModel):
    kind: HookKind
    # Action id (run), stage path (stage), channel (notify) or glob (publish)
    target: str
    severity: str = "info"
    message: Optional[str] = None


class PostHooks(BaseModel):
    always: List[Hook] = Field(default_factory=list)
    success: List[Hook] = Field(default_factory=list)
    failure: List[Hook] = Field(default_factory=list)

    def for_trigger(self, trigger: HookTrigger) -> List[Hook]:
        return getattr(self, trigger.value)

    def all(self) -> List[Hook]:
        return self.always + self.success + self.failure


class ApprovalSpec(BaseModel):
    message: str = "Proceed?"
    timeout: float = 3600
    approvers: List[str] = Field(default_factory=list)
    # Fatal gates cancel the whole run when not approved
    fatal: bool = False


class ActionSpec(BaseModel):
    image: str
    commands: List[str]
    timeout: int = DEFAULT_ACTION_TIMEOUT


class Leaf(BaseModel):
    kind: Literal["leaf"] = "leaf"
    action_id: str


class Sequence(BaseModel):
    kind: Literal["sequence"] = "sequence"
    stages: List["Stage"]


class Parallel(BaseModel):
    kind: Literal["parallel"] = "parallel"
    stages: List["Stage"]


StageBody = Annotated[Union[Leaf, Sequence, Parallel], Field(discriminator="kind")]


class Stage(BaseModel):
    name: str
    body: StageBody
    condition: Optional[Dict[str, Any]] = None
    hooks: PostHooks = Field(default_factory=PostHooks)
    approval: Optional[ApprovalSpec] = None
    env: Dict[str, str] = Field(default_factory=dict)
    workdir: Optional[str] = None
    agent: Optional[str] = None
    best_effort: bool = False

    @property
    def children(self) -> List["Stage"]:
        if isinstance(self.body, Leaf):
            return []
        return self.body.stages

    @property
    def is_leaf(self) -> bool:
        return isinstance(self.body, Leaf)


Sequence.model_rebuild()
Parallel.model_rebuild()
Stage.model_rebuild()


class PipelineGraph(BaseModel):
    name: str = "Unnamed Pipeline"
    stages: List[Stage]
    hooks: PostHooks = Field(default_factory=PostHooks)
    env: Dict[str, str] = Field(default_factory=dict)
    actions: Dict[str, ActionSpec] = Field(default_factory=dict)

    def walk(self) -> Iterator[Tuple[str, Stage]]:
        """Yield (path, stage) depth-first, in definition order."""
        def _walk(stages: List[Stage], parent: str):
            for stage in stages:
                path = join_path(parent, stage.name)
                yield path, stage
                yield from _walk(stage.children, path)

        yield from _walk(self.stages, "")

    def find(self, path: str) -> Optional[Stage]:
        for stage_path, stage in self.walk():
            if stage_path == path:
                return stage
        return None


def join_path(parent: str, name: str) -> str:
    return f"{parent}{PATH_SEPARATOR}{name}" if parent else name


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

BODY_KEYS = ("commands", "stages", "parallel")
HOOK_KEYS = tuple(kind.value for kind in HookKind)


def _build_action(raw: Dict[str, Any], where: str, problems: List[str]) -> Optional[ActionSpec]:
    image = raw.get("image")
    commands = raw.get("commands")

    if not isinstance(image, str) or not image:
        problems.append(f"{where}: 'image' is required for commands")
        return None
    if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
        problems.append(f"{where}: 'commands' must be a list of strings")
        return None

    return ActionSpec(
        image=image,
        commands=commands,
        timeout=raw.get("timeout", DEFAULT_ACTION_TIMEOUT),
    )


def _build_hooks(
    raw: Any,
    owner: str,
    actions: Dict[str, ActionSpec],
    problems: List[str],
) -> PostHooks:
    if raw is None:
        return PostHooks()
    if not isinstance(raw, dict):
        problems.append(f"{owner}: 'post' must be a mapping")
        return PostHooks()

    hooks = PostHooks()
    for trigger, items in raw.items():
        if trigger not in ("always", "success", "failure"):
            problems.append(f"{owner}: unknown hook trigger '{trigger}'")
            continue
        if not isinstance(items, list):
            problems.append(f"{owner}: '{trigger}' hooks must be a list")
            continue

        for i, item in enumerate(items):
            where = f"{owner} post.{trigger}[{i}]"
            kinds = [k for k in HOOK_KEYS if isinstance(item, dict) and k in item]
            if len(kinds) != 1:
                problems.append(f"{where}: hook must define exactly one of {', '.join(HOOK_KEYS)}")
                continue

            kind = HookKind(kinds[0])
            value = item[kind.value]

            if kind == HookKind.RUN:
                # Inline teardown/publish commands get their own action id
                action = _build_action(value if isinstance(value, dict) else {}, where, problems)
                if action is None:
                    continue
                target = f"{owner}#{trigger}-{i}"
                actions[target] = action
            elif isinstance(value, str) and value:
                target = value
            else:
                problems.append(f"{where}: '{kind.value}' expects a string")
                continue

            hooks.for_trigger(HookTrigger(trigger)).append(Hook(
                kind=kind,
                target=target,
                severity=item.get("severity", "info"),
                message=item.get("message"),
            ))

    return hooks


def _build_approval(raw: Any, where: str, problems: List[str]) -> Optional[ApprovalSpec]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return ApprovalSpec(message=raw)
    if not isinstance(raw, dict):
        problems.append(f"{where}: 'approval' must be a mapping or a message")
        return None

    timeout = raw.get("timeout", 3600)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        problems.append(f"{where}: approval 'timeout' must be a positive number")
        return None

    return ApprovalSpec(
        message=raw.get("message", "Proceed?"),
        timeout=timeout,
        approvers=raw.get("approvers") or [],
        fatal=bool(raw.get("fatal", False)),
    )


def _raw_condition(when: Any) -> Optional[Dict[str, Any]]:
    # Left unparsed: malformed conditions evaluate to false at run time
    if when is None or isinstance(when, dict):
        return when
    return {"malformed": when}


def _build_stage(
    raw: Any,
    parent: str,
    actions: Dict[str, ActionSpec],
    problems: List[str],
) -> Optional[Stage]:
    if not isinstance(raw, dict):
        problems.append(f"{parent or 'pipeline'}: stage must be a mapping")
        return None

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        problems.append(f"{parent or 'pipeline'}: stage missing 'name'")
        return None
    if PATH_SEPARATOR in name:
        problems.append(f"{parent or 'pipeline'}: stage name '{name}' must not contain '{PATH_SEPARATOR}'")
        return None

    path = join_path(parent, name)
    modes = [key for key in BODY_KEYS if key in raw]
    if not modes:
        problems.append(f"{path}: stage defines none of {', '.join(BODY_KEYS)}")
        return None
    if len(modes) > 1:
        problems.append(f"{path}: stage mixes {' and '.join(modes)}")
        return None

    mode = modes[0]
    if mode == "commands":
        action = _build_action(raw, path, problems)
        if action is None:
            return None
        actions[path] = action
        body = Leaf(action_id=path)
    else:
        items = raw[mode]
        if not isinstance(items, list):
            problems.append(f"{path}: '{mode}' must be a list")
            return None
        children = [_build_stage(item, path, actions, problems) for item in items]
        children = [child for child in children if child is not None]
        body = Parallel(stages=children) if mode == "parallel" else Sequence(stages=children)

    return Stage(
        name=name,
        body=body,
        condition=_raw_condition(raw.get("when")),
        hooks=_build_hooks(raw.get("post"), path, actions, problems),
        approval=_build_approval(raw.get("approval"), path, problems),
        env={str(k): str(v) for k, v in (raw.get("env") or {}).items()},
        workdir=raw.get("dir"),
        agent=raw.get("agent"),
        best_effort=bool(raw.get("best_effort", False)),
    )


def build_graph(config: Dict[str, Any]) -> PipelineGraph:
    """
    Build and validate a pipeline graph from a definition mapping.
    Raises StructuralError listing every problem found.
    """
    if not isinstance(config, dict):
        raise StructuralError(["Pipeline definition must be a mapping"])

    problems: List[str] = []
    actions: Dict[str, ActionSpec] = {}

    raw_stages = config.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise StructuralError(["Pipeline must define a non-empty 'stages' list"])

    stages = [_build_stage(raw, "", actions, problems) for raw in raw_stages]
    hooks = _build_hooks(config.get("post"), PIPELINE_OWNER, actions, problems)

    if problems:
        raise StructuralError(problems)

    graph = PipelineGraph(
        name=config.get("name", "Unnamed Pipeline"),
        stages=stages,
        hooks=hooks,
        env={str(k): str(v) for k, v in (config.get("env") or {}).items()},
        actions=actions,
    )
    validate_graph(graph)
    return graph


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _has_gate(stage: Stage) -> bool:
    return stage.approval is not None or any(_has_gate(c) for c in stage.children)


def _check_siblings(stages: List[Stage], parent: str, problems: List[str]):
    seen = set()
    for stage in stages:
        if stage.name in seen:
            problems.append(f"{parent or 'pipeline'}: duplicate stage name '{stage.name}'")
        seen.add(stage.name)


def _check_stage(stage: Stage, path: str, under_gate: bool, problems: List[str]):
    if stage.approval is not None and under_gate:
        problems.append(f"{path}: approval gates cannot be nested")

    if not stage.is_leaf:
        if not stage.children:
            group = "parallel group" if isinstance(stage.body, Parallel) else "stage group"
            problems.append(f"{path}: empty {group}")

        if isinstance(stage.body, Parallel):
            gated = [c.name for c in stage.children if _has_gate(c)]
            if len(gated) > 1:
                problems.append(
                    f"{path}: approval gates in parallel branches {', '.join(gated)} "
                    "could be pending at the same time"
                )

        _check_siblings(stage.children, path, problems)

    for child in stage.children:
        _check_stage(
            child,
            join_path(path, child.name),
            under_gate or stage.approval is not None,
            problems,
        )


def _hook_references(graph: PipelineGraph) -> Dict[str, List[str]]:
    owners = [(PIPELINE_OWNER, graph.hooks)]
    owners.extend((path, stage.hooks) for path, stage in graph.walk())

    edges: Dict[str, List[str]] = {}
    for owner, hooks in owners:
        for hook in hooks.all():
            if hook.kind == HookKind.STAGE:
                edges.setdefault(owner, []).append(hook.target)
    return edges


def _find_cycle(edges: Dict[str, List[str]]) -> Optional[List[str]]:
    visiting, done = set(), set()

    def visit(node: str, trail: List[str]) -> Optional[List[str]]:
        if node in visiting:
            return trail[trail.index(node):] + [node]
        if node in done:
            return None
        visiting.add(node)
        for target in edges.get(node, []):
            cycle = visit(target, trail + [node])
            if cycle:
                return cycle
        visiting.discard(node)
        done.add(node)
        return None

    for start in list(edges):
        cycle = visit(start, [])
        if cycle:
            return cycle
    return None


def validate_graph(graph: PipelineGraph):
    """Raise StructuralError if the graph must not be executed."""
    problems: List[str] = []

    if not graph.stages:
        problems.append("pipeline: no stages defined")

    _check_siblings(graph.stages, "", problems)
    for stage in graph.stages:
        _check_stage(stage, stage.name, False, problems)

    stages = dict(graph.walk())
    edges = _hook_references(graph)
    for owner, targets in edges.items():
        for target in targets:
            stage = stages.get(target)
            if stage is None:
                problems.append(f"{owner}: hook references unknown stage '{target}'")
            elif not stage.is_leaf:
                problems.append(f"{owner}: hook references composite stage '{target}'")

    cycle = _find_cycle(edges)
    if cycle:
        problems.append("hook references form a cycle: " + " -> ".join(cycle))

    for path, stage in stages.items():
        if stage.is_leaf and stage.body.action_id not in graph.actions:
            problems.append(f"{path}: unknown action '{stage.body.action_id}'")

    if problems:
        raise StructuralError(problems)
