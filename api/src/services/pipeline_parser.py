"""
Pipeline YAML parser and validator.

Checks the shape of a pipeline definition and normalizes it. Structural rules
that need the whole tree (unique names, gates, hook references) are enforced
by the controller when it builds the graph.
"""

import yaml
from typing import List, Dict, Any, Optional

BODY_KEYS = ("commands", "stages", "parallel")
HOOK_TRIGGERS = ("always", "success", "failure")
HOOK_KINDS = ("run", "stage", "notify", "publish")

class PipelineConfigError(Exception):
    """Raised when pipeline configuration is invalid."""
    pass

def parse_pipeline_config(yaml_content: str) -> Dict[str, Any]:
    """Parse pipeline YAML configuration from string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def parse_pipeline_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate pipeline configuration from dict."""
    return validate_config(config)

def validate_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate pipeline configuration structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    name = config.get("name", "Unnamed Pipeline")
    if not isinstance(name, str):
        raise PipelineConfigError("Pipeline 'name' must be a string")

    if "stages" not in config:
        raise PipelineConfigError("Pipeline must have 'stages' defined")

    return {
        "name": name,
        "stages": validate_stages(config["stages"], "Pipeline"),
        "env": validate_env(config.get("env"), "Pipeline"),
        "post": validate_hooks(config.get("post"), "Pipeline"),
    }

def validate_env(env: Any, where: str) -> Dict[str, str]:
    if env is None:
        return {}
    if not isinstance(env, dict):
        raise PipelineConfigError(f"{where} 'env' must be a mapping")
    return {str(k): str(v) for k, v in env.items()}

def validate_stages(stages: Any, where: str) -> List[Dict[str, Any]]:
    if not isinstance(stages, list):
        raise PipelineConfigError(f"{where} 'stages' must be a list")

    if len(stages) == 0:
        raise PipelineConfigError(f"{where} must have at least one stage")

    return [validate_stage(stage, f"{where} stage {i}") for i, stage in enumerate(stages)]

def validate_stage(stage: Any, where: str) -> Dict[str, Any]:
    """Validate a single stage and, recursively, its children."""
    if not isinstance(stage, dict):
        raise PipelineConfigError(f"{where} must be a dictionary")

    if "name" not in stage:
        raise PipelineConfigError(f"{where} missing 'name'")

    if not isinstance(stage["name"], str):
        raise PipelineConfigError(f"{where} 'name' must be a string")

    where = f"Stage '{stage['name']}'"
    modes = [key for key in BODY_KEYS if key in stage]
    if len(modes) != 1:
        raise PipelineConfigError(f"{where} must define exactly one of 'commands', 'stages' or 'parallel'")

    result: Dict[str, Any] = {"name": stage["name"]}

    if modes[0] == "commands":
        result.update(validate_action(stage, where))
    else:
        result[modes[0]] = validate_stages(stage[modes[0]], where)

    if "when" in stage:
        # Checked when the stage runs; a malformed condition only skips the stage
        result["when"] = stage["when"]

    for key in ("agent", "dir"):
        if key in stage:
            if not isinstance(stage[key], str):
                raise PipelineConfigError(f"{where} '{key}' must be a string")
            result[key] = stage[key]

    if "approval" in stage:
        result["approval"] = validate_approval(stage["approval"], where)

    result["env"] = validate_env(stage.get("env"), where)
    result["post"] = validate_hooks(stage.get("post"), where)
    result["best_effort"] = bool(stage.get("best_effort", False))
    return result

def validate_action(step: Dict[str, Any], where: str) -> Dict[str, Any]:
    if "image" not in step:
        raise PipelineConfigError(f"{where} missing 'image'")

    if not isinstance(step["image"], str):
        raise PipelineConfigError(f"{where} 'image' must be a string")

    if not isinstance(step.get("commands"), list):
        raise PipelineConfigError(f"{where} 'commands' must be a list")

    for j, cmd in enumerate(step["commands"]):
        if not isinstance(cmd, str):
            raise PipelineConfigError(f"{where} command {j} must be a string")

    timeout = step.get("timeout", 600)  # Default 10 min timeout
    if not isinstance(timeout, int) or timeout <= 0:
        raise PipelineConfigError(f"{where} 'timeout' must be a positive integer")

    return {
        "image": step["image"],
        "commands": step["commands"],
        "timeout": timeout,
    }

def validate_approval(approval: Any, where: str) -> Dict[str, Any]:
    if isinstance(approval, str):
        approval = {"message": approval}

    if not isinstance(approval, dict):
        raise PipelineConfigError(f"{where} 'approval' must be a mapping or a message")

    timeout = approval.get("timeout", 3600)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise PipelineConfigError(f"{where} approval 'timeout' must be positive")

    approvers = approval.get("approvers", [])
    if not isinstance(approvers, list) or not all(isinstance(a, str) for a in approvers):
        raise PipelineConfigError(f"{where} approval 'approvers' must be a list of names")

    return {
        "message": str(approval.get("message", "Proceed?")),
        "timeout": timeout,
        "approvers": approvers,
        "fatal": bool(approval.get("fatal", False)),
    }

def validate_hooks(post: Any, where: str) -> Dict[str, List[Dict[str, Any]]]:
    if post is None:
        return {}

    if not isinstance(post, dict):
        raise PipelineConfigError(f"{where} 'post' must be a mapping")

    hooks = {}
    for trigger, items in post.items():
        if trigger not in HOOK_TRIGGERS:
            raise PipelineConfigError(f"{where} has unknown hook trigger '{trigger}'")
        if not isinstance(items, list):
            raise PipelineConfigError(f"{where} '{trigger}' hooks must be a list")

        for i, hook in enumerate(items):
            kinds = [k for k in HOOK_KINDS if isinstance(hook, dict) and k in hook]
            if len(kinds) != 1:
                raise PipelineConfigError(
                    f"{where} {trigger} hook {i} must define exactly one of {', '.join(HOOK_KINDS)}"
                )
            if kinds[0] == "run":
                validate_action(hook["run"] if isinstance(hook["run"], dict) else {}, f"{where} {trigger} hook {i}")

        hooks[trigger] = items

    return hooks
