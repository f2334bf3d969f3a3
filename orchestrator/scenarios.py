from dataclasses import dataclass
from typing import List, Dict, Any, Optional
import yaml
from pathlib import Path

ACTION_TYPES = ("start_load", "continue_load", "kill_node", "restart_node")

@dataclass
class Action:
    type: str
    target: Optional[str]
    params: Dict[str, Any]

@dataclass
class Phase:
    name: str
    duration_sec: float
    actions: List[Action]

@dataclass
class Scenario:
    name: str
    description: str
    phases: List[Phase]

def _parse_action(phase_name: str, a: Dict[str, Any]) -> Action:
    a_type = a.get("type")
    if a_type not in ACTION_TYPES:
        raise ValueError(f"Phase '{phase_name}': unknown action type {a_type!r}")
    a_target = a.get("target")
    if a_type in ("kill_node", "restart_node") and not a_target:
        raise ValueError(f"Phase '{phase_name}': {a_type} needs a target service")
    # everything else goes into params (rps, endpoint, ...)
    params = {k: v for k, v in a.items() if k not in ("type", "target")}
    return Action(type=a_type, target=a_target, params=params)

def load_scenario(path: str) -> Scenario:
    path_obj = Path(path)
    if not path_obj.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")

    with open(path_obj, "r") as f:
        data = yaml.safe_load(f) or {}

    phases = []
    for i, p in enumerate(data.get("phases", []), start=1):
        name = p.get("name")
        if not name:
            raise ValueError(f"Phase #{i} in {path} has no name")
        phases.append(
            Phase(
                name=name,
                duration_sec=float(p.get("duration_sec", 0)),
                actions=[_parse_action(name, a) for a in p.get("actions", [])],
            )
        )

    return Scenario(
        name=data.get("name", path_obj.stem),
        description=data.get("description", ""),
        phases=phases,
    )
