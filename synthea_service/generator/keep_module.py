"""Keep module generation.

Synthea's ``-k`` flag takes a module whose ``Keep`` terminal state marks the
patients worth keeping. The module built here always has the same three
states: ``Initial`` branches to ``Keep`` when the condition block matches and
falls through to ``Terminal`` otherwise.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from synthea_service.jobs.errors import KeepModuleError
from synthea_service.jobs.params import KeepCriteria, KeepCriterion, KeepLogic

logger = logging.getLogger(__name__)

KEEP_MODULE_FILENAME = "synthea_generated_keep_module.json"
GMF_VERSION = 2

# Synthea condition_type per keep-criteria category, in emission order
CATEGORY_LABELS = (
    ("conditions", "Active Condition"),
    ("allergies", "Active Allergy"),
    ("procedures", "Procedure"),
    ("medications", "Active Medication"),
)


@dataclass(frozen=True)
class ModuleCode:
    system: str
    code: str
    display: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"system": self.system, "code": self.code}
        if self.display:
            data["display"] = self.display
        return data


@dataclass(frozen=True)
class ModuleCondition:
    """One clinical check, e.g. an ``Active Condition`` on a SNOMED code."""
    condition_type: str
    codes: List[ModuleCode]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition_type": self.condition_type,
            "codes": [c.to_dict() for c in self.codes],
        }


@dataclass(frozen=True)
class ConditionBlock:
    """``And`` / ``Or`` combination of conditions."""
    logic: KeepLogic
    conditions: List[ModuleCondition]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition_type": self.logic.value,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass(frozen=True)
class ConditionalTransition:
    transition: str
    condition: Optional[ConditionBlock] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"transition": self.transition}
        if self.condition is not None:
            data["condition"] = self.condition.to_dict()
        return data


@dataclass(frozen=True)
class KeepModule:
    """Three-state keep module gated on ``block``."""
    name: str
    block: ConditionBlock
    remarks: List[str] = field(default_factory=list)

    def states(self) -> Dict[str, Dict[str, Any]]:
        transitions = [
            ConditionalTransition("Keep", self.block),
            ConditionalTransition("Terminal"),
        ]
        return {
            "Initial": {
                "type": "Initial",
                "name": "Initial",
                "conditional_transition": [t.to_dict() for t in transitions],
            },
            "Keep": {"type": "Terminal", "name": "Keep"},
            "Terminal": {"type": "Terminal", "name": "Terminal"},
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.remarks:
            data["remarks"] = list(self.remarks)
        data["states"] = self.states()
        data["gmf_version"] = GMF_VERSION
        return data


def collect_conditions(criteria: KeepCriteria) -> List[ModuleCondition]:
    """One condition entry per criterion, categories in fixed order."""
    conditions = []
    for attr, label in CATEGORY_LABELS:
        entries: tuple = getattr(criteria, attr)
        for criterion in entries:
            conditions.append(_condition_for(criterion, label))
    return conditions


def _condition_for(criterion: KeepCriterion, label: str) -> ModuleCondition:
    return ModuleCondition(
        condition_type=label,
        codes=[ModuleCode(criterion.system, criterion.code, criterion.display)],
    )


def build_keep_module(criteria: KeepCriteria, logic: KeepLogic, job_id: str) -> Optional[KeepModule]:
    """Return the keep module for ``criteria``, or None when there is nothing to keep."""
    conditions = collect_conditions(criteria)
    if not conditions:
        return None
    return KeepModule(
        name=f"Generated Keep Module for Job {job_id}",
        block=ConditionBlock(logic=logic, conditions=conditions),
        remarks=[f"Keeps patients matching {logic.value} of {len(conditions)} criteria."],
    )


def write_keep_module(module: KeepModule, directory: str) -> str:
    """Serialize ``module`` into ``directory`` and return the file path."""
    path = os.path.join(directory, KEEP_MODULE_FILENAME)
    try:
        payload = json.dumps(module.to_dict(), indent=2)
    except (TypeError, ValueError) as e:
        raise KeepModuleError(f"Failed to encode keep module JSON: {e}") from e
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.write("\n")
    except OSError as e:
        raise KeepModuleError(f"Failed to write keep module file: {e}") from e
    logger.debug("Wrote keep module with %d conditions to %s", len(module.block.conditions), path)
    return path
