"""
Premedication grouping into PEV (shared infusion) groups

Every operation takes a GroupingState and returns a new one; inputs are never
modified and nothing is kept between calls. Agents are identified by name and
each selected agent sits in exactly one location: one group or the individual
pool. Agents inside a group carry the group's solvent, agents in the
individual pool carry none.
"""

import logging
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple, Any

from .error_codes import ErrorCode, duplicate_group_error, unknown_agent_error, unknown_group_error
from .schema import GroupingState, PremedicationAgent, SolventGroup, ValidationResult

logger = logging.getLogger(__name__)

INDIVIDUAL = "individual"
GROUP_ID_PREFIX = "pev-"
_GROUP_NUMBER = re.compile(r'^pev-(\d+)$')


def _with_solvent(agent: PremedicationAgent, solvent: Optional[str]) -> PremedicationAgent:
    if agent.solvent == solvent:
        return agent
    return agent.model_copy(update={"solvent": solvent})


def _insert(items: List[PremedicationAgent], agent: PremedicationAgent, position: Optional[int]) -> List[PremedicationAgent]:
    items = list(items)
    if position is None or position >= len(items):
        items.append(agent)
    else:
        items.insert(max(position, 0), agent)
    return items


def _find_group(state: GroupingState, group_id: str) -> int:
    for index, group in enumerate(state.groups):
        if group.id == group_id:
            return index
    raise unknown_group_error(group_id)


def initial_state(agents: Iterable[PremedicationAgent]) -> GroupingState:
    """All agents standalone, no groups"""
    seen = set()
    individual = []
    for agent in agents:
        if agent.name in seen:
            continue
        seen.add(agent.name)
        individual.append(_with_solvent(agent, None))
    return GroupingState(groups=[], individual=individual)


def all_agents(state: GroupingState) -> List[PremedicationAgent]:
    agents = [agent for group in state.groups for agent in group.medications]
    agents.extend(state.individual)
    return agents


def locate_agent(state: GroupingState, name: str) -> Optional[str]:
    """Group id holding the agent, INDIVIDUAL, or None when the agent is not selected"""
    for group in state.groups:
        if any(agent.name == name for agent in group.medications):
            return group.id
    if any(agent.name == name for agent in state.individual):
        return INDIVIDUAL
    return None


def duplicated_agents(state: GroupingState) -> List[str]:
    """Names found in more than one place (a broken partition)"""
    counts = Counter(agent.name for agent in all_agents(state))
    return [name for name, count in counts.items() if count > 1]


def _detach(state: GroupingState, name: str) -> Tuple[GroupingState, PremedicationAgent]:
    """Remove the agent from wherever it is"""
    location = locate_agent(state, name)
    if location is None:
        raise unknown_agent_error(name)

    if location == INDIVIDUAL:
        agent = next(a for a in state.individual if a.name == name)
        remaining = [a for a in state.individual if a.name != name]
        return state.model_copy(update={"individual": remaining}), agent

    groups = []
    agent = None
    for group in state.groups:
        if group.id == location:
            agent = next(a for a in group.medications if a.name == name)
            group = group.model_copy(update={"medications": [a for a in group.medications if a.name != name]})
        groups.append(group)
    return state.model_copy(update={"groups": groups}), agent


def next_group_id(state: GroupingState) -> str:
    numbers = [0]
    for group in state.groups:
        match = _GROUP_NUMBER.match(group.id)
        if match:
            numbers.append(int(match.group(1)))
    return f"{GROUP_ID_PREFIX}{max(numbers) + 1}"


def create_group(state: GroupingState, group_id: Optional[str] = None) -> GroupingState:
    """Append an empty group with no solvent"""
    group_id = group_id or next_group_id(state)
    if any(group.id == group_id for group in state.groups):
        raise duplicate_group_error(group_id)
    logger.debug(f"Creating PEV group {group_id}")
    return state.model_copy(update={"groups": [*state.groups, SolventGroup(id=group_id)]})


def delete_group(state: GroupingState, group_id: str) -> GroupingState:
    """Remove a group; its members go back to the individual pool without solvent"""
    index = _find_group(state, group_id)
    group = state.groups[index]
    released = [_with_solvent(agent, None) for agent in group.medications]
    logger.debug(f"Deleting PEV group {group_id}, releasing {len(released)} agents")
    return GroupingState(
        groups=[g for g in state.groups if g.id != group_id],
        individual=[*state.individual, *released],
    )


def set_group_solvent(state: GroupingState, group_id: str, solvent: Optional[str]) -> GroupingState:
    """Replace a group's solvent; membership is unchanged"""
    index = _find_group(state, group_id)
    solvent = solvent.strip() if isinstance(solvent, str) and solvent.strip() else None
    group = state.groups[index]
    updated = group.model_copy(update={
        "solvent": solvent,
        "medications": [_with_solvent(agent, solvent) for agent in group.medications],
    })
    groups = list(state.groups)
    groups[index] = updated
    return state.model_copy(update={"groups": groups})


def set_group_volume(state: GroupingState, group_id: str, volume_ml: Optional[float]) -> GroupingState:
    index = _find_group(state, group_id)
    groups = list(state.groups)
    groups[index] = groups[index].model_copy(update={"volume_ml": volume_ml})
    return state.model_copy(update={"groups": groups})


def assign_agent(state: GroupingState, name: str, group_id: str, position: Optional[int] = None) -> GroupingState:
    """Move an agent from its current location into a group"""
    _find_group(state, group_id)
    state, agent = _detach(state, name)

    groups = []
    for group in state.groups:
        if group.id == group_id:
            member = _with_solvent(agent, group.solvent)
            group = group.model_copy(update={"medications": _insert(group.medications, member, position)})
        groups.append(group)
    return state.model_copy(update={"groups": groups})


def unassign_agent(state: GroupingState, name: str, position: Optional[int] = None) -> GroupingState:
    """Move an agent back to the individual pool"""
    state, agent = _detach(state, name)
    individual = _insert(state.individual, _with_solvent(agent, None), position)
    return state.model_copy(update={"individual": individual})


def move_agent(state: GroupingState, name: str, target: str, position: Optional[int] = None) -> GroupingState:
    """Drag-and-drop style move; target is a group id or INDIVIDUAL"""
    if target == INDIVIDUAL:
        return unassign_agent(state, name, position)
    return assign_agent(state, name, target, position)


def sync_selection(state: GroupingState, agents: Iterable[PremedicationAgent]) -> GroupingState:
    """
    Follow a changed upstream selection.

    Deselected agents disappear from wherever they were, newly selected agents
    join the individual pool, agents kept in the selection keep their place.
    """
    selected: Dict[str, PremedicationAgent] = {}
    for agent in agents:
        selected.setdefault(agent.name, agent)

    groups = []
    for group in state.groups:
        members = [
            _with_solvent(selected[agent.name], group.solvent)
            for agent in group.medications if agent.name in selected
        ]
        groups.append(group.model_copy(update={"medications": members}))

    individual = [
        _with_solvent(selected[agent.name], None)
        for agent in state.individual if agent.name in selected
    ]

    placed = {agent.name for group in groups for agent in group.medications}
    placed.update(agent.name for agent in individual)
    for name, agent in selected.items():
        if name not in placed:
            individual.append(_with_solvent(agent, None))

    return GroupingState(groups=groups, individual=individual)


def validate_grouping(state: GroupingState) -> ValidationResult:
    """
    Each group needs a solvent and at least one medication; both defects are
    reported independently. The individual pool is always valid.
    """
    result = ValidationResult()
    for index, group in enumerate(state.groups):
        number = index + 1
        if not (group.solvent or "").strip():
            result.add_error(
                f"premedications.groups[{index}].solvent",
                f"PEV {number}: no solvent selected",
                ErrorCode.GRP_NO_SOLVENT.value
            )
        if not group.medications:
            result.add_error(
                f"premedications.groups[{index}].medications",
                f"PEV {number}: no medications assigned",
                ErrorCode.GRP_EMPTY.value
            )

    for name in duplicated_agents(state):
        result.add_error(
            "premedications",
            f"{name} is placed in more than one location",
            ErrorCode.GRP_DUPLICATE_AGENT.value
        )
    return result


def grouping_summary(state: GroupingState) -> Dict[str, Any]:
    """Export shape: grouped premedications plus the individual list"""
    return {
        "groups": [
            {
                "id": group.id,
                "solvent": group.solvent,
                "volume_ml": group.volume_ml,
                "medications": [agent.model_dump(by_alias=True) for agent in group.medications],
            }
            for group in state.groups
        ],
        "individual": [agent.model_dump(by_alias=True) for agent in state.individual],
    }
