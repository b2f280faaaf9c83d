"""Plan report inspection.

Reads the JSON document produced by `tofu show -json <planfile>` and answers
the questions tests ask about a plan: how many resources are added, changed
and destroyed, and what attribute values a given resource will get.

The document's shape belongs to the provisioning engine. Every step below
checks presence and type before descending; absent sections (a module
without resources, a plan without changes) are valid and simply yield
nothing. Only a section present with the wrong type is treated as a
broken report.
"""

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from common import MalformedPlanReport

logger = logging.getLogger(__name__)

# Plan documents are plain JSON: str | int | float | bool | None | list | dict
JsonValue = Union[str, int, float, bool, None, list, dict]

_MISSING = object()

# Action tuples from resource_changes[*].change.actions -> (add, change, destroy)
ACTION_COUNTS = {
    ('create',): (1, 0, 0),
    ('update',): (0, 1, 0),
    ('delete',): (0, 0, 1),
    # Replacement is not modification: it counts as one add and one destroy
    ('delete', 'create'): (1, 0, 1),
    ('create', 'delete'): (1, 0, 1),
    ('no-op',): (0, 0, 0),
    ('read',): (0, 0, 0),
    ('forget',): (0, 0, 0),
    (): (0, 0, 0),
}

_SUMMARY_RE = re.compile(
    r'Plan:(?: (\d+) to import,)? (\d+) to add, (\d+) to change, (\d+) to destroy'
)
_NO_CHANGES_RE = re.compile(r'No changes\.')


@dataclass(frozen=True)
class PlanSummary:
    """Resource counts of one plan."""
    add: int = 0
    change: int = 0
    destroy: int = 0


@dataclass(frozen=True)
class PlannedResource:
    """Planned attribute values of one resource instance."""
    address: str
    attributes: dict = field(default_factory=dict)


class LookupStatus(enum.Enum):
    ADDRESS_MISSING = 'address-missing'
    ATTRIBUTE_MISSING = 'attribute-missing'
    FOUND = 'found'


@dataclass(frozen=True)
class AttributeLookup:
    """Outcome of lookup_attribute().

    Unpacks as (value, found) for the common case; status tells a missing
    address apart from a missing attribute.
    """
    status: LookupStatus
    value: Any = None

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND

    def __iter__(self) -> Iterator[Any]:
        return iter((self.value, self.found))


# -----------------------------------------------------------------------------
# Presence-checked accessors
# -----------------------------------------------------------------------------

def _child(node: JsonValue, key: str) -> Any:
    """Return node[key], or _MISSING if node is not a mapping or lacks key."""
    if isinstance(node, dict) and key in node:
        return node[key]
    return _MISSING


def _as_mapping(value: Any, where: str) -> dict:
    """Absent or null becomes {}; anything but a mapping is malformed."""
    if value is _MISSING or value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedPlanReport(f"{where}: expected object, got {type(value).__name__}")
    return value


def _as_list(value: Any, where: str) -> list:
    """Absent or null becomes []; anything but a list is malformed."""
    if value is _MISSING or value is None:
        return []
    if not isinstance(value, list):
        raise MalformedPlanReport(f"{where}: expected array, got {type(value).__name__}")
    return value


def _address(entry: JsonValue, where: str) -> str:
    address = _child(entry, 'address')
    if not isinstance(address, str) or not address:
        raise MalformedPlanReport(f"{where}: resource without address")
    return address


# -----------------------------------------------------------------------------
# Report
# -----------------------------------------------------------------------------

@dataclass
class PlanReport:
    """Parsed plan document."""
    raw: dict

    @property
    def summary(self) -> PlanSummary:
        return count_resources(self)

    @property
    def planned_values(self) -> dict[str, PlannedResource]:
        return extract_planned_values(self)

    @property
    def resource_changes(self) -> dict[str, tuple[str, ...]]:
        return extract_resource_changes(self)


def parse_plan_report(data: Union[str, bytes, dict]) -> PlanReport:
    """Build a PlanReport from `show -json` output or a decoded mapping."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPlanReport(f"Plan report is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPlanReport(f"Plan report must be a JSON object, got {type(data).__name__}")
    return PlanReport(raw=data)


def _raw(report: Union[PlanReport, dict]) -> dict:
    if isinstance(report, PlanReport):
        return report.raw
    return parse_plan_report(report).raw


def _iter_resource_changes(raw: dict) -> Iterator[tuple[str, tuple[str, ...]]]:
    changes = _as_list(_child(raw, 'resource_changes'), 'resource_changes')
    for i, entry in enumerate(changes):
        where = f"resource_changes[{i}]"
        if not isinstance(entry, dict):
            raise MalformedPlanReport(f"{where}: expected object, got {type(entry).__name__}")
        change = _as_mapping(_child(entry, 'change'), f"{where}.change")
        actions = _as_list(_child(change, 'actions'), f"{where}.change.actions")
        for action in actions:
            if not isinstance(action, str):
                raise MalformedPlanReport(
                    f"{where}.change.actions: expected strings, got {type(action).__name__}")
        yield _address(entry, where), tuple(actions)


def count_resources(report: Union[PlanReport, dict]) -> PlanSummary:
    """Count planned adds, changes and destroys.

    resource_changes is flat and already lists resources of nested child
    modules, so a single pass covers the whole configuration.
    """
    add = change = destroy = 0
    for address, actions in _iter_resource_changes(_raw(report)):
        try:
            a, c, d = ACTION_COUNTS[actions]
        except KeyError:
            raise MalformedPlanReport(f"{address}: unknown actions {list(actions)}") from None
        add += a
        change += c
        destroy += d
    summary = PlanSummary(add=add, change=change, destroy=destroy)
    logger.debug(f"Plan summary: {summary}")
    return summary


def extract_resource_changes(report: Union[PlanReport, dict]) -> dict[str, tuple[str, ...]]:
    """Map each resource address to its planned action tuple."""
    return dict(_iter_resource_changes(_raw(report)))


def _collect_module(module: dict, where: str, out: dict[str, PlannedResource]) -> None:
    resources = _as_list(_child(module, 'resources'), f"{where}.resources")
    for i, entry in enumerate(resources):
        entry_where = f"{where}.resources[{i}]"
        address = _address(entry, entry_where)
        values = _as_mapping(_child(entry, 'values'), f"{entry_where}.values")
        out[address] = PlannedResource(address=address, attributes=dict(values))

    children = _as_list(_child(module, 'child_modules'), f"{where}.child_modules")
    for i, child in enumerate(children):
        child_where = f"{where}.child_modules[{i}]"
        _collect_module(_as_mapping(child, child_where), child_where, out)


def extract_planned_values(report: Union[PlanReport, dict]) -> dict[str, PlannedResource]:
    """Map fully-qualified resource address to its planned attributes.

    Addresses (module path + type + name + instance key) are the only
    unique key once modules nest or resources repeat via count/for_each.
    """
    raw = _raw(report)
    planned = _as_mapping(_child(raw, 'planned_values'), 'planned_values')
    root = _as_mapping(_child(planned, 'root_module'), 'planned_values.root_module')
    resources: dict[str, PlannedResource] = {}
    _collect_module(root, 'planned_values.root_module', resources)
    return resources


def lookup_attribute(
    resources: dict[str, PlannedResource],
    address: str,
    name: str,
) -> AttributeLookup:
    """Look up one planned attribute.

    Returns:
        AttributeLookup whose status is ADDRESS_MISSING, ATTRIBUTE_MISSING,
        or FOUND (value may be None or empty)
    """
    resource = resources.get(address)
    if resource is None:
        return AttributeLookup(LookupStatus.ADDRESS_MISSING)
    if name not in resource.attributes:
        return AttributeLookup(LookupStatus.ATTRIBUTE_MISSING)
    return AttributeLookup(LookupStatus.FOUND, resource.attributes[name])


def parse_plan_summary_text(output: str) -> PlanSummary:
    """Parse counts from human-readable plan output.

    Understands 'Plan: X to add, Y to change, Z to destroy.' (with or
    without a leading 'N to import,') and 'No changes.'.
    """
    if match := _SUMMARY_RE.search(output):
        return PlanSummary(
            add=int(match.group(2)),
            change=int(match.group(3)),
            destroy=int(match.group(4)),
        )
    if _NO_CHANGES_RE.search(output):
        return PlanSummary()
    raise MalformedPlanReport("No plan summary found in output")
