"""
Characteristic Group Builder
Groups stations into toggleable top-level characteristic groups
("All", the configured labels, and "Other").
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from core.data_loader import CharacteristicGroupMapping
from core.models import MonitoringLocation


ALL_LABEL = "All"
OTHER_LABEL = "Other"


@dataclass
class CharacteristicGroup:
    """A toggleable bucket of stations."""
    label: str
    characteristic_groups: List[str] = field(default_factory=list)
    stations: List[MonitoringLocation] = field(default_factory=list)
    toggled: bool = True


def get_charc_label(charc_group: str, mappings: Sequence[CharacteristicGroupMapping]) -> str:
    """Top-level label for a raw characteristic group; 'Other' when no mapping claims it."""
    for mapping in mappings:
        if charc_group in mapping.group_names:
            return mapping.label
    return OTHER_LABEL


def label_names(mappings: Sequence[CharacteristicGroupMapping]) -> List[str]:
    """Every label a station total can fall under: configured labels plus 'Other'."""
    return [m.label for m in mappings] + [OTHER_LABEL]


def parse_station_label_totals(
    mappings: Sequence[CharacteristicGroupMapping],
    totals_by_group: Dict[str, int],
) -> Dict[str, int]:
    """
    Roll raw characteristic-group counts up to top-level label counts.

    Every label appears, with 0 when nothing contributes to it. Unclaimed
    groups are added to 'Other'.
    """
    totals_by_label = {label: 0 for label in label_names(mappings)}
    for group, count in totals_by_group.items():
        totals_by_label[get_charc_label(group, mappings)] += count
    return totals_by_label


def initial_monitoring_groups(
    mappings: Sequence[CharacteristicGroupMapping],
) -> Dict[str, CharacteristicGroup]:
    """'All' plus one empty, toggled-on group per configured label."""
    groups = {ALL_LABEL: CharacteristicGroup(ALL_LABEL)}
    for mapping in mappings:
        groups[mapping.label] = CharacteristicGroup(mapping.label, list(mapping.group_names))
    return groups


def build_monitoring_groups(
    stations: Sequence[MonitoringLocation],
    mappings: Sequence[CharacteristicGroupMapping],
) -> Dict[str, CharacteristicGroup]:
    """
    Build the toggle groups for a station list.

    Every station is in 'All' exactly once. A station joins a named group when
    it has a nonzero count in at least one raw group that label claims, and may
    belong to several named groups. Raw groups with nonzero counts that no
    label claims are folded into 'Other', which only exists when it has
    stations.
    """
    groups = initial_monitoring_groups(mappings)
    other = CharacteristicGroup(OTHER_LABEL)

    for station in stations:
        groups[ALL_LABEL].stations.append(station)

        for mapping in mappings:
            if any(
                count > 0 and group in mapping.group_names
                for group, count in station.totals_by_group.items()
            ):
                groups[mapping.label].stations.append(station)

        leftovers = [
            group for group, count in station.totals_by_group.items()
            if count > 0 and get_charc_label(group, mappings) == OTHER_LABEL
        ]
        if leftovers:
            other.stations.append(station)
            for group in leftovers:
                if group not in other.characteristic_groups:
                    other.characteristic_groups.append(group)

    if other.stations:
        groups[OTHER_LABEL] = other
    return groups


def toggled_labels(groups: Dict[str, CharacteristicGroup]) -> List[str]:
    return [label for label, group in groups.items() if label != ALL_LABEL and group.toggled]


def filter_locations_by_charc_groups(
    locations: Sequence[MonitoringLocation],
    groups: Dict[str, CharacteristicGroup],
) -> List[MonitoringLocation]:
    """Keep stations with a nonzero count under at least one toggled-on label."""
    labels = toggled_labels(groups)
    return [
        station for station in locations
        if any(station.totals_by_label.get(label, 0) > 0 for label in labels)
    ]
