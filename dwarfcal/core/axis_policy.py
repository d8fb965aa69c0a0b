#    axis_policy.py
#        The rules that decide which sibling symbols are the external axes of a curve or a map.
#        Several policies are chained, the first one giving an answer wins
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'AxisMatchPolicy',
    'ExplicitAxisPolicy',
    'AffixAxisPolicy',
    'PositionalAxisPolicy',
    'make_axis_policies',
    'as_axis_array',
]

import abc
import re
import logging

from dwarfcal.core.layout import LayoutNode, ArrayNode, CompositeNode
from dwarfcal.core.classifier_config import ClassifierConfig
from dwarfcal.tools.typing import *


def as_axis_array(layout: Optional[LayoutNode]) -> Optional[ArrayNode]:
    """Return the 1-D numeric array that can serve as an axis: a bare array or the single member of a struct"""
    if isinstance(layout, CompositeNode):
        if layout.is_union or len(layout.children) != 1:
            return None
        layout = layout.children[0]

    if not isinstance(layout, ArrayNode):
        return None
    if len(layout.dims) != 1 or layout.dims[0] == 0:
        return None
    datatype = layout.get_element_datatype()
    if datatype is None or not datatype.is_numeric():
        return None
    return layout


class AxisMatchPolicy(abc.ABC):
    """Finds the axis symbols of a value array among its siblings"""

    @abc.abstractmethod
    def find_axes(self, value_name: str, value_dims: Tuple[int, ...], siblings: Mapping[str, LayoutNode]) -> Optional[List[str]]:
        """
        Return the name of the axis symbols, X first, then Y for 2-D values.
        None when the policy has nothing to propose
        """
        raise NotImplementedError("Abstract method")

    @classmethod
    def get_name(cls) -> str:
        raise NotImplementedError("Abstract method")


class ExplicitAxisPolicy(AxisMatchPolicy):
    """Axes given by annotation: value symbol name -> axis symbol names"""

    _axes: Dict[str, List[str]]

    def __init__(self, axes: Dict[str, List[str]]) -> None:
        self._axes = dict([(k, list(v)) for k, v in axes.items()])

    @classmethod
    def get_name(cls) -> str:
        return 'explicit'

    def find_axes(self, value_name: str, value_dims: Tuple[int, ...], siblings: Mapping[str, LayoutNode]) -> Optional[List[str]]:
        axes = self._axes.get(value_name, None)
        if axes is None or len(axes) != len(value_dims):
            return None
        return list(axes)


class AffixAxisPolicy(AxisMatchPolicy):
    """Axes named after the value symbol. With default settings, "Torque" has its axes in "Torque_x" or "x_Torque" """

    x_suffixes: List[str]
    y_suffixes: List[str]
    x_prefixes: List[str]
    y_prefixes: List[str]

    def __init__(self, x_suffixes: List[str], y_suffixes: List[str], x_prefixes: List[str], y_prefixes: List[str]) -> None:
        self.x_suffixes = list(x_suffixes)
        self.y_suffixes = list(y_suffixes)
        self.x_prefixes = list(x_prefixes)
        self.y_prefixes = list(y_prefixes)

    @classmethod
    def get_name(cls) -> str:
        return 'affix'

    def _find_one(self, value_name: str, suffixes: List[str], prefixes: List[str], siblings: Mapping[str, LayoutNode]) -> Optional[str]:
        candidates = [value_name + suffix for suffix in suffixes] + [prefix + value_name for prefix in prefixes]
        for candidate in candidates:
            if candidate != value_name and candidate in siblings:
                return candidate
        return None

    def find_axes(self, value_name: str, value_dims: Tuple[int, ...], siblings: Mapping[str, LayoutNode]) -> Optional[List[str]]:
        x_axis = self._find_one(value_name, self.x_suffixes, self.x_prefixes, siblings)
        if x_axis is None:
            return None
        if len(value_dims) == 1:
            return [x_axis]
        if len(value_dims) == 2:
            y_axis = self._find_one(value_name, self.y_suffixes, self.y_prefixes, siblings)
            if y_axis is None:
                return None
            return [x_axis, y_axis]
        return None


class PositionalAxisPolicy(AxisMatchPolicy):
    """
    Axes are anonymous symbols like Axis_0, Axis_1, matched to the value dimensions by length.
    Only applies to the value symbols matching a name pattern
    """

    logger: logging.Logger
    _axis_regex: "re.Pattern[str]"
    _value_regex: "re.Pattern[str]"

    def __init__(self, axis_pattern: str, value_pattern: str) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._axis_regex = re.compile(axis_pattern)
        self._value_regex = re.compile(value_pattern)

    @classmethod
    def get_name(cls) -> str:
        return 'positional'

    @classmethod
    def _natural_key(cls, name: str) -> List[Union[int, str]]:
        return [int(part) if part.isdigit() else part for part in re.split(r'(\d+)', name)]

    def find_axes(self, value_name: str, value_dims: Tuple[int, ...], siblings: Mapping[str, LayoutNode]) -> Optional[List[str]]:
        if not self._value_regex.search(value_name):
            return None

        lengths: Dict[str, int] = {}
        for name in sorted([n for n in siblings.keys() if self._axis_regex.search(n) and n != value_name], key=self._natural_key):
            axis = as_axis_array(siblings.get(name, None))
            if axis is not None:
                lengths[name] = axis.dims[0]

        if len(value_dims) == 1:
            matches = [name for name, length in lengths.items() if length == value_dims[0]]
            if len(matches) == 0:
                return None
            if len(matches) > 1:
                self.logger.debug(f"{value_name}: {len(matches)} axes of length {value_dims[0]}. Using {matches[0]}")
            return [matches[0]]

        if len(value_dims) == 2:
            x_matches = [name for name, length in lengths.items() if length == value_dims[1]]
            y_matches = [name for name, length in lengths.items() if length == value_dims[0]]
            if value_dims[0] == value_dims[1]:
                if len(x_matches) == 2:
                    return [x_matches[0], x_matches[1]]
                return None
            if len(x_matches) == 1 and len(y_matches) == 1:
                return [x_matches[0], y_matches[0]]
            return None

        return None


def make_axis_policies(config: ClassifierConfig) -> List[AxisMatchPolicy]:
    """Build the chain of axis policies in the configured order"""
    policies: List[AxisMatchPolicy] = []
    for name in config.policy_order:
        if name == ExplicitAxisPolicy.get_name():
            policies.append(ExplicitAxisPolicy(config.explicit_axes))
        elif name == AffixAxisPolicy.get_name():
            policies.append(AffixAxisPolicy(
                x_suffixes=config.x_suffixes,
                y_suffixes=config.y_suffixes,
                x_prefixes=config.x_prefixes,
                y_prefixes=config.y_prefixes
            ))
        elif name == PositionalAxisPolicy.get_name():
            policies.append(PositionalAxisPolicy(
                axis_pattern=config.positional_axis_pattern,
                value_pattern=config.positional_value_pattern
            ))
        else:
            raise ValueError(f"Unknown axis policy {name}")
    return policies
