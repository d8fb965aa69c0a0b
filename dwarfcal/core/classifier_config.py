#    classifier_config.py
#        Configuration of the calibration classifier: member naming conventions and
#        how external axes are searched among the sibling symbols
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['ClassifierConfig', 'ClassifierConfigDict', 'AXIS_POLICY_NAMES']

import re
from dataclasses import dataclass, field

from dwarfcal.tools import validation
from dwarfcal.tools.typing import *

AXIS_POLICY_NAMES = ('explicit', 'affix', 'positional')


class ClassifierConfigDict(TypedDict, total=False):
    x_axis_member_names: List[str]
    y_axis_member_names: List[str]
    value_member_names: List[str]
    policy_order: List[str]
    x_suffixes: List[str]
    y_suffixes: List[str]
    x_prefixes: List[str]
    y_prefixes: List[str]
    positional_axis_pattern: str
    positional_value_pattern: str
    explicit_axes: Dict[str, List[str]]
    check_monotonic: bool


@dataclass
class ClassifierConfig:
    x_axis_member_names: List[str] = field(default_factory=lambda: ['x', 'x_axis', 'axis_x'])
    y_axis_member_names: List[str] = field(default_factory=lambda: ['y', 'y_axis', 'axis_y'])
    value_member_names: List[str] = field(default_factory=lambda: ['value', 'values', 'z'])
    policy_order: List[str] = field(default_factory=lambda: list(AXIS_POLICY_NAMES))
    x_suffixes: List[str] = field(default_factory=lambda: ['_x'])
    y_suffixes: List[str] = field(default_factory=lambda: ['_y'])
    x_prefixes: List[str] = field(default_factory=lambda: ['x_'])
    y_prefixes: List[str] = field(default_factory=lambda: ['y_'])
    positional_axis_pattern: str = r'^Axis_\d+$'
    positional_value_pattern: str = r'(Curve|Map)'
    explicit_axes: Dict[str, List[str]] = field(default_factory=dict)   # value symbol -> [x axis symbol, (y axis symbol)]
    check_monotonic: bool = True

    def __post_init__(self) -> None:
        for name in ('x_axis_member_names', 'y_axis_member_names', 'value_member_names',
                     'x_suffixes', 'y_suffixes', 'x_prefixes', 'y_prefixes'):
            validation.assert_str_sequence(getattr(self, name), name)

        validation.assert_str_sequence(self.policy_order, 'policy_order')
        for policy_name in self.policy_order:
            if policy_name not in AXIS_POLICY_NAMES:
                raise ValueError(f"Unknown axis policy {policy_name}. Possible values are {', '.join(AXIS_POLICY_NAMES)}")
        if len(set(self.policy_order)) != len(self.policy_order):
            raise ValueError("policy_order contains duplicates")

        for name in ('positional_axis_pattern', 'positional_value_pattern'):
            pattern = getattr(self, name)
            validation.assert_type(pattern, name, str)
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"{name} is not a valid regular expression: {e}") from e

        validation.assert_type(self.explicit_axes, 'explicit_axes', dict)
        for value_name, axes in self.explicit_axes.items():
            validation.assert_type(value_name, 'explicit_axes key', str)
            validation.assert_str_sequence(axes, f'explicit_axes[{value_name}]')
            if len(axes) not in (1, 2):
                raise ValueError(f"explicit_axes[{value_name}] must name 1 or 2 axes")

        validation.assert_type(self.check_monotonic, 'check_monotonic', bool)

    def to_dict(self) -> ClassifierConfigDict:
        return {
            'x_axis_member_names': list(self.x_axis_member_names),
            'y_axis_member_names': list(self.y_axis_member_names),
            'value_member_names': list(self.value_member_names),
            'policy_order': list(self.policy_order),
            'x_suffixes': list(self.x_suffixes),
            'y_suffixes': list(self.y_suffixes),
            'x_prefixes': list(self.x_prefixes),
            'y_prefixes': list(self.y_prefixes),
            'positional_axis_pattern': self.positional_axis_pattern,
            'positional_value_pattern': self.positional_value_pattern,
            'explicit_axes': dict([(k, list(v)) for k, v in self.explicit_axes.items()]),
            'check_monotonic': self.check_monotonic
        }

    @classmethod
    def from_dict(cls, d: ClassifierConfigDict) -> "ClassifierConfig":
        """Build a configuration from a dict. Missing keys take their default value"""
        expected_keys: Dict[str, Any] = {
            'x_axis_member_names': list,
            'y_axis_member_names': list,
            'value_member_names': list,
            'policy_order': list,
            'x_suffixes': list,
            'y_suffixes': list,
            'x_prefixes': list,
            'y_prefixes': list,
            'positional_axis_pattern': str,
            'positional_value_pattern': str,
            'explicit_axes': dict,
            'check_monotonic': bool,
        }
        validation.assert_type(d, 'config', dict)
        for k in d.keys():
            if k not in expected_keys:
                raise ValueError(f"Unsupported parameter {k}")

        kwargs: Dict[str, Any] = {}
        for k, t in expected_keys.items():
            if k in d:
                validation.assert_dict_key(d, k, t)
                kwargs[k] = d[k]    # type: ignore

        return cls(**kwargs)    # Validation happens in __post_init__
