#    calibration.py
#        Calibration objects and the classifier that recognizes them from the layout of a symbol
#        and its siblings
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'CalibrationKind',
    'AxisDescriptor',
    'CalibrationObject',
    'ValueCalibration',
    'CurveCalibration',
    'MapCalibration',
    'ValueBlockCalibration',
    'BlobCalibration',
    'CalibrationClassifier',
]

import logging
import enum
from dataclasses import dataclass

from dwarfcal.core.axis_policy import AxisMatchPolicy, make_axis_policies, as_axis_array
from dwarfcal.core.basic_types import Endianness
from dwarfcal.core.classifier_config import ClassifierConfig
from dwarfcal.core.codecs import decode_scalar, can_decode
from dwarfcal.core.layout import LayoutNode, ScalarLeaf, ArrayNode, CompositeNode
from dwarfcal.core.symbol_table import MemoryReader
from dwarfcal.tools.typing import *


class CalibrationKind(enum.Enum):
    Value = enum.auto()
    Curve = enum.auto()
    Map = enum.auto()
    ValueBlock = enum.auto()
    Blob = enum.auto()


@dataclass
class AxisDescriptor:
    """An axis of a curve or a map. Internal axes live in the same struct as the values"""
    layout: ArrayNode
    is_internal: bool
    symbol_name: Optional[str] = None   # External axis only
    member_name: Optional[str] = None   # Internal axis only

    def get_length(self) -> int:
        return self.layout.dims[0]


@dataclass
class CalibrationObject:
    name: str
    layout: LayoutNode

    @property
    def kind(self) -> CalibrationKind:
        raise NotImplementedError("Abstract method")


@dataclass
class ValueCalibration(CalibrationObject):
    @property
    def kind(self) -> CalibrationKind:
        return CalibrationKind.Value

    def get_leaf(self) -> ScalarLeaf:
        return cast(ScalarLeaf, self.layout)


@dataclass
class CurveCalibration(CalibrationObject):
    value: ArrayNode
    axis: AxisDescriptor

    @property
    def kind(self) -> CalibrationKind:
        return CalibrationKind.Curve

    def has_internal_axis(self) -> bool:
        return self.axis.is_internal


@dataclass
class MapCalibration(CalibrationObject):
    value: ArrayNode
    x_axis: AxisDescriptor
    y_axis: AxisDescriptor

    @property
    def kind(self) -> CalibrationKind:
        return CalibrationKind.Map

    def has_internal_axes(self) -> bool:
        return self.x_axis.is_internal and self.y_axis.is_internal


@dataclass
class ValueBlockCalibration(CalibrationObject):
    value: ArrayNode

    @property
    def kind(self) -> CalibrationKind:
        return CalibrationKind.ValueBlock


@dataclass
class BlobCalibration(CalibrationObject):
    address: int
    byte_size: int

    @property
    def kind(self) -> CalibrationKind:
        return CalibrationKind.Blob


class _Query:
    """State of a single classification. External axes are searched once, when first needed"""

    name: str
    layout: LayoutNode
    siblings: Mapping[str, LayoutNode]
    _external_axes: Dict[int, Optional[List[Tuple[str, ArrayNode]]]]

    def __init__(self, name: str, layout: LayoutNode, siblings: Mapping[str, LayoutNode]) -> None:
        self.name = name
        self.layout = layout
        self.siblings = siblings
        self._external_axes = {}


class CalibrationClassifier:
    """
    Classify the layout of a symbol in one of the calibration shapes.
    Rules are tried in priority order, the first match wins. A symbol matching no rule is
    uncategorized and classify() returns None.
    """

    logger: logging.Logger
    config: ClassifierConfig
    policies: List[AxisMatchPolicy]
    memory_reader: Optional[MemoryReader]
    endianness: Endianness
    _rules: List[Callable[[_Query], Optional[CalibrationObject]]]

    def __init__(self,
                 config: Optional[ClassifierConfig] = None,
                 memory_reader: Optional[MemoryReader] = None,
                 endianness: Endianness = Endianness.Little,
                 policies: Optional[List[AxisMatchPolicy]] = None) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = config if config is not None else ClassifierConfig()
        self.policies = policies if policies is not None else make_axis_policies(self.config)
        self.memory_reader = memory_reader
        self.endianness = endianness

        self._rules = [
            self._match_value,
            self._match_value_block,
            self._match_curve_internal_axis,
            self._match_curve_external_axis,
            self._match_map_internal_axes,
            self._match_map_external_axes,
            self._match_blob,
        ]

    def classify(self, name: str, layout: LayoutNode, siblings: Optional[Mapping[str, LayoutNode]] = None) -> Optional[CalibrationObject]:
        """Return the calibration object of a symbol, or None if the symbol is not calibration data"""
        query = _Query(name, layout, siblings if siblings is not None else {})
        for rule in self._rules:
            calibration = rule(query)
            if calibration is not None:
                self.logger.debug(f"{name} classified as {calibration.kind.name} by {rule.__name__}")
                return calibration
        return None

    # region Helpers
    def is_monotonic(self, axis: ArrayNode) -> bool:
        """
        Tells if the initial content of an axis is non-decreasing.
        An axis that cannot be read is assumed to be monotonic
        """
        if not self.config.check_monotonic or self.memory_reader is None:
            return True

        previous: Optional[Union[int, float, bool]] = None
        for element in axis.elements:
            if not isinstance(element, ScalarLeaf) or not can_decode(element.datatype):
                return True
            data = self.memory_reader.read(element.address, element.byte_size)
            if data is None:
                return True
            value = decode_scalar(data, element.datatype, self.endianness)
            if previous is not None and not (value >= previous):
                return False
            previous = value
        return True

    def _as_value_array(self, layout: Optional[LayoutNode], ndim: int) -> Optional[ArrayNode]:
        """A numeric array with the given number of dimensions, bare or as the single member of a struct"""
        if isinstance(layout, CompositeNode):
            if layout.is_union or len(layout.children) != 1:
                return None
            layout = layout.children[0]
        if not isinstance(layout, ArrayNode) or len(layout.dims) != ndim or layout.get_element_count() == 0:
            return None
        datatype = layout.get_element_datatype()
        if datatype is None or not datatype.is_numeric():
            return None
        return layout

    def _is_byte_array(self, layout: ArrayNode) -> bool:
        datatype = layout.get_element_datatype()
        return datatype is not None and datatype.get_size_byte() == 1

    def _get_struct_member(self, layout: CompositeNode, names: List[str]) -> Optional[Tuple[str, LayoutNode]]:
        for name in names:
            child = layout.get_child(name)
            if child is not None:
                return (name, child)
        return None

    def _find_external_axes(self, query: _Query, value: ArrayNode) -> Optional[List[Tuple[str, ArrayNode]]]:
        """Ask each policy in turn for the axes of a value array. Only valid axes are returned"""
        ndim = len(value.dims)
        if ndim in query._external_axes:
            return query._external_axes[ndim]

        found: Optional[List[Tuple[str, ArrayNode]]] = None
        for policy in self.policies:
            axis_names = policy.find_axes(query.name, value.dims, query.siblings)
            if axis_names is None:
                continue
            axes = self._validate_external_axes(query, value, axis_names)
            if axes is not None:
                found = axes
                break
            self.logger.debug(f"{query.name}: axes {axis_names} proposed by {policy.get_name()} policy are not valid")

        query._external_axes[ndim] = found
        return found

    def _validate_external_axes(self, query: _Query, value: ArrayNode, axis_names: List[str]) -> Optional[List[Tuple[str, ArrayNode]]]:
        if len(axis_names) != len(value.dims) or len(set(axis_names)) != len(axis_names):
            return None
        # dims are (len(y), len(x)) for maps
        expected_lengths = list(reversed(value.dims))
        axes: List[Tuple[str, ArrayNode]] = []
        for axis_name, expected_length in zip(axis_names, expected_lengths):
            if axis_name == query.name:
                return None
            axis = as_axis_array(query.siblings.get(axis_name, None))
            if axis is None or axis.dims[0] != expected_length or not self.is_monotonic(axis):
                return None
            axes.append((axis_name, axis))
        return axes

    def _has_embedded_axis(self, layout: LayoutNode) -> bool:
        if not isinstance(layout, CompositeNode):
            return False
        for name in self.config.x_axis_member_names + self.config.y_axis_member_names:
            if layout.get_child(name) is not None:
                return True
        return False
    # endregion

    # region Rules
    def _match_value(self, query: _Query) -> Optional[CalibrationObject]:
        layout = query.layout
        if isinstance(layout, ScalarLeaf) and not layout.is_bitfield() and layout.is_numeric():
            return ValueCalibration(name=query.name, layout=layout)
        return None

    def _match_value_block(self, query: _Query) -> Optional[CalibrationObject]:
        if self._has_embedded_axis(query.layout):
            return None
        value: Optional[ArrayNode] = None
        for ndim in (1, 2, 3):
            value = self._as_value_array(query.layout, ndim)
            if value is not None:
                break
        if value is None or self._is_byte_array(value):
            return None
        if len(value.dims) <= 2 and self._find_external_axes(query, value) is not None:
            return None
        return ValueBlockCalibration(name=query.name, layout=query.layout, value=value)

    def _match_curve_internal_axis(self, query: _Query) -> Optional[CalibrationObject]:
        layout = query.layout
        if not isinstance(layout, CompositeNode) or layout.is_union:
            return None
        axis_member = self._get_struct_member(layout, self.config.x_axis_member_names)
        if axis_member is None:
            return None
        axis_name, axis_layout = axis_member
        axis = as_axis_array(axis_layout)
        if axis is None:
            return None

        value: Optional[ArrayNode] = None
        value_member = self._get_struct_member(layout, self.config.value_member_names)
        if value_member is not None:
            value = self._as_value_array(value_member[1], 1)
        else:
            # No conventional name. Accept a single parallel array
            others = [self._as_value_array(child, 1) for child in layout.children if child is not axis_layout]
            candidates = [c for c in others if c is not None]
            if len(candidates) == 1:
                value = candidates[0]

        if value is None or value.dims[0] != axis.dims[0]:
            return None
        if not self.is_monotonic(axis):
            return None

        return CurveCalibration(
            name=query.name,
            layout=layout,
            value=value,
            axis=AxisDescriptor(layout=axis, is_internal=True, member_name=axis_name)
        )

    def _match_curve_external_axis(self, query: _Query) -> Optional[CalibrationObject]:
        if self._has_embedded_axis(query.layout):
            return None
        value = self._as_value_array(query.layout, 1)
        if value is None:
            return None
        axes = self._find_external_axes(query, value)
        if axes is None:
            return None
        axis_name, axis = axes[0]
        return CurveCalibration(
            name=query.name,
            layout=query.layout,
            value=value,
            axis=AxisDescriptor(layout=axis, is_internal=False, symbol_name=axis_name)
        )

    def _match_map_internal_axes(self, query: _Query) -> Optional[CalibrationObject]:
        layout = query.layout
        if not isinstance(layout, CompositeNode) or layout.is_union:
            return None
        x_member = self._get_struct_member(layout, self.config.x_axis_member_names)
        y_member = self._get_struct_member(layout, self.config.y_axis_member_names)
        if x_member is None or y_member is None:
            return None
        x_axis = as_axis_array(x_member[1])
        y_axis = as_axis_array(y_member[1])
        if x_axis is None or y_axis is None:
            return None

        value: Optional[ArrayNode] = None
        value_member = self._get_struct_member(layout, self.config.value_member_names)
        if value_member is not None:
            value = self._as_value_array(value_member[1], 2)
        else:
            others = [self._as_value_array(child, 2) for child in layout.children]
            candidates = [c for c in others if c is not None]
            if len(candidates) == 1:
                value = candidates[0]

        if value is None or value.dims != (y_axis.dims[0], x_axis.dims[0]):
            return None
        if not self.is_monotonic(x_axis) or not self.is_monotonic(y_axis):
            return None

        return MapCalibration(
            name=query.name,
            layout=layout,
            value=value,
            x_axis=AxisDescriptor(layout=x_axis, is_internal=True, member_name=x_member[0]),
            y_axis=AxisDescriptor(layout=y_axis, is_internal=True, member_name=y_member[0]),
        )

    def _match_map_external_axes(self, query: _Query) -> Optional[CalibrationObject]:
        if self._has_embedded_axis(query.layout):
            return None
        value = self._as_value_array(query.layout, 2)
        if value is None:
            return None
        axes = self._find_external_axes(query, value)
        if axes is None:
            return None
        (x_name, x_axis), (y_name, y_axis) = axes
        return MapCalibration(
            name=query.name,
            layout=query.layout,
            value=value,
            x_axis=AxisDescriptor(layout=x_axis, is_internal=False, symbol_name=x_name),
            y_axis=AxisDescriptor(layout=y_axis, is_internal=False, symbol_name=y_name),
        )

    def _match_blob(self, query: _Query) -> Optional[CalibrationObject]:
        layout = query.layout
        is_blob = False
        if isinstance(layout, ArrayNode) and layout.byte_size > 0 and len(layout.elements) > 0:
            first = layout.elements[0]
            if isinstance(first, ScalarLeaf):
                is_blob = self._is_byte_array(layout)
            elif isinstance(first, (CompositeNode, ArrayNode)):
                is_blob = True
        elif isinstance(layout, CompositeNode) and layout.byte_size > 0:
            is_blob = True

        if not is_blob:
            return None
        return BlobCalibration(name=query.name, layout=layout, address=layout.address, byte_size=layout.byte_size)
    # endregion
