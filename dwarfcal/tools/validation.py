#    validation.py
#        Some helpers to validate configuration dictionaries and values
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'assert_type',
    'assert_type_or_none',
    'assert_dict_key',
    'assert_int_range',
    'assert_str_sequence',
]

from dwarfcal.tools.typing import *


def _type_names(types: Union[Type[Any], Iterable[Type[Any]]]) -> str:
    if isinstance(types, type):
        return types.__name__
    return ' or '.join([t.__name__ for t in types])


def _make_types_tuple(types: Union[Type[Any], Iterable[Type[Any]]]) -> Tuple[Type[Any], ...]:
    if isinstance(types, type):
        return (types,)
    return tuple(types)


def assert_type(value: Any, name: str, types: Union[Type[Any], Iterable[Type[Any]]]) -> None:
    types_tuple = _make_types_tuple(types)
    # bool is a subclass of int. Refuse it unless explicitly requested
    if isinstance(value, bool) and bool not in types_tuple:
        raise TypeError(f'{name} must be {_type_names(types)}. Got {value.__class__.__name__}')
    if not isinstance(value, types_tuple):
        raise TypeError(f'{name} must be {_type_names(types)}. Got {value.__class__.__name__}')


def assert_type_or_none(value: Any, name: str, types: Union[Type[Any], Iterable[Type[Any]]]) -> None:
    if value is not None:
        assert_type(value, name, types)


def assert_dict_key(d: Any, key: str, types: Union[Type[Any], Iterable[Type[Any]]], prefix: str = '') -> None:
    if not isinstance(d, dict):
        raise TypeError(f'{prefix}Expected a dict. Got {d.__class__.__name__}')
    if key not in d:
        raise KeyError(f'{prefix}Missing field "{key}"')
    assert_type(d[key], f'{prefix}{key}', types)


def assert_int_range(value: int, name: str, minval: Optional[int] = None, maxval: Optional[int] = None) -> None:
    assert_type(value, name, int)
    if minval is not None and value < minval:
        raise ValueError(f'{name} must be greater or equal to {minval}. Got {value}')
    if maxval is not None and value > maxval:
        raise ValueError(f'{name} must be less or equal to {maxval}. Got {value}')


def assert_str_sequence(value: Any, name: str) -> None:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise TypeError(f'{name} must be a list of strings. Got {value.__class__.__name__}')
    for i, item in enumerate(value):
        assert_type(item, f'{name}[{i}]', str)
