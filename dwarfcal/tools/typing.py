#    typing.py
#        Common typing imports used across the project. Meant to be star-imported
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

from typing import *
from typing import TYPE_CHECKING, Self, TypeAlias, TypedDict, Protocol, runtime_checkable, cast
