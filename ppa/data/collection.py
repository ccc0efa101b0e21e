# -*- coding: utf-8 -*-
"""
Sample collection: a table of tissue samples with typed columns.

Each row is one biological sample keyed by a stable sample ID. Each column
declares the kind of value it holds (point pattern, scalar, density field,
model reference or category), and values are checked against that kind when
the column is added. Columns are only ever appended; rows are never
reordered.
"""

import logging
import numbers
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ppa.data.fields import DensityField
from ppa.data.patterns import PointPattern
from ppa.exceptions import ColumnError

logger = logging.getLogger(__name__)


class ColumnKind(Enum):
    """Element kind declared by every collection column."""

    PATTERN = 'pattern'
    SCALAR = 'scalar'
    FIELD = 'field'
    MODEL_REF = 'model_ref'
    CATEGORY = 'category'


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def _check_kind(kind: ColumnKind, value) -> bool:
    if kind is ColumnKind.PATTERN:
        return isinstance(value, PointPattern)
    if kind is ColumnKind.FIELD:
        return isinstance(value, DensityField)
    if kind is ColumnKind.SCALAR:
        return isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))
    if kind is ColumnKind.MODEL_REF:
        return isinstance(value, str)
    if kind is ColumnKind.CATEGORY:
        return _is_missing(value) or isinstance(value, (str, numbers.Integral, np.bool_, bool))
    return False


class SampleCollection:
    """Hyperframe-like table of samples with kind-tagged columns.

    Args:
        sample_ids: Unique sample identifiers, in row order
        metadata: Optional DataFrame of categorical metadata indexed by
            sample ID (or with a ``sample_id`` column)

    Example:
        >>> collection = SampleCollection(['s1', 's2'])
        >>> collection.add_column('group', ColumnKind.CATEGORY, {'s1': 'A', 's2': 'B'})
        >>> collection.column('group')
        ['A', 'B']
    """

    def __init__(self, sample_ids: Sequence[str], metadata: Optional[pd.DataFrame] = None):
        ids = [str(s) for s in sample_ids]
        if len(set(ids)) != len(ids):
            duplicates = sorted(pd.Series(ids)[pd.Series(ids).duplicated()].unique())
            raise ColumnError("Duplicate sample IDs", ', '.join(duplicates))
        self._ids: Tuple[str, ...] = tuple(ids)
        self._columns: Dict[str, Tuple[ColumnKind, Dict[str, Any]]] = {}

        if metadata is not None:
            metadata = metadata.copy()
            if 'sample_id' in metadata.columns:
                metadata = metadata.set_index('sample_id')
            metadata.index = metadata.index.astype(str)
            for col in metadata.columns:
                values = {sid: metadata.at[sid, col] for sid in self._ids if sid in metadata.index}
                self.add_column(col, ColumnKind.CATEGORY, {k: _to_category(v) for k, v in values.items()})

    @property
    def sample_ids(self) -> List[str]:
        return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, name: str) -> bool:
        return name in self._columns

    def __repr__(self) -> str:
        cols = ', '.join(f"{name}:{kind.value}" for name, (kind, _) in self._columns.items())
        return f"SampleCollection(n_samples={len(self)}, columns=[{cols}])"

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def column_names(self, kind: Optional[ColumnKind] = None) -> List[str]:
        """Names of all columns, or of the columns of one kind."""
        return [name for name, (k, _) in self._columns.items() if kind is None or k is kind]

    def kind(self, name: str) -> ColumnKind:
        self._require(name)
        return self._columns[name][0]

    def require_kind(self, name: str, kind: ColumnKind):
        """Raise ColumnError unless the column exists and has the given kind."""
        if self.kind(name) is not kind:
            raise ColumnError(
                f"Column has kind '{self.kind(name).value}', expected '{kind.value}'", name
            )

    def column(self, name: str) -> List[Any]:
        """Column values in row order."""
        self._require(name)
        values = self._columns[name][1]
        return [values[sid] for sid in self._ids]

    def values(self, name: str) -> Dict[str, Any]:
        """Column values keyed by sample ID."""
        self._require(name)
        return dict(self._columns[name][1])

    def cell(self, sample_id: str, name: str) -> Any:
        self._require(name)
        try:
            return self._columns[name][1][sample_id]
        except KeyError:
            raise KeyError(f"Unknown sample ID: {sample_id}") from None

    def row(self, sample_id: str) -> Dict[str, Any]:
        if sample_id not in self._ids:
            raise KeyError(f"Unknown sample ID: {sample_id}")
        return {name: values[sample_id] for name, (_, values) in self._columns.items()}

    def iter_rows(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        for sid in self._ids:
            yield sid, self.row(sid)

    def add_column(
        self,
        name: str,
        kind: ColumnKind,
        values: Union[Mapping[str, Any], Sequence[Any]],
        overwrite: bool = False
    ) -> 'SampleCollection':
        """Append a column, one value per existing sample.

        Args:
            name: Column name
            kind: Declared element kind
            values: Mapping from sample ID to value, or a sequence aligned
                with the current row order
            overwrite: Replace an existing column of the same name

        Returns:
            The collection itself, to allow chaining

        Raises:
            ColumnError: If the name exists, values are misaligned with the
                rows, or a value does not match the declared kind
        """
        if not isinstance(kind, ColumnKind):
            raise ColumnError(f"Unknown column kind {kind!r}", name)
        if name in self._columns and not overwrite:
            raise ColumnError("Column already exists", name)

        if isinstance(values, Mapping):
            keyed = {str(k): v for k, v in values.items()}
            missing = [sid for sid in self._ids if sid not in keyed]
            extra = [k for k in keyed if k not in set(self._ids)]
            if missing or extra:
                raise ColumnError(
                    f"Values do not align with samples (missing: {missing[:5]}, unknown: {extra[:5]})",
                    name
                )
        else:
            values = list(values)
            if len(values) != len(self._ids):
                raise ColumnError(
                    f"Got {len(values)} values for {len(self._ids)} samples", name
                )
            keyed = dict(zip(self._ids, values))

        for sid in self._ids:
            if not _check_kind(kind, keyed[sid]):
                raise ColumnError(
                    f"Value for sample '{sid}' is {type(keyed[sid]).__name__}, not {kind.value}", name
                )

        self._columns[name] = (kind, {sid: keyed[sid] for sid in self._ids})
        logger.debug(f"Added {kind.value} column '{name}'")
        return self

    def to_frame(self, kinds: Iterable[ColumnKind] = (ColumnKind.CATEGORY, ColumnKind.SCALAR)) -> pd.DataFrame:
        """Tabulate scalar-like columns as a DataFrame indexed by sample ID.

        Category columns become pandas categoricals; scalar columns floats.
        """
        kinds = set(kinds)
        data = {}
        for name, (kind, values) in self._columns.items():
            if kind not in kinds:
                continue
            column = [values[sid] for sid in self._ids]
            if kind is ColumnKind.CATEGORY:
                data[name] = pd.Categorical([None if _is_missing(v) else v for v in column])
            elif kind is ColumnKind.SCALAR:
                data[name] = np.asarray(column, dtype=float)
            else:
                data[name] = column
        frame = pd.DataFrame(data, index=pd.Index(self._ids, name='sample_id'))
        return frame

    def _require(self, name: str):
        if name not in self._columns:
            raise ColumnError("Column not found", name)


def _to_category(value):
    if _is_missing(value):
        return None
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (str, numbers.Integral, bool, np.bool_)):
        return value
    return str(value)
