"""Loading and saving sample collections"""
import logging
import os
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import yaml

from ppa.data.collection import ColumnKind, SampleCollection
from ppa.data.patterns import PointPattern, Window
from ppa.exceptions import ColumnError, LoadError, MissingDataError, WindowError

logger = logging.getLogger(__name__)

SAMPLES_FILE = "samples.csv"
POINTS_FILE = "points.csv"
MANIFEST_FILE = "dataset.yaml"
WINDOW_COLUMNS = ['window_xmin', 'window_xmax', 'window_ymin', 'window_ymax']
SAMPLE_COLUMNS = ['sample_id'] + WINDOW_COLUMNS
POINT_COLUMNS = ['sample_id', 'cell_type', 'x', 'y']


def _read_table(path: Path, required: List[str], dtype) -> pd.DataFrame:
    """Read a CSV file and check its required columns"""
    if not path.exists():
        raise LoadError("Dataset file not found", str(path))
    try:
        table = pd.read_csv(path, dtype=dtype)
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise LoadError(f"Could not read dataset file ({e})", str(path)) from e

    missing = [c for c in required if c not in table.columns]
    if missing:
        raise LoadError(f"Missing required columns {missing}", str(path))
    return table


def _read_manifest(path: Path) -> List[str]:
    """Cell types declared in the dataset manifest (empty when there is none)"""
    if not path.exists():
        return []
    try:
        with open(path, 'r') as f:
            manifest = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise LoadError(f"Could not read dataset manifest ({e})", str(path)) from e
    cell_types = manifest.get('cell_types', []) if isinstance(manifest, dict) else None
    if not isinstance(cell_types, list):
        raise LoadError("Manifest 'cell_types' must be a list", str(path))
    return [str(c) for c in cell_types]


def load_collection(path: str, pattern_columns: Optional[List[str]] = None) -> SampleCollection:
    """Load a sample collection from a dataset directory

    The directory holds ``samples.csv`` (one row per sample: ``sample_id``,
    window bounds and categorical metadata) and ``points.csv`` (one row per
    cell: ``sample_id``, ``cell_type``, ``x``, ``y``). One point pattern
    column is created per cell type. An optional ``dataset.yaml`` lists the
    ``cell_types`` of the dataset, so types without any points survive a
    save and reload.

    Args:
        path: Dataset directory
        pattern_columns: Cell types to load (default: every type found).
            A sample without points of a type gets an empty pattern.

    Returns:
        SampleCollection with CATEGORY metadata columns and PATTERN columns

    Raises:
        LoadError: If the dataset is absent, unreadable or inconsistent
    """
    path = Path(path)
    if not path.is_dir():
        raise LoadError("Dataset directory not found", str(path))

    # Metadata stays as written: '7' must not come back as '7.0'
    samples = _read_table(path / SAMPLES_FILE, SAMPLE_COLUMNS, dtype=str)
    points = _read_table(
        path / POINTS_FILE, POINT_COLUMNS, dtype={'sample_id': str, 'cell_type': str}
    )

    if samples['sample_id'].isna().any():
        raise LoadError("Samples with missing sample_id", str(path / SAMPLES_FILE))
    duplicated = samples['sample_id'][samples['sample_id'].duplicated()].unique().tolist()
    if duplicated:
        raise LoadError(f"Duplicate sample IDs {duplicated}", str(path / SAMPLES_FILE))

    unknown = sorted(set(points['sample_id'].dropna()) - set(samples['sample_id']))
    if unknown:
        raise LoadError(f"Points reference unknown samples {unknown[:5]}", str(path / POINTS_FILE))
    if points[['sample_id', 'cell_type']].isna().any().any():
        raise LoadError("Points with missing sample_id or cell_type", str(path / POINTS_FILE))

    found_types = sorted(set(points['cell_type'].unique()) | set(_read_manifest(path / MANIFEST_FILE)))
    if pattern_columns is None:
        pattern_columns = found_types
    else:
        absent = [c for c in pattern_columns if c not in found_types]
        if absent:
            raise LoadError(
                f"Expected point pattern columns {absent} have no points and are not declared",
                str(path / POINTS_FILE)
            )

    metadata_cols = [c for c in samples.columns if c not in SAMPLE_COLUMNS]
    metadata = samples.set_index('sample_id')[metadata_cols].astype(object)
    metadata = metadata.where(metadata.notna(), None).astype(object)
    for col in metadata_cols:
        metadata[col] = metadata[col].map(lambda v: None if v is None else str(v))

    try:
        collection = SampleCollection(samples['sample_id'].tolist(), metadata=metadata)
    except ColumnError as e:
        raise LoadError(f"Inconsistent sample metadata ({e})", str(path / SAMPLES_FILE)) from e

    windows = {}
    for row in samples.itertuples(index=False):
        bounds = [getattr(row, c) for c in WINDOW_COLUMNS]
        try:
            windows[row.sample_id] = Window(*[float(b) for b in bounds])
        except (WindowError, TypeError, ValueError) as e:
            raise LoadError(f"Invalid window for sample '{row.sample_id}' ({e})", str(path / SAMPLES_FILE)) from e

    grouped = {key: group for key, group in points.groupby(['cell_type', 'sample_id'], sort=False)}
    for cell_type in pattern_columns:
        patterns = {}
        for sample_id in collection.sample_ids:
            group = grouped.get((cell_type, sample_id))
            try:
                coords = group[['x', 'y']].to_numpy(dtype=float) if group is not None else np.empty((0, 2))
                patterns[sample_id] = PointPattern(coords, windows[sample_id], label=cell_type)
            except (MissingDataError, WindowError, ValueError) as e:
                raise LoadError(f"Invalid points for sample '{sample_id}' ({e})", str(path / POINTS_FILE)) from e
        if cell_type in collection:
            raise LoadError(f"Cell type '{cell_type}' clashes with a metadata column", str(path))
        collection.add_column(cell_type, ColumnKind.PATTERN, patterns)

    logger.info(
        f"Loaded {len(collection)} samples with {len(pattern_columns)} point pattern columns "
        f"({len(points)} points) from {path}"
    )
    return collection


def save_collection(collection: SampleCollection, path: str) -> None:
    """Save the metadata and point patterns of a collection to a dataset directory

    Only CATEGORY and PATTERN columns are written; derived columns are
    recomputed on demand. All patterns of one sample must share a window.
    The pattern column names go to ``dataset.yaml``.

    Args:
        collection: Collection to save
        path: Output directory (created if needed)
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)

    pattern_cols = collection.column_names(ColumnKind.PATTERN)
    category_cols = collection.column_names(ColumnKind.CATEGORY)
    if not pattern_cols:
        raise ColumnError("Collection has no point pattern columns to save")

    sample_rows = []
    point_frames = []
    for sample_id, row in collection.iter_rows():
        windows = {row[c].window for c in pattern_cols}
        if len(windows) != 1:
            raise WindowError(f"Sample '{sample_id}' has patterns with different windows")
        window = windows.pop()
        record = {
            'sample_id': sample_id,
            'window_xmin': window.xmin,
            'window_xmax': window.xmax,
            'window_ymin': window.ymin,
            'window_ymax': window.ymax,
        }
        record.update({c: row[c] for c in category_cols})
        sample_rows.append(record)

        for cell_type in pattern_cols:
            pattern = row[cell_type]
            point_frames.append(pd.DataFrame({
                'sample_id': sample_id,
                'cell_type': cell_type,
                'x': pattern.x,
                'y': pattern.y
            }))

    pd.DataFrame(sample_rows, columns=SAMPLE_COLUMNS + category_cols).to_csv(
        os.path.join(path, SAMPLES_FILE), index=False
    )
    points = pd.concat(point_frames, ignore_index=True) if point_frames else pd.DataFrame(columns=POINT_COLUMNS)
    points.to_csv(os.path.join(path, POINTS_FILE), index=False)
    with open(os.path.join(path, MANIFEST_FILE), 'w') as f:
        yaml.dump({'cell_types': pattern_cols}, f, default_flow_style=False)

    logger.info(f"Saved {len(collection)} samples and {len(points)} points to {path}")
