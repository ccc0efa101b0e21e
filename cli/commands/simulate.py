"""Synthetic dataset generation"""
import logging
from typing import Dict

from ppa.data.loader import save_collection
from ppa.data.patterns import Window
from ppa.data.simulate import simulate_collection

logger = logging.getLogger(__name__)


def simulate_dataset(
    output_dir: str,
    group_intensities: Dict[str, float],
    samples_per_group: int = 5,
    covariate_intensity: float = 0.002,
    response_effect: float = 0.0,
    window_size: float = 1000.0,
    seed: int = 42
):
    """Simulate a two-cell-type dataset and write it as samples.csv / points.csv

    Args:
        output_dir: Dataset directory to create
        group_intensities: Response intensity per group label
        samples_per_group: Number of samples per group
        covariate_intensity: Intensity of the covariate cell type
        response_effect: Log-intensity effect of standardised covariate density
        window_size: Side length of the square observation window
        seed: Random seed
    """
    logger.info(
        f"Simulating {samples_per_group} samples for each of {len(group_intensities)} groups "
        f"(response effect {response_effect}, seed {seed})"
    )
    collection = simulate_collection(
        group_intensities,
        samples_per_group=samples_per_group,
        window=Window(0.0, window_size, 0.0, window_size),
        covariate_intensity=covariate_intensity,
        response_effect=response_effect,
        seed=seed
    )
    save_collection(collection, output_dir)
    logger.info(f"Dataset written to: {output_dir}")
    return collection
