"""skillopt: continual per-skill optimization for an AI request gateway.

Partitions a skill's traffic by embedding similarity and runs a Thompson
sampling bandit per partition to find the best model configuration.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
