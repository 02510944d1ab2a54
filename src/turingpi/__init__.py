"""
turingpi - image preparation for Turing Pi cluster boards.

Decompresses a node image, injects its network identity and repacks it,
running privileged Linux tooling on the host or in a managed worker
container when the host lacks it.
"""

__version__ = "0.1.0"

# Re-export key components for easier access
from turingpi.errors import TuringPiError
from turingpi.models.config import TuringPiConfig
from turingpi.models.job import PreparationJob
from turingpi.imageops.mutations import MutationPlanner, apply_mutations
from turingpi.imageops.pipeline import ImagePipeline, prepare_image
from turingpi.containers.registry import get_registry
from turingpi.containers.session import ContainerSession

__all__ = [
    "TuringPiError",
    "TuringPiConfig",
    "PreparationJob",
    "MutationPlanner",
    "apply_mutations",
    "ImagePipeline",
    "prepare_image",
    "get_registry",
    "ContainerSession",
]
