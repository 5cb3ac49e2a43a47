"""
Change producers for repokeep.

The registry is closed: a workspace instantiates producers by name from
KNOWN_PRODUCERS and calls them through the ChangeProducer interface.
"""

from typing import Dict, Iterable, List, Type

from ..errors import UnknownProducerError
from .base import ChangeProducer, ProducerContext, ProducerResult
from .version_bump import (
    NodeVersionProducer,
    PythonVersionProducer,
    RustVersionProducer,
    VersionBumper,
)

KNOWN_PRODUCERS: Dict[str, Type[ChangeProducer]] = {
    PythonVersionProducer.name: PythonVersionProducer,
    NodeVersionProducer.name: NodeVersionProducer,
    RustVersionProducer.name: RustVersionProducer,
}


def build_producers(names: Iterable[str]) -> List[ChangeProducer]:
    """
    Instantiate producers by registry name, keeping order and dropping
    duplicates.

    Raises:
        UnknownProducerError: a name is not registered
    """
    producers = []
    for name in dict.fromkeys(names):
        cls = KNOWN_PRODUCERS.get(name)
        if cls is None:
            raise UnknownProducerError(name, sorted(KNOWN_PRODUCERS))
        producers.append(cls())
    return producers


__all__ = [
    'ChangeProducer',
    'ProducerContext',
    'ProducerResult',
    'KNOWN_PRODUCERS',
    'build_producers',
    'PythonVersionProducer',
    'NodeVersionProducer',
    'RustVersionProducer',
    'VersionBumper',
]
