"""The closed set of genome variants the engine accepts."""

from __future__ import annotations

from typing import Annotated, Union

from pydantic import Field

from evoforge.genome.dsl import DslGenome
from evoforge.genome.vector import VectorGenome

AnyGenome = Annotated[Union[VectorGenome, DslGenome], Field(discriminator="family")]
