from typing import List, Protocol

from screener.market.models import IndicatorVector


# ! VECTOR PROCESSORS SHOULD LOG AN ERROR WHEN THEY FAIL TO PROCESS A BATCH
class VectorProcessor(Protocol):
    """Protocol for post-commit vector processors"""

    name: str

    async def process_vectors(self, vectors: List[IndicatorVector]) -> None: ...
