"""JSON persistence for precomputed tables."""

from pathlib import Path
from typing import Union

from pydantic import BaseModel


class JsonModule(BaseModel):
    """A pydantic model saved to and loaded from a JSON document."""

    def save(self, path: Union[str, Path]) -> None:
        Path(path).write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, path: Union[str, Path]):
        return cls.model_validate_json(Path(path).read_text())
