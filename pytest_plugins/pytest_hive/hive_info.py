"""Information the hive server reports about itself and the clients it was started with."""

from typing import Dict, List

from pydantic import BaseModel, Field, RootModel

from engine_test_base_types import CamelModel


class ClientInfo(BaseModel):
    """One entry of the hive client file."""

    client: str
    nametag: str | None = None
    dockerfile: str | None = None
    build_args: Dict[str, str] | None = None


class ClientFile(RootModel[List[ClientInfo]]):
    """The clients hive was asked to build."""

    root: List[ClientInfo] = Field(default_factory=list)

    def describe(self, client_type: str) -> str | None:
        """Return the build description of a client type, if hive knows it."""
        for client in self.root:
            if client.client in client_type:
                return client.model_dump_json(exclude_none=True)
        return None


class HiveInfo(CamelModel):
    """Hive instance information."""

    command: List[str]
    client_file: ClientFile = Field(default_factory=ClientFile)
    commit: str
    date: str
