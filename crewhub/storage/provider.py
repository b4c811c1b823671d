from typing import BinaryIO, Optional, Union


class StorageProvider:
    def put_bytes(self, key: str, data: Union[bytes, BinaryIO]) -> None:
        raise NotImplementedError

    def read_bytes(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
