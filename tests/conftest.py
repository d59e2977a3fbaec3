import pytest

from photo_depot.depot.cache import DepotCache, DirectoryRecordCache
from photo_depot.hashing.hasher import ContentHasher


class CountingHasher(ContentHasher):
    """ContentHasher that records which files it actually hashed."""

    def __init__(self):
        self.calls = []

    def calculate_hash(self, path):
        self.calls.append(path)
        return super().calculate_hash(path)


@pytest.fixture
def hasher():
    return CountingHasher()


@pytest.fixture
def memory():
    return DirectoryRecordCache()


@pytest.fixture
def depot(hasher, memory):
    """Returns a DepotCache that counts hash computations."""
    return DepotCache(hasher=hasher, memory=memory)
