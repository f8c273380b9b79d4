"""Mirror git-backed chain and validator registries into a document store."""

__version__ = "0.1.0"
