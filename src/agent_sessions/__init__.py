# ABOUTME: Reads session logs of AI coding CLIs into one normalized message model.
# ABOUTME: Providers, service, search index, HTTP API and CLI live in submodules.

__version__ = "0.1.0"
