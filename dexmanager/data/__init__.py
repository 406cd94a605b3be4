"""
Concrete collaborators and configuration for the dex usage manager.

This package is responsible for:
* Determining the data directory (via env var + sensible default).
* Loading and persisting the service configuration.
* Reading the installed package snapshot.
* Checking and compiling secondary dex files on the local filesystem.
"""
