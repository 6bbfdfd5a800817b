"""Identity directory -> record store synchronization package.

Having this file ensures the 'identity_sync' directory is recognized as a
standard Python package during test discovery and when installed.
"""

__all__: list[str] = []
