"""watchfolder - Upload finished files from a watched folder to an ingestion gateway."""

__version__ = "0.1.0"
