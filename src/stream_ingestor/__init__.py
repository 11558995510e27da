"""
Stream Ingestor - push-event streaming client.

Opens a persistent websocket connection to a streaming endpoint, decodes each
incoming message and stores admissible events in PostgreSQL.
"""

__version__ = "1.0.0"
__author__ = "Stream Ingestor Team"
