"""HTTP transfers: the tenacity-backed transfer client and its work source."""

from cycleloop.sources.http.client import TransferClient
from cycleloop.sources.http.source import HttpWorkSource, Transfer

__all__ = ["HttpWorkSource", "Transfer", "TransferClient"]
