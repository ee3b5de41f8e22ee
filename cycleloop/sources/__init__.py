"""Work sources polled by the loop: signals, HTTP transfers, streams, and files."""

from cycleloop.sources.base import WorkSource
from cycleloop.sources.files import FileWorkSource
from cycleloop.sources.http import HttpWorkSource, TransferClient
from cycleloop.sources.signals import SignalWorkSource
from cycleloop.sources.streams import StreamWorkSource

__all__ = [
    "WorkSource",
    "FileWorkSource",
    "HttpWorkSource",
    "SignalWorkSource",
    "StreamWorkSource",
    "TransferClient",
]
