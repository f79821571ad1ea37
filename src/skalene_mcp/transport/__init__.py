"""Transport layer: byte streams, demultiplexing, write serialization, and the query engine."""

from .connection import Connection
from .demux import Demultiplexer, StreamHandler
from .serial_connection import SerialTransport, StreamTransport, enumerate_ports
from .writer import WriteSerializer
