"""Runtime library linked by protodef generated code."""

from .cursor import DEFAULT_MAX_DEPTH as DEFAULT_MAX_DEPTH
from .cursor import Reader as Reader
from .cursor import Writer as Writer
from .errors import *
from .primitives import *
from .serialization import Codec as Codec
from .serialization import ProtocolEnum as ProtocolEnum
from .serialization import Struct as Struct
from .serialization import decode as decode
from .serialization import encode as encode
