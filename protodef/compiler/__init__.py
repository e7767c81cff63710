"""ProtoDef protocol compiler."""

from .codegen import generate as generate
from .config import BitOrder as BitOrder
from .config import CompilerOptions as CompilerOptions
from .config import NativeType as NativeType
from .config import load_options as load_options
from .diagnostics import Diagnostic as Diagnostic
from .diagnostics import DiagnosticKind as DiagnosticKind
from .diagnostics import Diagnostics as Diagnostics
from .diagnostics import Severity as Severity
from .lowered import *
from .parser import parse as parse
from .pipeline import analyze as analyze
from .pipeline import compile_protocol as compile_protocol
from .resolver import Resolution as Resolution
from .resolver import resolve as resolve
from .sizes import ProtocolSizeInfo as ProtocolSizeInfo
from .sizes import SizeCalculator as SizeCalculator
from .sizes import SizeInfo as SizeInfo
from .sizes import SizeKind as SizeKind
from .sizes import calculate_sizes as calculate_sizes
from .types import *
