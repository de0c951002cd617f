from .nativefloat import *
from .nativefloat import __all__
